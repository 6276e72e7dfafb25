"""
Knowledge feature: External file sources for sync.

GoogleDriveSource reads a shared Drive folder with an API key:
  1. GET /drive/v3/files?q='<folder>' in parents   (paged via nextPageToken)
  2. Google Docs:  GET /files/{id}/export?mimeType=text/plain
  3. Other files:  GET /files/{id}?alt=media        (DOCX parsed with python-docx)
"""

import logging
from abc import ABC, abstractmethod

import httpx

from kb_assistant.config import get_settings
from kb_assistant.core.exceptions import ExternalServiceError, SourceListingError
from kb_assistant.features.knowledge.extraction import (
    GOOGLE_DOC_MIME,
    extract_text_from_bytes,
    is_supported_file,
    sanitize_text,
)
from kb_assistant.features.knowledge.schemas import SourceFile

logger = logging.getLogger(__name__)


class FileSource(ABC):
    """A folder of documents the sync orchestrator pulls from."""

    label: str = "External"

    @abstractmethod
    def list_files(self) -> list[SourceFile]:
        """List the folder. Raises SourceListingError on failure."""

    @abstractmethod
    def fetch_text(self, file: SourceFile) -> str:
        """Download one file and return its extracted text."""

    def is_supported(self, file: SourceFile) -> bool:
        return is_supported_file(file.mime_type, file.name)

    def close(self) -> None:
        """Release connections held by the source."""


class GoogleDriveSource(FileSource):
    """Google Drive API v3 folder reader (public / API-key access)."""

    label = "Google Drive"
    BASE_URL = "https://www.googleapis.com/drive/v3"

    def __init__(
        self,
        api_key: str,
        folder_id: str,
        timeout: float = 30.0,
        client: httpx.Client | None = None,
    ):
        self.api_key = api_key
        self.folder_id = folder_id
        self._client = client or httpx.Client(base_url=self.BASE_URL, timeout=timeout)

    def list_files(self) -> list[SourceFile]:
        if not self.api_key or not self.folder_id:
            raise SourceListingError("GOOGLE_DRIVE_API_KEY / GOOGLE_DRIVE_FOLDER_ID not configured")

        files: list[SourceFile] = []
        page_token: str | None = None
        while True:
            params = {
                "q": f"'{self.folder_id}' in parents and trashed = false",
                "key": self.api_key,
                "fields": "nextPageToken, files(id, name, mimeType, webViewLink)",
                "pageSize": 100,
            }
            if page_token:
                params["pageToken"] = page_token

            try:
                response = self._client.get("/files", params=params)
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                body = e.response.text
                if "accessNotConfigured" in body or "SERVICE_DISABLED" in body:
                    logger.warning("⚠️ Google Drive API is not enabled for this API key.")
                raise SourceListingError(f"Drive returned {e.response.status_code}: {body[:300]}") from e
            except httpx.HTTPError as e:
                raise SourceListingError(f"Drive request failed: {e}") from e

            data = response.json()
            for item in data.get("files", []):
                files.append(SourceFile(
                    id=item["id"],
                    name=item.get("name", item["id"]),
                    mime_type=item.get("mimeType", ""),
                    web_view_link=item.get("webViewLink"),
                ))

            page_token = data.get("nextPageToken")
            if not page_token:
                break

        logger.info(f"📂 Found {len(files)} file(s) in Google Drive folder")
        return files

    def fetch_text(self, file: SourceFile) -> str:
        if file.mime_type == GOOGLE_DOC_MIME:
            response = self._get(f"/files/{file.id}/export", {"mimeType": "text/plain"}, file)
            return sanitize_text(response.text)

        response = self._get(f"/files/{file.id}", {"alt": "media"}, file)
        return extract_text_from_bytes(response.content, file.name, file.mime_type)

    def _get(self, path: str, params: dict, file: SourceFile) -> httpx.Response:
        try:
            response = self._client.get(path, params={**params, "key": self.api_key})
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise ExternalServiceError("google_drive", f"Download of '{file.name}' failed: {e}") from e
        return response

    def close(self) -> None:
        self._client.close()


def create_drive_source() -> GoogleDriveSource:
    settings = get_settings()
    return GoogleDriveSource(
        api_key=settings.GOOGLE_DRIVE_API_KEY,
        folder_id=settings.GOOGLE_DRIVE_FOLDER_ID,
        timeout=float(settings.GOOGLE_DRIVE_TIMEOUT),
    )
