"""
Custom exception classes for unified error handling.
"""

from fastapi import HTTPException, status


class AppBaseError(Exception):
    """Base exception for all application errors."""
    def __init__(self, message: str, detail: str | None = None):
        self.message = message
        self.detail = detail
        super().__init__(message)


class ExternalServiceError(AppBaseError):
    """Raised when an external provider (embeddings, LLM, vector store, Drive) fails."""
    def __init__(self, service: str, message: str | None = None):
        self.service = service
        super().__init__(
            message=f"External service '{service}' failed",
            detail=message,
        )


class SourceListingError(ExternalServiceError):
    """Raised when the file source cannot list the sync folder. Aborts a whole sync run."""
    def __init__(self, message: str | None = None):
        super().__init__(service="file_source", message=message)


class UnsupportedFormatError(AppBaseError):
    """Raised when a file's format cannot be turned into text."""
    def __init__(self, file_name: str, mime_type: str = ""):
        self.file_name = file_name
        self.mime_type = mime_type
        super().__init__(
            message=f"Unsupported file format: {file_name}",
            detail=f"MIME type '{mime_type}' is not supported. Use Google Docs, DOCX, TXT or MD.",
        )


class EmptyContentError(AppBaseError):
    """Raised when a document has no text, or too little to index."""
    def __init__(self, file_name: str):
        self.file_name = file_name
        super().__init__(
            message=f"Document '{file_name}' has no content or is too short",
        )


class SyncInProgressError(AppBaseError):
    """Raised when a sync run is requested while another one is running."""
    def __init__(self):
        super().__init__(
            message="Synchronization is already running",
            detail="Poll the sync status endpoint and retry after it completes.",
        )


class DocumentNotFoundError(AppBaseError):
    """Raised when a knowledge chunk id does not exist."""
    def __init__(self, document_id: int | str):
        super().__init__(message=f"Document {document_id} not found")


class SettingNotFoundError(AppBaseError):
    """Raised when a setting is absent and has no default value."""
    def __init__(self, key: str):
        super().__init__(message=f"Setting '{key}' not found and has no default value")


# ── Utility: convert to HTTPException ────────────────────

def status_code_for(error: AppBaseError) -> int:
    """Pick the HTTP status that matches an application error."""
    if isinstance(error, ExternalServiceError):
        return status.HTTP_502_BAD_GATEWAY
    if isinstance(error, SyncInProgressError):
        return status.HTTP_409_CONFLICT
    if isinstance(error, (DocumentNotFoundError, SettingNotFoundError)):
        return status.HTTP_404_NOT_FOUND
    return status.HTTP_400_BAD_REQUEST


def app_error_body(error: AppBaseError) -> dict:
    return {
        "error": error.message,
        "detail": error.detail,
        "type": type(error).__name__,
    }


def app_error_to_http(error: AppBaseError, status_code: int | None = None) -> HTTPException:
    """Convert an AppBaseError to an HTTPException with consistent JSON body."""
    return HTTPException(
        status_code=status_code or status_code_for(error),
        detail=app_error_body(error),
    )


def describe_error(error: Exception) -> str:
    """One-line message for logs and status fields, including AppBaseError.detail."""
    if isinstance(error, AppBaseError) and error.detail:
        return f"{error.message}: {error.detail}"
    return str(error)
