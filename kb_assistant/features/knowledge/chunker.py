"""
Knowledge feature: Heading-aware text chunking.

Pipeline for one document:
  1. Split into sections at headings found by an ordered list of matchers
  2. A section that fits in max_size becomes one chunk
  3. Larger sections are packed paragraph by paragraph, with an overlap tail
  4. Oversized paragraphs are packed sentence by sentence
  5. Text without sentence boundaries is cut into word-aligned windows
  6. Short pending text is split together with its oversized neighbour,
     and a short final piece is widened back to a full window
  7. Chunks shorter than min_size are dropped
"""

import logging
import re

from langchain_text_splitters import RecursiveCharacterTextSplitter

from kb_assistant.config import get_settings

logger = logging.getLogger(__name__)

SENTENCE_BOUNDARY = re.compile(r"(?<=[.!?…])\s+")
PARAGRAPH_BOUNDARY = re.compile(r"\n[ \t]*\n\s*")


class HeadingMatcher:
    """A named regex strategy returning the offsets where sections start."""

    def __init__(self, name: str, pattern: str, flags: int = re.MULTILINE):
        self.name = name
        self.regex = re.compile(pattern, flags)

    def find_offsets(self, text: str) -> list[int]:
        return [m.start() for m in self.regex.finditer(text)]

    def __repr__(self) -> str:
        return f"HeadingMatcher({self.name!r})"


DEFAULT_HEADING_MATCHERS: list[HeadingMatcher] = [
    # Markdown headings and horizontal rules
    HeadingMatcher("markdown", r"^[ \t]*#{1,6}[ \t]+\S"),
    HeadingMatcher("rule", r"^[ \t]*(?:={3,}|-{3,}|\*{3,}|_{3,})[ \t]*$"),
    # "1. Введение", "2.3 Fractions", "4) Итоги"
    HeadingMatcher("numbered", r"^[ \t]*\d{1,2}(?:\.\d{1,2})*[.)]?[ \t]+[A-ZА-ЯЁ]"),
    # "Цели урока:" on its own line
    HeadingMatcher("colon", r"^[ \t]*[A-ZА-ЯЁ][^\n:.!?]{2,80}:[ \t]*$"),
    HeadingMatcher(
        "keyword",
        r"^[ \t]*(?:глава|раздел|тема|урок|модуль|часть|параграф|"
        r"chapter|section|lesson|unit|topic|module|part)\b[^\n]{0,120}$",
        re.MULTILINE | re.IGNORECASE,
    ),
]


class TextChunker:
    """Splits document text into bounded, context-preserving chunks.

    Every chunk is stripped and at most ``max_size`` characters long.
    Identical input and parameters always produce the identical sequence.
    """

    def __init__(
        self,
        max_size: int = 3000,
        overlap: int = 300,
        min_size: int = 50,
        matchers: list[HeadingMatcher] | None = None,
    ):
        if max_size <= 0:
            raise ValueError("max_size must be positive")
        if overlap < 0 or overlap >= max_size:
            raise ValueError("overlap must be in [0, max_size)")
        self.max_size = max_size
        self.overlap = overlap
        self.min_size = min_size
        self.matchers = list(DEFAULT_HEADING_MATCHERS if matchers is None else matchers)
        self._window_splitter = RecursiveCharacterTextSplitter(
            chunk_size=max_size,
            chunk_overlap=overlap,
            separators=[r"\s+", ""],
            is_separator_regex=True,
        )

    def register_matcher(self, matcher: HeadingMatcher, index: int | None = None) -> None:
        """Add a heading strategy (appended unless an index is given)."""
        if index is None:
            self.matchers.append(matcher)
        else:
            self.matchers.insert(index, matcher)

    # ── Public API ───────────────────────────────────────

    def split(self, text: str) -> list[str]:
        """Split text into chunks, dropping anything below min_size."""
        if not text or not text.strip():
            return []

        chunks: list[str] = []
        for section in self.split_sections(text):
            chunks.extend(self._chunk_section(section))

        kept = [c for c in chunks if len(c) >= self.min_size]
        if len(kept) != len(chunks):
            logger.debug(f"Dropped {len(chunks) - len(kept)} fragment(s) below {self.min_size} chars")
        return kept

    def split_sections(self, text: str) -> list[str]:
        """Slice text at every heading offset found by the matchers."""
        offsets = {0}
        for matcher in self.matchers:
            offsets.update(matcher.find_offsets(text))

        ordered = sorted(o for o in offsets if o < len(text))
        if len(ordered) < 2:
            return [text]

        bounds = ordered + [len(text)]
        return [text[start:end] for start, end in zip(bounds, bounds[1:])]

    # ── Levels ───────────────────────────────────────────

    def _chunk_section(self, section: str) -> list[str]:
        section = section.strip()
        if not section:
            return []
        if len(section) <= self.max_size:
            return [section]
        return self._split_paragraphs(section)

    def _split_paragraphs(self, section: str) -> list[str]:
        chunks: list[str] = []
        buffer = ""  # pending text, not emitted yet

        for para in PARAGRAPH_BOUNDARY.split(section):
            para = para.strip()
            if not para:
                continue

            candidate = _join(buffer, para, "\n\n")
            if len(candidate) <= self.max_size:
                buffer = candidate
                continue

            if len(para) > self.max_size or len(buffer) < self.min_size:
                # Pending text goes down a level together with the paragraph
                pieces = self._split_sentences(candidate)
                chunks.extend(pieces[:-1])
                buffer = pieces[-1]
                continue

            chunks.append(buffer)
            seeded = _join(self._overlap_tail(buffer), para, "\n\n")
            buffer = seeded if len(seeded) <= self.max_size else para

        if buffer:
            if len(buffer) < self.min_size and chunks:
                buffer = self._last_window(section)
            chunks.append(buffer)
        return chunks

    def _split_sentences(self, paragraph: str) -> list[str]:
        sentences = [s.strip() for s in SENTENCE_BOUNDARY.split(paragraph) if s.strip()]
        if len(sentences) < 2:
            return self._split_fixed(paragraph)

        chunks: list[str] = []
        current: list[str] = []

        for sentence in sentences:
            candidate = " ".join(current + [sentence])
            if len(candidate) <= self.max_size:
                current.append(sentence)
                continue

            if len(sentence) > self.max_size or len(" ".join(current)) < self.min_size:
                pieces = self._split_fixed(candidate)
                chunks.extend(pieces[:-1])
                current = pieces[-1:]
                continue

            chunks.append(" ".join(current))
            current = self._overlap_sentences(current) + [sentence]
            if len(" ".join(current)) > self.max_size:
                current = [sentence]

        if current:
            chunks.append(" ".join(current))
        return chunks

    def _split_fixed(self, text: str) -> list[str]:
        # Word-aligned windows with character overlap; unbroken runs are cut by character
        return [piece.strip() for piece in self._window_splitter.split_text(text) if piece.strip()]

    def _last_window(self, text: str) -> str:
        """Trailing ``max_size`` characters of text, starting on a word."""
        text = text.strip()
        if len(text) <= self.max_size:
            return text
        window = text[-self.max_size:]
        if not text[-self.max_size - 1].isspace():
            space = re.search(r"\s", window)
            if space:
                window = window[space.end():]
        return window.strip()

    # ── Overlap ──────────────────────────────────────────

    def _overlap_tail(self, text: str) -> str:
        """Trailing ``overlap`` characters, trimmed to start on a sentence or word."""
        if self.overlap <= 0 or not text:
            return ""
        if len(text) <= self.overlap:
            return text

        tail = text[-self.overlap:]
        match = SENTENCE_BOUNDARY.search(tail)
        if match and match.end() < len(tail):
            return tail[match.end():].strip()
        if text[-self.overlap - 1].isspace():
            return tail.strip()
        space = re.search(r"\s", tail)
        if space:
            return tail[space.end():].strip()
        return tail.strip()

    def _overlap_sentences(self, sentences: list[str]) -> list[str]:
        """Whole trailing sentences whose joined length fits in ``overlap``."""
        kept: list[str] = []
        total = 0
        for sentence in reversed(sentences):
            added = len(sentence) + (1 if kept else 0)
            if total + added > self.overlap:
                break
            kept.insert(0, sentence)
            total += added
        return kept


def _join(head: str, tail: str, sep: str) -> str:
    return f"{head}{sep}{tail}" if head else tail


def get_chunker() -> TextChunker:
    """Chunker configured from KB_* settings."""
    settings = get_settings()
    return TextChunker(
        max_size=settings.KB_CHUNK_SIZE,
        overlap=settings.KB_CHUNK_OVERLAP,
        min_size=settings.KB_MIN_CHUNK_SIZE,
    )
