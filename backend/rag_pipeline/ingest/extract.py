"""Text extraction for supported file formats."""

from __future__ import annotations

import html
import io
from pathlib import PurePath

import fitz
from docx import Document
from markdown_it import MarkdownIt

from rag_pipeline.core.errors import ExtractionError
from rag_pipeline.core.logging import get_logger
from rag_pipeline.utils import mime
from rag_pipeline.utils.text import normalize, strip_tags

logger = get_logger(__name__)

_MD = MarkdownIt()


class BaseExtractor:
    """Common extractor interface."""

    suffixes: tuple[str, ...] = ()
    mime_types: tuple[str, ...] = ()
    mime_prefixes: tuple[str, ...] = ()

    def matches_mime(self, mime_type: str) -> bool:
        return any(kind in mime_type for kind in self.mime_types) or mime_type.startswith(self.mime_prefixes)

    def matches_suffix(self, filename: str) -> bool:
        return PurePath(filename).suffix.lower() in self.suffixes

    def accepts(self, mime_type: str, filename: str) -> bool:
        return self.matches_mime(mime_type)

    def extract(self, data: bytes, filename: str) -> str:  # pragma: no cover - interface
        raise NotImplementedError


class PDFExtractor(BaseExtractor):
    suffixes = (".pdf",)
    mime_types = (mime.PDF,)

    def extract(self, data: bytes, filename: str) -> str:
        try:
            with fitz.open(stream=data, filetype="pdf") as doc:
                pages = [page.get_text("text", sort=True) for page in doc]
        except Exception as exc:
            raise ExtractionError(f"Failed to extract text from PDF: {exc}", filename=filename) from exc
        return "\n".join(pages)


class DocxExtractor(BaseExtractor):
    suffixes = (".docx",)
    mime_types = (mime.DOCX,)

    def extract(self, data: bytes, filename: str) -> str:
        try:
            document = Document(io.BytesIO(data))
        except Exception as exc:
            raise ExtractionError(f"Failed to extract text from DOCX: {exc}", filename=filename) from exc
        blocks = [para.text for para in document.paragraphs if para.text.strip()]
        for table in document.tables:
            for row in table.rows:
                cells = [cell.text.strip() for cell in row.cells]
                if any(cells):
                    blocks.append("\t".join(cells))
        return "\n\n".join(blocks)


class MarkdownExtractor(BaseExtractor):
    suffixes = (".md", ".markdown")
    mime_types = (mime.MARKDOWN,)

    def accepts(self, mime_type: str, filename: str) -> bool:
        return self.matches_mime(mime_type) or self.matches_suffix(filename)

    def extract(self, data: bytes, filename: str) -> str:
        rendered = _MD.render(data.decode("utf-8", errors="replace"))
        return normalize(html.unescape(strip_tags(rendered)))


class PlainTextExtractor(BaseExtractor):
    suffixes = (".txt", ".text", ".log", ".csv", ".tsv", ".json")
    mime_prefixes = ("text/",)

    def extract(self, data: bytes, filename: str) -> str:
        return data.decode("utf-8", errors="replace")


class ImageExtractor(BaseExtractor):
    """Images are described by a placeholder; content analysis happens elsewhere."""

    suffixes = (".png", ".jpg", ".jpeg", ".gif", ".webp")
    mime_prefixes = ("image/",)

    def extract(self, data: bytes, filename: str) -> str:
        return f"[Image: {filename}]"


class ExtractorRegistry:
    """Registry that selects an extractor by MIME type, then by file extension."""

    def __init__(self) -> None:
        # Markdown precedes plain text so text/markdown is not caught by the text/ prefix.
        self._extractors: list[BaseExtractor] = [
            PDFExtractor(),
            DocxExtractor(),
            MarkdownExtractor(),
            PlainTextExtractor(),
            ImageExtractor(),
        ]
        self._fallback = PlainTextExtractor()

    def register(self, extractor: BaseExtractor) -> None:
        self._extractors.insert(0, extractor)

    def for_file(self, mime_type: str | None, filename: str) -> BaseExtractor:
        kind = (mime_type or "").lower()
        if kind:
            for extractor in self._extractors:
                if extractor.accepts(kind, filename):
                    return extractor
        for extractor in self._extractors:
            if extractor.matches_suffix(filename):
                return extractor
        return self._fallback

    def extract(self, data: bytes, mime_type: str | None, filename: str) -> str:
        extractor = self.for_file(mime_type, filename)
        logger.debug(
            "Extracting text from %s with %s",
            filename,
            type(extractor).__name__,
            extra={"ctx_mime_type": mime_type},
        )
        return extractor.extract(data, filename)


_DEFAULT_REGISTRY = ExtractorRegistry()


def extract_text(data: bytes, mime_type: str | None, filename: str) -> str:
    """Convert raw file bytes into plain text.

    Raises:
        ExtractionError: if a PDF or DOCX payload cannot be parsed.
    """
    return _DEFAULT_REGISTRY.extract(data, mime_type, filename)


__all__ = [
    "BaseExtractor",
    "PDFExtractor",
    "DocxExtractor",
    "MarkdownExtractor",
    "PlainTextExtractor",
    "ImageExtractor",
    "ExtractorRegistry",
    "extract_text",
]
