"""Abstract base class for binary document text extraction."""

from __future__ import annotations

from abc import ABC, abstractmethod


# Concrete implementations:
#   DocumentTextExtractor: PDF (PyMuPDF) and DOCX (OOXML)
# Located in: ragcore/providers/extraction/
class ITextExtractor(ABC):
    """Contract for turning binary document formats into plain text.

    Plain text and markdown never reach an extractor; the ingestion pipeline
    decodes those itself.
    """

    @abstractmethod
    def supports(self, mime_type: str) -> bool:
        """Return ``True`` if :meth:`extract` handles *mime_type*."""

    @abstractmethod
    async def extract(self, data: bytes, mime_type: str) -> str:
        """Return the text content of *data*.

        Raises
        ------
        ragcore.utils.errors.UnsupportedFormatError
            If *mime_type* is not handled.
        ragcore.utils.errors.ExtractionError
            If the bytes are corrupt or cannot be parsed.
        """
