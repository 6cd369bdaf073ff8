"""PDF and DOCX text extraction.

PDFs are read with PyMuPDF (``fitz``) page by page.  DOCX files are read
with python-docx: body paragraphs and table rows in document order, then
the paragraphs of any text boxes.

Parsing is CPU-bound, so both run in a worker thread to keep the event
loop free for other ingestion jobs and searches.
"""

from __future__ import annotations

import asyncio
import io
import zipfile

import docx
import fitz  # PyMuPDF -- the "fitz" import name is a PyMuPDF convention
import structlog
from docx.document import Document as DocxDocument
from docx.opc.exceptions import PackageNotFoundError
from docx.oxml.ns import qn
from docx.table import Table
from docx.text.paragraph import Paragraph

from ragcore.interfaces.text_extractor import ITextExtractor
from ragcore.utils.errors import ExtractionError, UnsupportedFormatError

logger = structlog.get_logger(logger_name=__name__)

PDF_MIME_TYPE = "application/pdf"
DOCX_MIME_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"

# Word writes each text box twice: a DrawingML choice and a VML fallback.
_MC_FALLBACK = "{http://schemas.openxmlformats.org/markup-compatibility/2006}Fallback"
_PROVIDER_NAME = "document_extractor"


def base_mime_type(mime_type: str) -> str:
    """Drop parameters such as ``; charset=binary`` and lowercase the type."""
    return mime_type.split(";", 1)[0].strip().lower()


class DocumentTextExtractor(ITextExtractor):
    """Extracts text from PDF and DOCX bytes."""

    def supports(self, mime_type: str) -> bool:
        return base_mime_type(mime_type) in (PDF_MIME_TYPE, DOCX_MIME_TYPE)

    async def extract(self, data: bytes, mime_type: str) -> str:
        base = base_mime_type(mime_type)
        if base == PDF_MIME_TYPE:
            return await asyncio.to_thread(self._extract_pdf, data)
        if base == DOCX_MIME_TYPE:
            return await asyncio.to_thread(self._extract_docx, data)
        raise UnsupportedFormatError(
            message=f"No text extractor for MIME type {mime_type!r}",
            provider_name=_PROVIDER_NAME,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _extract_pdf(data: bytes) -> str:
        """Return the text of every page, pages separated by a blank line."""
        try:
            doc = fitz.open(stream=data, filetype="pdf")
        except (RuntimeError, ValueError) as exc:
            # fitz.FileDataError subclasses RuntimeError.
            raise ExtractionError(
                message=f"Unreadable PDF: {exc}",
                provider_name=_PROVIDER_NAME,
            ) from exc

        pages: list[str] = []
        try:
            for page in doc:
                text = page.get_text("text").strip()
                if text:
                    pages.append(text)
        finally:
            doc.close()

        if not pages:
            logger.warning("pdf_no_text_extracted", size=len(data))
        return "\n\n".join(pages)

    @staticmethod
    def _extract_docx(data: bytes) -> str:
        """Return paragraphs and table rows one per line, text boxes last."""
        try:
            document = docx.Document(io.BytesIO(data))
        except (PackageNotFoundError, zipfile.BadZipFile, KeyError, ValueError) as exc:
            raise ExtractionError(
                message=f"Unreadable DOCX: {exc}",
                provider_name=_PROVIDER_NAME,
            ) from exc

        lines: list[str] = []
        for block in document.iter_inner_content():
            if isinstance(block, Table):
                lines.extend(_table_rows(block))
            else:
                lines.append(block.text)
        lines.extend(_text_box_paragraphs(document))

        logger.debug("docx_extracted", lines=len(lines), tables=len(document.tables))
        return "\n".join(lines)


def _table_rows(table: Table) -> list[str]:
    """One tab-separated line per row; merged cells are read once."""
    rows: list[str] = []
    for row in table.rows:
        cells: list[str] = []
        previous = None
        for cell in row.cells:
            if cell._tc is previous:
                continue
            previous = cell._tc
            cells.append(cell.text.replace("\n", " "))
        rows.append("\t".join(cells))
    return rows


def _text_box_paragraphs(document: DocxDocument) -> list[str]:
    paragraphs: list[str] = []
    body = document.element.body
    for content in body.iter(qn("w:txbxContent")):
        if any(ancestor.tag == _MC_FALLBACK for ancestor in content.iterancestors()):
            continue
        for p in content.iterchildren(qn("w:p")):
            paragraphs.append(Paragraph(p, document).text)
    return paragraphs
