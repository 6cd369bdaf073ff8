"""Fixed-size sliding-window text chunking.

Window ``i`` covers characters ``[i * step, i * step + size)`` where
``step = size - overlap``.  Consecutive windows share ``overlap``
characters.  Windows are trimmed and whitespace-only windows are dropped,
so chunk indices stay dense.
"""

from __future__ import annotations

import structlog

logger = structlog.get_logger(logger_name=__name__)

DEFAULT_CHUNK_SIZE = 1000
DEFAULT_OVERLAP = 200


def chunk_text(text: str, size: int = DEFAULT_CHUNK_SIZE, overlap: int = DEFAULT_OVERLAP) -> list[str]:
    """Split *text* into overlapping, trimmed, non-empty windows.

    Parameters
    ----------
    text:
        Normalized document text.
    size:
        Window length in characters.
    overlap:
        Characters shared by consecutive windows.  Must satisfy
        ``0 <= overlap < size``.

    Returns
    -------
    list[str]
        Chunks in document order.  Empty or whitespace-only input returns
        an empty list.

    Raises
    ------
    ValueError
        If the window parameters would never advance.
    """
    if size <= 0:
        raise ValueError(f"chunk size must be positive, got {size}")
    if not 0 <= overlap < size:
        raise ValueError(f"overlap must satisfy 0 <= overlap < size, got overlap={overlap} size={size}")

    if not text:
        return []

    step = size - overlap
    length = len(text)
    chunks: list[str] = []
    start = 0
    while True:
        window = text[start : start + size].strip()
        if window:
            chunks.append(window)
        if start + size >= length:
            break
        start += step
    return chunks


class TextChunker:
    """Sliding-window chunker with its window parameters fixed at construction.

    Parameters
    ----------
    chunk_size:
        Window length in characters (default 1000).
    overlap:
        Characters of overlap between consecutive windows (default 200).
    """

    def __init__(self, chunk_size: int = DEFAULT_CHUNK_SIZE, overlap: int = DEFAULT_OVERLAP) -> None:
        if chunk_size <= 0 or not 0 <= overlap < chunk_size:
            raise ValueError(
                f"invalid chunk window: chunk_size={chunk_size} overlap={overlap}"
            )
        self._chunk_size = chunk_size
        self._overlap = overlap

    @property
    def chunk_size(self) -> int:
        return self._chunk_size

    @property
    def overlap(self) -> int:
        return self._overlap

    def chunk(self, text: str) -> list[str]:
        """Split *text* into chunks using this chunker's window."""
        chunks = chunk_text(text, self._chunk_size, self._overlap)
        logger.debug(
            "chunking_complete",
            num_chunks=len(chunks),
            text_length=len(text),
            chunk_size=self._chunk_size,
            overlap=self._overlap,
        )
        return chunks
