"""Text normalization applied to extracted document text before chunking.

Extraction backends hand back text with Windows line endings, stray NUL
bytes from PDFs, decomposed Unicode and long runs of blank lines.  Chunk
windows are measured in characters, so this noise would eat into every
window and shift chunk boundaries between otherwise identical documents.
"""

import re
import unicodedata

# Control characters other than tab and newline.
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_TRAILING_SPACE = re.compile(r"[ \t]+\n")
_BLANK_RUNS = re.compile(r"\n{3,}")


def normalize_text(text: str) -> str:
    """Return *text* in the canonical form the chunker expects.

    Applies Unicode NFC composition, converts CRLF and lone CR to LF,
    drops control characters, strips trailing whitespace on each line,
    and collapses three or more consecutive newlines into a single blank
    line.  Leading and trailing whitespace of the whole text is removed.

    Args:
        text: Raw extracted text.

    Returns:
        Normalized text; an empty string when nothing printable remains.
    """
    if not text:
        return ""

    normalized = unicodedata.normalize("NFC", text)
    normalized = normalized.replace("\r\n", "\n").replace("\r", "\n")
    normalized = _CONTROL_CHARS.sub("", normalized)
    normalized = _TRAILING_SPACE.sub("\n", normalized)
    normalized = _BLANK_RUNS.sub("\n\n", normalized)
    return normalized.strip()
