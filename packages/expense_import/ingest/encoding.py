"""Byte-level encoding sniffing for statement files.

Bank exports arrive as UTF-8 (with or without BOM), UTF-16 from spreadsheet
"Unicode text" exports, or legacy Windows-1252/ISO-8859-1 from older banking
portals. Detection looks at a bounded sample only:

1. A byte-order mark is authoritative.
2. Otherwise every sample byte is scanned once, counting control characters
   (tab/LF/CR excluded) and validating UTF-8 multi-byte sequences.
3. Control density above 5% means ``binary``; the caller must reject it.
4. Pure 7-bit or valid UTF-8 is ``utf-8``.
5. Invalid UTF-8 using 0x80-0x9F (printable in windows-1252, control codes in
   iso-8859-1) is ``windows-1252``; anything else is ``iso-8859-1``.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..logging_setup import get_logger

_logger = get_logger("expense_import.ingest.encoding")

SAMPLE_SIZE = 8192
BINARY_CONTROL_RATIO = 0.05

UTF8 = "utf-8"
UTF16_LE = "utf-16le"
UTF16_BE = "utf-16be"
WINDOWS_1252 = "windows-1252"
ISO_8859_1 = "iso-8859-1"
BINARY = "binary"

_BOMS: tuple[tuple[bytes, str], ...] = (
    (b"\xef\xbb\xbf", UTF8),
    (b"\xff\xfe", UTF16_LE),
    (b"\xfe\xff", UTF16_BE),
)
# Python codec names for the labels above.
_CODECS = {
    UTF8: "utf-8",
    UTF16_LE: "utf-16-le",
    UTF16_BE: "utf-16-be",
    WINDOWS_1252: "cp1252",
    ISO_8859_1: "latin-1",
}
_ALLOWED_CONTROLS = frozenset((0x09, 0x0A, 0x0D))


@dataclass(frozen=True, slots=True)
class DecodedText:
    encoding: str
    content: str

    @property
    def is_binary(self) -> bool:
        return self.encoding == BINARY


def _utf8_sequence_length(lead: int) -> int:
    """Continuation bytes expected after ``lead``; -1 when not a valid lead."""

    if lead & 0xE0 == 0xC0:
        return 1
    if lead & 0xF0 == 0xE0:
        return 2
    if lead & 0xF8 == 0xF0:
        return 3
    return -1


def detect_encoding(data: bytes) -> str:
    """Classify ``data`` as one of the encoding labels in this module.

    Empty input is ``utf-8``. Only the first :data:`SAMPLE_SIZE` bytes are
    inspected; a multi-byte sequence cut off by the sample boundary is not
    counted against UTF-8 validity.
    """

    if not data:
        return UTF8
    sample = data[:SAMPLE_SIZE]
    for bom, label in _BOMS:
        if sample.startswith(bom):
            return label

    controls = 0
    has_high = False
    has_c1 = False
    valid_utf8 = True
    pending = 0
    n = len(sample)
    for byte in sample:
        if byte < 0x20 and byte not in _ALLOWED_CONTROLS:
            controls += 1
        if byte > 0x7F:
            has_high = True
            if byte <= 0x9F:
                has_c1 = True
        if not valid_utf8:
            continue
        if pending:
            if byte & 0xC0 != 0x80:
                valid_utf8 = False
            else:
                pending -= 1
        elif byte > 0x7F:
            pending = _utf8_sequence_length(byte)
            if pending < 0:
                valid_utf8 = False

    if controls / n > BINARY_CONTROL_RATIO:
        return BINARY
    if not has_high or valid_utf8:
        return UTF8
    if has_c1:
        return WINDOWS_1252
    return ISO_8859_1


def decode(data: bytes, encoding: str) -> str:
    """Decode ``data`` with the codec behind ``encoding``.

    Undecodable bytes become U+FFFD rather than failing the import; a bad
    character in one memo field should not cost the user the whole file.
    """

    if encoding == BINARY:
        raise ValueError("binary content cannot be decoded as text")
    codec = _CODECS.get(encoding.lower(), encoding)
    return data.decode(codec, errors="replace")


def auto_decode(data: bytes) -> DecodedText:
    """Detect and decode in one step; binary input yields empty ``content``."""

    encoding = detect_encoding(data)
    if encoding == BINARY:
        _logger.info("Content classified as binary (%d bytes)", len(data))
        return DecodedText(encoding=encoding, content="")
    if encoding != UTF8:
        _logger.debug("Decoding statement as %s", encoding)
    return DecodedText(encoding=encoding, content=decode(data, encoding))


__all__ = [
    "BINARY",
    "ISO_8859_1",
    "UTF16_BE",
    "UTF16_LE",
    "UTF8",
    "WINDOWS_1252",
    "DecodedText",
    "auto_decode",
    "decode",
    "detect_encoding",
]
