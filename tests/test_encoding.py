from expense_import.ingest.encoding import (
    BINARY,
    ISO_8859_1,
    UTF8,
    UTF16_LE,
    WINDOWS_1252,
    auto_decode,
    decode,
    detect_encoding,
)


def test_empty_input_is_utf8():
    assert detect_encoding(b"") == UTF8


def test_bom_is_authoritative():
    assert detect_encoding(b"\xef\xbb\xbfDate,Amount\n") == UTF8
    assert detect_encoding(b"\xff\xfe" + "Date".encode("utf-16-le")) == UTF16_LE


def test_plain_ascii_and_valid_utf8():
    assert detect_encoding(b"Date,Description,Amount\n") == UTF8
    assert detect_encoding("Café Bogotá,12.00\n".encode()) == UTF8


def test_legacy_single_byte_encodings():
    # 0x93/0x94 are curly quotes in windows-1252 and C1 controls in latin-1.
    assert detect_encoding(b"\x93Bistro\x94 caf\xe9 12.00\n") == WINDOWS_1252
    # 0xE9 followed by a space is invalid UTF-8 and has no C1 bytes.
    assert detect_encoding(b"caf\xe9 au lait,3.00\n") == ISO_8859_1


def test_truncated_multibyte_sequence_at_sample_end_is_not_penalized():
    assert detect_encoding(b"price caf\xc3") == UTF8


def test_control_heavy_content_is_binary():
    data = bytes(range(0, 9)) * 50
    assert detect_encoding(data) == BINARY
    decoded = auto_decode(data)
    assert decoded.is_binary
    assert decoded.content == ""


def test_decode_replaces_undecodable_bytes():
    assert decode(b"\x93hi\x94", WINDOWS_1252) == "\u201chi\u201d"
    assert decode(b"ok \xff", UTF8) == "ok \ufffd"


def test_auto_decode_utf16_with_bom():
    data = b"\xff\xfe" + "Fecha,Monto\n".encode("utf-16-le")
    decoded = auto_decode(data)
    assert decoded.encoding == UTF16_LE
    assert decoded.content.lstrip("\ufeff").startswith("Fecha,Monto")
