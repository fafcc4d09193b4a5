"""Statement ingestion: encoding detection, CSV/PDF parsing and routing."""

from .csv_parser import parse_csv
from .encoding import auto_decode, decode, detect_encoding
from .pdf_parser import parse_pdf, parse_statement_text
from .router import detect_file_type, parse_statement, read_statement, validate_file

__all__ = [
    "auto_decode",
    "decode",
    "detect_encoding",
    "detect_file_type",
    "parse_csv",
    "parse_pdf",
    "parse_statement",
    "parse_statement_text",
    "read_statement",
    "validate_file",
]
