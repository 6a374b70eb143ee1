"""Tests for PDF text extraction helpers."""

from workflows.pdf_text import clean_text, extract_text


def test_clean_text_unifies_line_breaks():
    assert clean_text("a\r\nb\rc") == "a\nb\nc"


def test_clean_text_collapses_blank_lines():
    assert clean_text("\n\nACME\n\n\nCNPJ\n") == "ACME\nCNPJ"


def test_unreadable_pdf_yields_empty_text(tmp_path):
    path = tmp_path / "broken.pdf"
    path.write_bytes(b"this is not a pdf")
    assert extract_text(str(path)) == ""


def test_missing_file_yields_empty_text(tmp_path):
    assert extract_text(str(tmp_path / "missing.pdf")) == ""
