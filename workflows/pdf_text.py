"""Text layer extraction from PDF payment guides."""

import logging
import re

import pdfplumber

logger = logging.getLogger(__name__)


def clean_text(text: str) -> str:
    """Unify line breaks and collapse runs of blank lines."""
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = re.sub(r"\n{2,}", "\n", text)
    return text.strip()


def extract_text(pdf_path: str) -> str:
    """Return the text of every page, or "" when the PDF can't be read.

    Scanned guides without a text layer also come back empty; the intake
    workflow then leaves them in the inbox for manual filing.
    """
    try:
        with pdfplumber.open(pdf_path) as pdf:
            pages = [page.extract_text() or "" for page in pdf.pages]
    except Exception as e:
        logger.warning("Failed to extract text from %s: %s", pdf_path, e)
        return ""
    return clean_text("\n".join(pages))
