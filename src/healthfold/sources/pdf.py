"""Page text extraction for PDF documents."""

from __future__ import annotations

import io

from pypdf import PdfReader
from pypdf.errors import PdfReadError

from healthfold.errors import ExtractionFailureError


def extract_pdf_pages(data: bytes, file_name: str = "") -> list[str]:
    """Return the text of each page, in page order.

    Raises ExtractionFailureError if the document cannot be read.
    """
    try:
        reader = PdfReader(io.BytesIO(data))
        return [page.extract_text() or "" for page in reader.pages]
    except (PdfReadError, ValueError, KeyError, TypeError, OSError) as exc:
        raise ExtractionFailureError("PDF text", file_name, exc) from exc
