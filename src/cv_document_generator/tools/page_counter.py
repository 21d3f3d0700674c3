"""Page counting via PyMuPDF with log-file fallback."""

from __future__ import annotations

import logging
import re
from pathlib import Path

import pymupdf

logger = logging.getLogger(__name__)

_OUTPUT_WRITTEN_RE = re.compile(r"Output written on .+?\((\d+)\s+page")


def count_pages(pdf_path: str | Path, log_path: str | Path | None = None) -> int | None:
    """Count pages in a PDF file.

    Opens the PDF with PyMuPDF first, then falls back to the LaTeX log when one
    is given. Returns ``None`` if the page count cannot be determined.
    """
    pdf = Path(pdf_path)

    if pdf.exists():
        try:
            with pymupdf.open(pdf) as doc:
                return doc.page_count
        except Exception as e:
            logger.debug("PyMuPDF could not open %s: %s", pdf, e)

    if log_path is not None:
        return count_from_log(log_path)
    return None


def count_from_log(log_path: str | Path) -> int | None:
    """Extract the page count from a LaTeX .log file.

    Looks for ``Output written on cv.pdf (2 pages, ...)``.
    """
    log = Path(log_path)
    if not log.exists():
        return None

    try:
        text = log.read_text(encoding="latin-1")
    except OSError:
        return None

    m = _OUTPUT_WRITTEN_RE.search(text)
    if m:
        return int(m.group(1))
    return None
