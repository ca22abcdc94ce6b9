"""PDF text-layer extraction."""

import fitz  # PyMuPDF

from extractify.extraction.strategy_interface import SUPPORTED_PDF_TYPES, ExtractionStrategy


class PDFExtractionStrategy(ExtractionStrategy):
    """Reads the embedded text layer; no external calls."""

    supported_types = SUPPORTED_PDF_TYPES

    def extract_text(self, data: bytes, file_name: str, file_url: str | None = None) -> str:
        with fitz.open(stream=data, filetype="pdf") as doc:
            return "\n".join(page.get_text() for page in doc)
