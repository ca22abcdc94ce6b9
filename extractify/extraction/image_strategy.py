"""Image OCR extraction via a text-detection service."""

from typing import Any, Protocol

from extractify.extraction.strategy_interface import SUPPORTED_IMAGE_TYPES, ExtractionStrategy


class TextDetectionService(Protocol):
    """Protocol for OCR backends returning Textract-style blocks."""

    def detect_document_text(self, data: bytes) -> list[dict[str, Any]]:
        """Return detected blocks in document order."""


class ImageExtractionStrategy(ExtractionStrategy):
    supported_types = SUPPORTED_IMAGE_TYPES

    def __init__(self, service: TextDetectionService) -> None:
        self._service = service

    def extract_text(self, data: bytes, file_name: str, file_url: str | None = None) -> str:
        blocks = self._service.detect_document_text(data) or []
        lines = [
            block["Text"]
            for block in blocks
            if block.get("BlockType") == "LINE" and block.get("Text")
        ]
        return "\n".join(lines)
