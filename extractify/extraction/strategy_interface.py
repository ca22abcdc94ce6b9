"""Strategy interface for per-file-type text extraction."""

from abc import ABC, abstractmethod

SUPPORTED_PDF_TYPES: tuple[str, ...] = ("application/pdf",)
SUPPORTED_IMAGE_TYPES: tuple[str, ...] = ("image/jpeg", "image/png", "image/jpg")
SUPPORTED_AUDIO_TYPES: tuple[str, ...] = (
    "audio/mpeg",
    "audio/mp3",
    "audio/wav",
    "audio/x-wav",
    "audio/mp4",
    "audio/x-m4a",
)
SUPPORTED_FILE_TYPES: tuple[str, ...] = SUPPORTED_PDF_TYPES + SUPPORTED_IMAGE_TYPES + SUPPORTED_AUDIO_TYPES


class ExtractionStrategy(ABC):
    """Abstract text extraction strategy."""

    supported_types: tuple[str, ...] = ()

    def supports(self, file_type: str) -> bool:
        """Return whether this strategy handles the given MIME type."""

        return file_type in self.supported_types

    @abstractmethod
    def extract_text(self, data: bytes, file_name: str, file_url: str | None = None) -> str:
        """Extract plain text from a file's bytes (or its durable location)."""
