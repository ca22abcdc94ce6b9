"""Ordered first-match dispatch from MIME type to extraction strategy."""

from __future__ import annotations

from extractify.config import Settings, get_settings
from extractify.errors import UnsupportedFileTypeError
from extractify.extraction.audio_strategy import AudioExtractionStrategy
from extractify.extraction.image_strategy import ImageExtractionStrategy
from extractify.extraction.pdf_strategy import PDFExtractionStrategy
from extractify.extraction.strategy_interface import SUPPORTED_FILE_TYPES, ExtractionStrategy


class ExtractionStrategyFactory:
    """Selects the first strategy whose ``supports`` predicate matches."""

    def __init__(self, strategies: list[ExtractionStrategy]) -> None:
        self._strategies = list(strategies)

    def get_strategy(self, file_type: str) -> ExtractionStrategy:
        for strategy in self._strategies:
            if strategy.supports(file_type):
                return strategy
        raise UnsupportedFileTypeError(file_type)

    @staticmethod
    def supported_types() -> list[str]:
        return list(SUPPORTED_FILE_TYPES)


def get_default_strategy_factory(settings: Settings | None = None) -> ExtractionStrategyFactory:
    """Build the PDF, image and audio strategies backed by AWS services."""

    from extractify.extraction.aws import TextractTextDetectionService, TranscribeService

    active = settings or get_settings()
    return ExtractionStrategyFactory(
        [
            PDFExtractionStrategy(),
            ImageExtractionStrategy(TextractTextDetectionService(region=active.aws_region)),
            AudioExtractionStrategy(
                TranscribeService(region=active.aws_region),
                max_wait_seconds=active.transcribe_max_wait_seconds,
                initial_poll_seconds=active.transcribe_initial_poll_seconds,
                max_poll_seconds=active.transcribe_max_poll_seconds,
            ),
        ]
    )
