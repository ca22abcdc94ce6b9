"""Audio extraction through an asynchronous remote transcription job."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol
from uuid import uuid4

from extractify.errors import MissingMediaUriError, TranscriptionError, TranscriptionTimeoutError
from extractify.extraction.strategy_interface import SUPPORTED_AUDIO_TYPES, ExtractionStrategy
from extractify.http_transport import HttpTransport, UrllibTransport

logger = logging.getLogger(__name__)

JOB_COMPLETED = "COMPLETED"
JOB_FAILED = "FAILED"

DEFAULT_MAX_WAIT_SECONDS = 10 * 60
DEFAULT_INITIAL_POLL_SECONDS = 2.0
DEFAULT_MAX_POLL_SECONDS = 15.0

_MEDIA_FORMAT_BY_EXTENSION: dict[str, str] = {
    "mp3": "mp3",
    "wav": "wav",
    "m4a": "mp4",
    "mp4": "mp4",
}


@dataclass(slots=True)
class TranscriptionJobState:
    status: str
    transcript_uri: str | None = None
    failure_reason: str | None = None


class TranscriptionService(Protocol):
    """Protocol for remote transcription backends (AWS Transcribe-shaped)."""

    def start_job(self, *, job_name: str, media_uri: str, media_format: str) -> None:
        """Submit a transcription job for a durable media URI."""

    def get_job(self, job_name: str) -> TranscriptionJobState:
        """Return the current job status."""

    def delete_job(self, job_name: str) -> None:
        """Remove the remote job and its artifacts."""


def media_format_for(file_name: str) -> str:
    """Map a file name's extension to a transcription media format (``mp3`` by default)."""

    _, dot, extension = file_name.rpartition(".")
    if not dot:
        return "mp3"
    return _MEDIA_FORMAT_BY_EXTENSION.get(extension.lower(), "mp3")


class AudioExtractionStrategy(ExtractionStrategy):
    """Transcribes audio remotely, polling with capped exponential backoff."""

    supported_types = SUPPORTED_AUDIO_TYPES

    def __init__(
        self,
        service: TranscriptionService,
        *,
        transport: HttpTransport | None = None,
        max_wait_seconds: float = DEFAULT_MAX_WAIT_SECONDS,
        initial_poll_seconds: float = DEFAULT_INITIAL_POLL_SECONDS,
        max_poll_seconds: float = DEFAULT_MAX_POLL_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._service = service
        self._transport = transport or UrllibTransport()
        self._max_wait_seconds = max_wait_seconds
        self._initial_poll_seconds = initial_poll_seconds
        self._max_poll_seconds = max_poll_seconds
        self._sleep = sleep
        self._clock = clock

    def extract_text(self, data: bytes, file_name: str, file_url: str | None = None) -> str:
        if not file_url:
            raise MissingMediaUriError(f"Audio file {file_name} has no storage location for transcription")

        job_name = f"extractify-{uuid4()}"
        try:
            self._service.start_job(
                job_name=job_name,
                media_uri=file_url,
                media_format=media_format_for(file_name),
            )
            logger.info("transcription.started job_name=%s file_name=%s", job_name, file_name)
            return self._wait_for_transcript(job_name)
        finally:
            self._delete_job(job_name)

    def _wait_for_transcript(self, job_name: str) -> str:
        started = self._clock()
        delay = self._initial_poll_seconds
        while self._clock() - started < self._max_wait_seconds:
            state = self._service.get_job(job_name)
            if state.status == JOB_COMPLETED:
                if not state.transcript_uri:
                    raise TranscriptionError("Transcription completed without output")
                return self._fetch_transcript(state.transcript_uri)
            if state.status == JOB_FAILED:
                raise TranscriptionError(state.failure_reason or "Transcription failed. Please try again.")
            self._sleep(delay)
            delay = min(delay * 2, self._max_poll_seconds)

        logger.warning(
            "transcription.timed_out job_name=%s waited_s=%.1f",
            job_name,
            self._clock() - started,
        )
        raise TranscriptionTimeoutError("Transcription is taking longer than expected. Please try again.")

    def _fetch_transcript(self, transcript_uri: str) -> str:
        response = self._transport.request("GET", transcript_uri)
        if not response.ok:
            raise TranscriptionError("Unable to fetch transcription output")
        try:
            payload = response.json() or {}
        except ValueError as exc:
            raise TranscriptionError("Transcription output was not valid JSON") from exc
        transcripts = (payload.get("results") or {}).get("transcripts") or []
        if not transcripts:
            return ""
        return transcripts[0].get("transcript") or ""

    def _delete_job(self, job_name: str) -> None:
        try:
            self._service.delete_job(job_name)
        except Exception:
            logger.exception("transcription.cleanup_failed job_name=%s", job_name)
