"""boto3-backed OCR and transcription services."""

from __future__ import annotations

from typing import Any

import boto3

from extractify.extraction.audio_strategy import TranscriptionJobState


class TextractTextDetectionService:
    def __init__(self, client: Any | None = None, *, region: str | None = None) -> None:
        self._client = client or boto3.client("textract", region_name=region)

    def detect_document_text(self, data: bytes) -> list[dict[str, Any]]:
        response = self._client.detect_document_text(Document={"Bytes": data})
        return list(response.get("Blocks") or [])


class TranscribeService:
    def __init__(self, client: Any | None = None, *, region: str | None = None) -> None:
        self._client = client or boto3.client("transcribe", region_name=region)

    def start_job(self, *, job_name: str, media_uri: str, media_format: str) -> None:
        self._client.start_transcription_job(
            TranscriptionJobName=job_name,
            IdentifyLanguage=True,
            MediaFormat=media_format,
            Media={"MediaFileUri": media_uri},
        )

    def get_job(self, job_name: str) -> TranscriptionJobState:
        response = self._client.get_transcription_job(TranscriptionJobName=job_name)
        job = response.get("TranscriptionJob") or {}
        return TranscriptionJobState(
            status=str(job.get("TranscriptionJobStatus") or ""),
            transcript_uri=(job.get("Transcript") or {}).get("TranscriptFileUri"),
            failure_reason=job.get("FailureReason"),
        )

    def delete_job(self, job_name: str) -> None:
        self._client.delete_transcription_job(TranscriptionJobName=job_name)
