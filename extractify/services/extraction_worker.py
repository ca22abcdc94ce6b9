"""Extraction run state machine executed for each queued job."""

from __future__ import annotations

import logging
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from time import perf_counter
from typing import Any

from sqlalchemy.orm import Session

from extractify.errors import ModelVersionNotFoundError
from extractify.extraction.llm_extractor import LLMClient, LLMExtractor
from extractify.extraction.strategy_factory import ExtractionStrategyFactory
from extractify.extraction.strategy_interface import SUPPORTED_AUDIO_TYPES
from extractify.extraction.types import DocumentText, DownloadedFile, ExtractionOutput
from extractify.schemas.extraction import ExtractionJobFile, ExtractionJobPayload
from extractify.services.extractions import (
    ModelVersionSnapshot,
    get_model_version,
    set_extraction_error,
    update_extraction_run,
)
from extractify.services.storage import ObjectStorage

logger = logging.getLogger(__name__)

DeliverFn = Callable[..., Any]


def process_extraction(
    job: ExtractionJobPayload,
    *,
    session_factory: Callable[[], Session],
    storage: ObjectStorage,
    strategies: ExtractionStrategyFactory,
    llm_client_factory: Callable[[str], LLMClient],
    deliver: DeliverFn | None = None,
    max_download_workers: int = 4,
    cleanup_source_files: bool = True,
) -> ExtractionOutput:
    """Move a run from ``processing`` to ``completed`` or ``failed``.

    Failures are recorded on the run and re-raised so the queue can apply its retry
    policy. Delivery and source-file cleanup only run after completion and never raise.
    """

    total_started = perf_counter()
    try:
        with session_factory() as db:
            model_version = get_model_version(db, job.model_version_id)
        if model_version is None:
            raise ModelVersionNotFoundError(job.model_version_id)

        started = perf_counter()
        downloaded = _download_files(storage, job.files, max_workers=max_download_workers)
        download_ms = (perf_counter() - started) * 1000.0

        started = perf_counter()
        documents = _extract_documents(storage, strategies, downloaded)
        text_ms = (perf_counter() - started) * 1000.0

        started = perf_counter()
        output = _run_llm(model_version, documents, llm_client_factory(job.llm_model_id))
        llm_ms = (perf_counter() - started) * 1000.0

        with session_factory() as db:
            update_extraction_run(
                db,
                job.extraction_id,
                status="completed",
                result=output.result,
                usage=output.usage.as_dict() if output.usage else None,
                completed_at=datetime.now(timezone.utc),
            )
        logger.info(
            (
                "extraction.completed extraction_id=%s files=%d download_ms=%.2f "
                "text_ms=%.2f llm_ms=%.2f total_ms=%.2f"
            ),
            job.extraction_id,
            len(job.files),
            download_ms,
            text_ms,
            llm_ms,
            (perf_counter() - total_started) * 1000.0,
        )
    except Exception as exc:
        logger.exception(
            "extraction.failed extraction_id=%s elapsed_ms=%.2f",
            job.extraction_id,
            (perf_counter() - total_started) * 1000.0,
        )
        _mark_failed(session_factory, job, str(exc) or "Unknown error occurred")
        raise

    if deliver is not None and job.integration_target_ids:
        try:
            deliver(
                owner_id=job.owner_id,
                extraction_id=job.extraction_id,
                target_ids=list(job.integration_target_ids),
            )
        except Exception:
            logger.exception("extraction.delivery_failed extraction_id=%s", job.extraction_id)

    if cleanup_source_files:
        _cleanup_files(storage, job)
    return output


def _download_files(
    storage: ObjectStorage,
    files: list[ExtractionJobFile],
    *,
    max_workers: int,
) -> list[DownloadedFile]:
    if not files:
        return []

    def _download(file: ExtractionJobFile) -> DownloadedFile:
        return DownloadedFile(
            file_name=file.file_name,
            file_type=file.file_type,
            data=storage.download(file.file_url),
            source_order=file.source_order,
            file_url=file.file_url,
        )

    workers = max(1, min(max_workers, len(files)))
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="download") as executor:
        return list(executor.map(_download, files))


def _extract_documents(
    storage: ObjectStorage,
    strategies: ExtractionStrategyFactory,
    files: list[DownloadedFile],
) -> list[DocumentText]:
    documents: list[DocumentText] = []
    for file in sorted(files, key=lambda item: item.source_order):
        strategy = strategies.get_strategy(file.file_type)
        file_url = file.file_url
        if file_url and file.file_type in SUPPORTED_AUDIO_TYPES:
            file_url = storage.to_media_uri(file_url)
        text = strategy.extract_text(file.data, file.file_name, file_url)
        documents.append(DocumentText(file_name=file.file_name, text=text, source_order=file.source_order))
    return documents


def _run_llm(model_version: ModelVersionSnapshot, documents: list[DocumentText], client: LLMClient) -> ExtractionOutput:
    extractor = LLMExtractor(client)
    return extractor.extract(documents, model_version.attributes, system_prompt=model_version.system_prompt)


def _mark_failed(session_factory: Callable[[], Session], job: ExtractionJobPayload, message: str) -> None:
    with session_factory() as db:
        set_extraction_error(db, extraction_id=job.extraction_id, owner_id=job.owner_id, message=message)
        update_extraction_run(
            db,
            job.extraction_id,
            status="failed",
            completed_at=datetime.now(timezone.utc),
        )


def _cleanup_files(storage: ObjectStorage, job: ExtractionJobPayload) -> None:
    for file in job.files:
        try:
            storage.delete(file.file_url)
        except Exception:
            logger.exception(
                "extraction.cleanup_failed extraction_id=%s file_url=%s",
                job.extraction_id,
                file.file_url,
            )
