"""Extraction worker process entrypoint."""

from __future__ import annotations

import logging
from functools import partial

from extractify.config import Settings, get_settings
from extractify.job_queue import QUEUE_NAME, ExtractionQueue, JobHandler
from extractify.schemas.extraction import ExtractionJobPayload

logger = logging.getLogger(__name__)


def build_job_handler(settings: Settings) -> JobHandler:
    """Wire the run state machine to real storage, strategies, LLM client and delivery."""

    from extractify.db.session import SessionLocal
    from extractify.extraction.llm_extractor import get_default_llm_client
    from extractify.extraction.strategy_factory import get_default_strategy_factory
    from extractify.integrations.deliver import deliver_integrations
    from extractify.services.extraction_worker import process_extraction
    from extractify.services.storage import S3ObjectStorage

    storage = S3ObjectStorage.from_settings(settings)
    strategies = get_default_strategy_factory(settings)
    deliver = partial(deliver_integrations, session_factory=SessionLocal, settings=settings)

    def handle(job: ExtractionJobPayload) -> None:
        process_extraction(
            job,
            session_factory=SessionLocal,
            storage=storage,
            strategies=strategies,
            llm_client_factory=lambda model_id: get_default_llm_client(model_id, settings),
            deliver=deliver,
            cleanup_source_files=settings.cleanup_source_files,
        )

    return handle


def main() -> None:
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    queue = ExtractionQueue(settings, build_job_handler(settings))
    app = queue.start()
    logger.info("worker.started queue=%s concurrency=%d", QUEUE_NAME, settings.worker_concurrency)
    try:
        app.worker_main(
            [
                "worker",
                f"--queues={QUEUE_NAME}",
                f"--concurrency={settings.worker_concurrency}",
                f"--loglevel={settings.log_level.upper()}",
            ]
        )
    finally:
        queue.stop()
        logger.info("worker.stopped")


if __name__ == "__main__":
    main()
