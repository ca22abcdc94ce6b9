"""Celery-backed extraction job queue."""

from __future__ import annotations

import logging
from collections.abc import Callable

from celery import Celery

from extractify.config import Settings, get_settings
from extractify.errors import ExtractifyError, PreconditionError
from extractify.schemas.extraction import ExtractionJobPayload

logger = logging.getLogger(__name__)

TASK_NAME = "extractify.process_extraction"
QUEUE_NAME = "extraction"

JobHandler = Callable[[ExtractionJobPayload], object]


class ExtractionQueue:
    """Explicit queue handle; producers call ``enqueue`` and workers register ``handler``."""

    def __init__(self, settings: Settings | None = None, handler: JobHandler | None = None) -> None:
        self._settings = settings or get_settings()
        self._handler = handler
        self._app: Celery | None = None

    @property
    def app(self) -> Celery:
        if self._app is None:
            raise ExtractifyError("Extraction queue is not started")
        return self._app

    def start(self, *, verify_connection: bool = True) -> Celery:
        """Configure the Celery app, register the job task and check the broker."""

        if self._app is not None:
            return self._app

        settings = self._settings
        app = Celery("extractify", broker=settings.redis_url)
        app.conf.update(
            task_serializer="json",
            accept_content=["json"],
            timezone="UTC",
            enable_utc=True,
            task_ignore_result=True,
            task_acks_late=True,
            task_reject_on_worker_lost=True,
            task_time_limit=settings.task_time_limit_seconds,
            task_default_queue=QUEUE_NAME,
            task_routes={TASK_NAME: {"queue": QUEUE_NAME}},
            worker_prefetch_multiplier=1,
            worker_concurrency=settings.worker_concurrency,
            worker_soft_shutdown_timeout=settings.queue_shutdown_timeout_seconds,
            broker_connection_retry_on_startup=True,
        )
        if self._handler is not None:
            self._register_task(app, self._handler)

        if verify_connection:
            with app.connection_for_write() as connection:
                connection.ensure_connection(max_retries=1)
        self._app = app
        logger.info("queue.started broker=%s handler=%s", _redact(settings.redis_url), self._handler is not None)
        return app

    def _register_task(self, app: Celery, handler: JobHandler) -> None:
        settings = self._settings

        @app.task(
            name=TASK_NAME,
            bind=True,
            autoretry_for=(Exception,),
            dont_autoretry_for=(PreconditionError,),
            max_retries=settings.queue_retry_limit,
            retry_backoff=settings.queue_retry_delay_seconds,
            retry_backoff_max=settings.queue_retry_backoff_max_seconds,
            retry_jitter=True,
        )
        def process_extraction_task(task, payload: dict) -> None:
            job = ExtractionJobPayload.model_validate(payload)
            logger.info(
                "queue.job_received task_id=%s extraction_id=%s attempt=%d",
                task.request.id,
                job.extraction_id,
                task.request.retries + 1,
            )
            handler(job)

    def enqueue(self, job: ExtractionJobPayload) -> str:
        """Publish a job and return its id."""

        result = self.app.send_task(
            TASK_NAME,
            args=[job.model_dump(by_alias=True, mode="json")],
            queue=QUEUE_NAME,
            expires=self._settings.queue_job_expire_seconds,
        )
        logger.info("queue.enqueued task_id=%s extraction_id=%s", result.id, job.extraction_id)
        return str(result.id)

    def stop(self) -> None:
        """Release broker connections held by this handle."""

        if self._app is None:
            return
        try:
            self._app.close()
        finally:
            self._app = None
            logger.info("queue.stopped")


def _redact(url: str) -> str:
    scheme, sep, rest = url.partition("://")
    if not sep or "@" not in rest:
        return url
    return f"{scheme}://***@{rest.split('@', 1)[1]}"
