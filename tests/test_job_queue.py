"""Tests for the Celery-backed extraction queue handle."""

from __future__ import annotations

import unittest
from unittest import mock

from extractify.config import Settings
from extractify.errors import ExtractifyError, ModelVersionNotFoundError, PreconditionError
from extractify.job_queue import QUEUE_NAME, TASK_NAME, ExtractionQueue, _redact
from extractify.schemas.extraction import ExtractionJobFile, ExtractionJobPayload


def _job() -> ExtractionJobPayload:
    return ExtractionJobPayload(
        extraction_id="run-1",
        owner_id="owner-1",
        model_id="model-1",
        model_version_id="version-1",
        llm_model_id="gpt-4o-mini",
        integration_target_ids=["target-1"],
        files=[
            ExtractionJobFile(
                file_name="a.pdf",
                file_type="application/pdf",
                file_size=12,
                file_url="uploads/a.pdf",
                source_order=0,
            )
        ],
    )


class ExtractionQueueTests(unittest.TestCase):
    def setUp(self) -> None:
        self.settings = Settings(
            redis_url="redis://user:pw@localhost:6379/3",
            queue_retry_limit=4,
            queue_job_expire_seconds=3600,
        )
        self.handled: list[ExtractionJobPayload] = []

    def test_enqueue_before_start_raises(self) -> None:
        with self.assertRaises(ExtractifyError):
            ExtractionQueue(self.settings).enqueue(_job())

    def test_enqueue_publishes_camel_case_payload(self) -> None:
        queue = ExtractionQueue(self.settings)
        app = queue.start(verify_connection=False)

        with mock.patch.object(app, "send_task", return_value=mock.Mock(id="job-42")) as send_task:
            job_id = queue.enqueue(_job())

        self.assertEqual(job_id, "job-42")
        args, kwargs = send_task.call_args
        self.assertEqual(args[0], TASK_NAME)
        self.assertEqual(kwargs["queue"], QUEUE_NAME)
        self.assertEqual(kwargs["expires"], 3600)
        body = kwargs["args"][0]
        self.assertEqual(body["extractionId"], "run-1")
        self.assertEqual(body["integrationTargetIds"], ["target-1"])
        self.assertEqual(body["files"][0]["sourceOrder"], 0)
        queue.stop()

    def test_worker_task_validates_payload_and_calls_handler(self) -> None:
        queue = ExtractionQueue(self.settings, handler=self.handled.append)
        app = queue.start(verify_connection=False)
        task = app.tasks[TASK_NAME]

        task.run(_job().model_dump(by_alias=True, mode="json"))

        self.assertEqual(len(self.handled), 1)
        self.assertEqual(self.handled[0].files[0].file_url, "uploads/a.pdf")
        self.assertEqual(task.max_retries, 4)
        self.assertEqual(app.conf.task_default_queue, QUEUE_NAME)
        self.assertTrue(app.conf.task_acks_late)
        queue.stop()

    def test_precondition_failures_are_not_retried(self) -> None:
        def _fail(job: ExtractionJobPayload) -> None:
            raise ModelVersionNotFoundError(job.model_version_id)

        queue = ExtractionQueue(self.settings, handler=_fail)
        task = queue.start(verify_connection=False).tasks[TASK_NAME]

        self.assertIn(PreconditionError, task.dont_autoretry_for)
        with mock.patch.object(task, "retry") as retry:
            with self.assertRaises(ModelVersionNotFoundError):
                task.run(_job().model_dump(by_alias=True, mode="json"))
        retry.assert_not_called()
        queue.stop()

    def test_stop_is_idempotent(self) -> None:
        queue = ExtractionQueue(self.settings)
        queue.start(verify_connection=False)
        queue.stop()
        queue.stop()
        with self.assertRaises(ExtractifyError):
            _ = queue.app

    def test_broker_credentials_are_redacted(self) -> None:
        self.assertEqual(_redact("redis://user:pw@localhost:6379/3"), "redis://***@localhost:6379/3")
        self.assertEqual(_redact("redis://localhost:6379/0"), "redis://localhost:6379/0")


if __name__ == "__main__":
    unittest.main()
