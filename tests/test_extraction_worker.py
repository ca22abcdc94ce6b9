"""End-to-end tests for the extraction run state machine with stubbed collaborators."""

from __future__ import annotations

import json
import unittest
from functools import partial

import fitz
from sqlalchemy import create_engine, delete
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from extractify.config import Settings
from extractify.errors import ModelVersionNotFoundError, TranscriptionTimeoutError
from extractify.extraction.audio_strategy import AudioExtractionStrategy, TranscriptionJobState
from extractify.extraction.pdf_strategy import PDFExtractionStrategy
from extractify.extraction.strategy_factory import ExtractionStrategyFactory
from extractify.extraction.types import ExtractionOutput, LLMResponse, TokenUsage
from extractify.http_transport import HttpResponse
from extractify.integrations.deliver import deliver_integrations
from extractify.integrations.webhook import SIGNATURE_HEADER
from extractify.models.attribute_model import AttributeModel, AttributeModelVersion
from extractify.models.base import Base
from extractify.models.extraction import ExtractionError, ExtractionInput, ExtractionRun
from extractify.models.integration import IntegrationDelivery, IntegrationTarget
from extractify.schemas.extraction import ExtractionJobFile, ExtractionJobPayload
from extractify.services.extraction_worker import process_extraction
from extractify.services.extractions import get_latest_extraction_error

_ATTRIBUTES = [
    {"id": "a1", "name": "invoiceNumber", "type": "string"},
    {
        "id": "a2",
        "name": "vendor",
        "type": "record",
        "children": [
            {"id": "a2-1", "name": "name", "type": "string"},
            {
                "id": "a2-2",
                "name": "address",
                "type": "record",
                "children": [{"id": "a2-2-1", "name": "city", "type": "string"}],
            },
        ],
    },
]

_LLM_PAYLOAD = {
    "invoiceNumber": {"value": "INV-2041", "confidence": 0.97},
    "vendor": {
        "value": {"name": "Acme Supplies", "address": {"city": "Lisbon"}},
        "confidence": 0.88,
    },
}


def _pdf_bytes(text: str) -> bytes:
    doc = fitz.open()
    doc.new_page().insert_text((72, 72), text)
    data = doc.tobytes()
    doc.close()
    return data


class _StubStorage:
    def __init__(self, objects: dict[str, bytes]) -> None:
        self.objects = objects
        self.deleted: list[str] = []

    def download(self, file_url: str) -> bytes:
        return self.objects[file_url]

    def delete(self, file_url: str) -> None:
        self.deleted.append(file_url)

    def to_media_uri(self, file_url: str) -> str:
        return f"s3://uploads/{file_url}"


class _StubLLMClient:
    model = "gpt-4o-mini"

    def __init__(self, payload: dict) -> None:
        self.payload = payload
        self.calls: list[dict] = []

    def extract_structured(self, *, prompt, json_schema, strict=True, system_prompt=None):  # noqa: ANN001
        self.calls.append({"prompt": prompt, "strict": strict, "system_prompt": system_prompt})
        _ = json_schema
        return LLMResponse(payload=self.payload, usage=TokenUsage(input_tokens=120, output_tokens=30))


class _RecordingTransport:
    def __init__(self, status: int = 200) -> None:
        self.status = status
        self.requests: list[dict] = []

    def request(self, method, url, *, headers=None, body=None, timeout=None):  # noqa: ANN001
        _ = timeout
        self.requests.append({"method": method, "url": url, "headers": dict(headers or {}), "body": body})
        return HttpResponse(status=self.status)


class _StuckTranscription:
    def __init__(self) -> None:
        self.started: list[dict] = []
        self.deleted: list[str] = []

    def start_job(self, *, job_name: str, media_uri: str, media_format: str) -> None:
        self.started.append({"job_name": job_name, "media_uri": media_uri, "media_format": media_format})

    def get_job(self, job_name: str) -> TranscriptionJobState:
        _ = job_name
        return TranscriptionJobState(status="IN_PROGRESS")

    def delete_job(self, job_name: str) -> None:
        self.deleted.append(job_name)


class _FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.now += seconds


class ExtractionWorkerTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls) -> None:
        cls.engine = create_engine(
            "sqlite+pysqlite:///:memory:",
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        cls.SessionLocal = sessionmaker(bind=cls.engine, autoflush=False, autocommit=False, future=True)
        Base.metadata.create_all(cls.engine)

    @classmethod
    def tearDownClass(cls) -> None:
        Base.metadata.drop_all(cls.engine)
        cls.engine.dispose()

    def setUp(self) -> None:
        with self.SessionLocal() as db:
            for model in (
                IntegrationDelivery,
                IntegrationTarget,
                ExtractionError,
                ExtractionInput,
                ExtractionRun,
                AttributeModelVersion,
                AttributeModel,
            ):
                db.execute(delete(model))
            model = AttributeModel(owner_id="owner-1", name="Invoices", system_prompt="  Be precise.  ")
            db.add(model)
            db.flush()
            version = AttributeModelVersion(
                model_id=model.id,
                version_number=1,
                attributes=_ATTRIBUTES,
                is_active=True,
            )
            db.add(version)
            db.flush()
            run = ExtractionRun(
                owner_id="owner-1",
                model_id=model.id,
                model_version_id=version.id,
                llm_model_id="gpt-4o-mini",
                status="processing",
            )
            db.add(run)
            target = IntegrationTarget(
                owner_id="owner-1",
                type="webhook",
                name="Ops hook",
                config={"url": "https://hooks.example.com/extractify"},
            )
            db.add(target)
            db.commit()
            self.model_id = model.id
            self.version_id = version.id
            self.run_id = run.id
            self.target_id = target.id

        self.llm = _StubLLMClient(_LLM_PAYLOAD)
        self.webhook_transport = _RecordingTransport()
        self.clock = _FakeClock()
        self.transcription = _StuckTranscription()
        self.strategies = ExtractionStrategyFactory(
            [
                PDFExtractionStrategy(),
                AudioExtractionStrategy(
                    self.transcription,
                    max_wait_seconds=5.0,
                    initial_poll_seconds=1.0,
                    max_poll_seconds=2.0,
                    sleep=self.clock.sleep,
                    clock=self.clock,
                ),
            ]
        )
        self.deliver = partial(
            deliver_integrations,
            session_factory=self.SessionLocal,
            settings=Settings(integration_secrets_key=None),
            transport=self.webhook_transport,
            max_workers=1,
        )

    def _job(self, files: list[ExtractionJobFile], **overrides) -> ExtractionJobPayload:  # noqa: ANN003
        values = {
            "extraction_id": self.run_id,
            "owner_id": "owner-1",
            "model_id": self.model_id,
            "model_version_id": self.version_id,
            "llm_model_id": "gpt-4o-mini",
            "integration_target_ids": [self.target_id],
            "files": files,
        }
        values.update(overrides)
        return ExtractionJobPayload(**values)

    def _process(self, job: ExtractionJobPayload, storage: _StubStorage) -> ExtractionOutput:
        return process_extraction(
            job,
            session_factory=self.SessionLocal,
            storage=storage,
            strategies=self.strategies,
            llm_client_factory=lambda model_id: self.llm,
            deliver=self.deliver,
            max_download_workers=2,
        )

    def test_pdf_job_completes_delivers_and_cleans_up(self) -> None:
        storage = _StubStorage(
            {
                "uploads/b.pdf": _pdf_bytes("Vendor: Acme Supplies, Lisbon"),
                "uploads/a.pdf": _pdf_bytes("Invoice INV-2041"),
            }
        )
        job = self._job(
            [
                ExtractionJobFile(
                    file_name="b.pdf",
                    file_type="application/pdf",
                    file_size=10,
                    file_url="uploads/b.pdf",
                    source_order=1,
                ),
                ExtractionJobFile(
                    file_name="a.pdf",
                    file_type="application/pdf",
                    file_size=10,
                    file_url="uploads/a.pdf",
                    source_order=0,
                ),
            ]
        )

        output = self._process(job, storage)

        self.assertEqual(output.result["vendor"]["value"]["address"]["city"], "Lisbon")
        prompt = self.llm.calls[0]["prompt"]
        self.assertLess(prompt.index("a.pdf"), prompt.index("b.pdf"))
        self.assertEqual(self.llm.calls[0]["system_prompt"], "Be precise.")

        with self.SessionLocal() as db:
            run = db.get(ExtractionRun, self.run_id)
            assert run is not None
            self.assertEqual(run.status, "completed")
            self.assertIsNotNone(run.completed_at)
            self.assertEqual(run.usage, {"inputTokens": 120, "outputTokens": 30})
            self.assertEqual(set(run.result["vendor"]["value"]), {"name", "address"})
            deliveries = db.query(IntegrationDelivery).all()
            self.assertEqual(len(deliveries), 1)
            self.assertEqual(deliveries[0].status, "succeeded")
            self.assertEqual(deliveries[0].response_status, 200)

        self.assertEqual(len(self.webhook_transport.requests), 1)
        sent = self.webhook_transport.requests[0]
        self.assertNotIn(SIGNATURE_HEADER, sent["headers"])
        body = json.loads(sent["body"])
        self.assertEqual(body["event"], "extraction.completed")
        self.assertEqual(body["extraction"]["usage"]["totalTokens"], 150)
        self.assertEqual(body["result"]["invoiceNumber"]["value"], "INV-2041")
        self.assertEqual(sorted(storage.deleted), ["uploads/a.pdf", "uploads/b.pdf"])

    def test_job_without_targets_skips_delivery(self) -> None:
        storage = _StubStorage({"uploads/a.pdf": _pdf_bytes("Invoice INV-2041")})
        job = self._job(
            [
                ExtractionJobFile(
                    file_name="a.pdf",
                    file_type="application/pdf",
                    file_size=10,
                    file_url="uploads/a.pdf",
                    source_order=0,
                )
            ],
            integration_target_ids=None,
        )

        self._process(job, storage)

        self.assertEqual(self.webhook_transport.requests, [])
        with self.SessionLocal() as db:
            self.assertEqual(db.query(IntegrationDelivery).count(), 0)

    def test_stuck_transcription_fails_run_and_keeps_source_files(self) -> None:
        storage = _StubStorage({"uploads/call.m4a": b"audio"})
        job = self._job(
            [
                ExtractionJobFile(
                    file_name="call.m4a",
                    file_type="audio/x-m4a",
                    file_size=5,
                    file_url="uploads/call.m4a",
                    source_order=0,
                )
            ]
        )

        with self.assertRaises(TranscriptionTimeoutError):
            self._process(job, storage)

        self.assertEqual(self.transcription.started[0]["media_uri"], "s3://uploads/uploads/call.m4a")
        self.assertEqual(self.transcription.started[0]["media_format"], "mp4")
        self.assertEqual(len(self.transcription.deleted), 1)
        self.assertEqual(storage.deleted, [])
        self.assertEqual(self.llm.calls, [])
        with self.SessionLocal() as db:
            run = db.get(ExtractionRun, self.run_id)
            assert run is not None
            self.assertEqual(run.status, "failed")
            self.assertIsNotNone(run.completed_at)
            error = get_latest_extraction_error(db, self.run_id)
            assert error is not None
            self.assertIn("longer than expected", error.message)
            self.assertEqual(db.query(IntegrationDelivery).count(), 0)

    def test_missing_model_version_fails_run(self) -> None:
        storage = _StubStorage({})
        job = self._job([], model_version_id="does-not-exist")

        with self.assertRaises(ModelVersionNotFoundError):
            self._process(job, storage)

        with self.SessionLocal() as db:
            run = db.get(ExtractionRun, self.run_id)
            assert run is not None
            self.assertEqual(run.status, "failed")
            self.assertIsNotNone(get_latest_extraction_error(db, self.run_id))

    def test_repeated_failure_keeps_single_error_record(self) -> None:
        job = self._job([], model_version_id="does-not-exist")
        for _ in range(2):
            with self.assertRaises(ModelVersionNotFoundError):
                self._process(job, _StubStorage({}))

        with self.SessionLocal() as db:
            self.assertEqual(db.query(ExtractionError).filter_by(extraction_id=self.run_id).count(), 1)


if __name__ == "__main__":
    unittest.main()
