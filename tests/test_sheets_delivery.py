"""Tests for Google Sheets delivery retries, header reconciliation and token write-back."""

from __future__ import annotations

import base64
import gc
import json
import os
import time
import unittest
from dataclasses import dataclass, field
from datetime import datetime, timezone
from urllib.parse import parse_qs, unquote

import httplib2
from sqlalchemy import create_engine, delete
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from extractify.config import Settings
from extractify.integrations import sheets_delivery
from extractify.integrations.credentials import decrypt_secret, encrypt_secret
from extractify.integrations.sheets_client import build_sheets_service
from extractify.integrations.sheets_delivery import SheetsDeliverer
from extractify.integrations.sheets_oauth import GOOGLE_TOKEN_URL, ResolvedAccessToken
from extractify.integrations.types import CompletedExtraction, DeliveryTarget
from extractify.models.base import Base
from extractify.models.integration import IntegrationTarget
from extractify.schemas.integrations import SheetsConfig, SheetsOAuth


def _json(status: int, payload: dict | None = None) -> tuple[int, bytes]:
    return status, json.dumps(payload or {}).encode("utf-8")


class _SheetsHttp:
    """httplib2-style connection answering Sheets values calls from per-route queues."""

    def __init__(self) -> None:
        self.calls: list[dict] = []
        self.routes: dict[str, list[tuple[int, bytes]]] = {}

    def queue(self, route: str, *responses: tuple[int, bytes]) -> None:
        self.routes.setdefault(route, []).extend(responses)

    def request(self, uri, method="GET", body=None, headers=None, redirections=5, connection_type=None, **kwargs):  # noqa: ANN001, ANN003
        _ = (redirections, connection_type, kwargs)
        route = "append" if method == "POST" else "write_header" if method == "PUT" else "read_header"
        self.calls.append(
            {
                "route": route,
                "url": unquote(uri),
                "headers": {key.lower(): value for key, value in (headers or {}).items()},
                "body": json.loads(body) if body else None,
            }
        )
        responses = self.routes.get(route) or [_json(200)]
        status, content = responses.pop(0) if len(responses) > 1 else responses[0]
        return httplib2.Response({"status": str(status)}), content

    def count(self, route: str) -> int:
        return sum(1 for call in self.calls if call["route"] == route)


@dataclass
class _AuthResponse:
    status: int
    data: bytes
    headers: dict = field(default_factory=dict)


class _TokenEndpoint:
    """google-auth request callable standing in for the OAuth token endpoint."""

    def __init__(self) -> None:
        self.calls: list[dict] = []
        self.responses: list[tuple[int, bytes]] = []

    def queue(self, *responses: tuple[int, bytes]) -> None:
        self.responses.extend(responses)

    def __call__(self, url, method="GET", body=None, headers=None, timeout=None, **kwargs):  # noqa: ANN001, ANN003
        _ = (headers, timeout, kwargs)
        self.calls.append({"url": url, "method": method, "form": parse_qs(body.decode("utf-8"))})
        status, data = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        return _AuthResponse(status=status, data=data)


class SheetsDeliveryTests(unittest.TestCase):
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
            db.execute(delete(IntegrationTarget))
            db.commit()
        self.key = os.urandom(32)
        self.settings = Settings(
            integration_secrets_key=base64.b64encode(self.key).decode("ascii"),
            google_client_id="client-id",
            google_client_secret="client-secret",
            sheets_max_attempts=3,
            sheets_backoff_base_seconds=0.25,
            sheets_backoff_jitter_seconds=0.15,
        )
        self.http = _SheetsHttp()
        self.token_endpoint = _TokenEndpoint()
        self.sleeps: list[float] = []
        self.extraction = CompletedExtraction(
            id="run-1",
            owner_id="owner-1",
            model_id="model-1",
            model_version_id="version-1",
            llm_model_id="gpt-4o-mini",
            created_at=datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc),
            completed_at=datetime(2026, 10, 19, 9, 1, tzinfo=timezone.utc),
            result={
                "invoiceNumber": {"value": "INV-1", "confidence": 0.9},
                "total": {"value": 1510.5, "confidence": 0.8},
            },
            usage={"inputTokens": 10, "outputTokens": 5},
        )

    def _target(self, *, access_token_expires_at: int, mapping_version: str = "version-1") -> DeliveryTarget:
        oauth = SheetsOAuth(
            account_email="ops@example.com",
            refresh_token=encrypt_secret("refresh-1", self.key),
            access_token=encrypt_secret("cached-token", self.key),
            access_token_expires_at=access_token_expires_at,
        )
        config = {
            "spreadsheetId": "sheet-123",
            "sheetName": "Invoices",
            "headerRow": 1,
            "oauth": oauth.model_dump(by_alias=True, mode="json", exclude_none=True),
            "modelMappings": [
                {
                    "modelId": "model-1",
                    "modelVersionId": mapping_version,
                    "columns": [
                        {"columnName": "Invoice", "sourcePath": "invoiceNumber"},
                        {"columnName": "Total", "sourcePath": "total"},
                    ],
                }
            ],
        }
        with self.SessionLocal() as db:
            row = IntegrationTarget(owner_id="owner-1", type="sheets", name="Ledger", config=config)
            db.add(row)
            db.commit()
            db.refresh(row)
            return DeliveryTarget(
                id=row.id,
                owner_id=row.owner_id,
                type=row.type,
                name=row.name,
                config=dict(row.config),
                config_version=row.config_version,
            )

    def _deliverer(self) -> SheetsDeliverer:
        return SheetsDeliverer(
            self.SessionLocal,
            settings=self.settings,
            auth_request=self.token_endpoint,
            service_factory=lambda token: build_sheets_service(token, http=self.http),
            sleep=self.sleeps.append,
            jitter=lambda: 0.0,
        )

    def _stored_oauth(self, target_id: str) -> tuple[int, SheetsOAuth]:
        with self.SessionLocal() as db:
            stored = db.get(IntegrationTarget, target_id)
            assert stored is not None
            return stored.config_version, SheetsOAuth.model_validate(stored.config["oauth"])

    @staticmethod
    def _valid_until() -> int:
        return int(time.time() * 1000) + 3_600_000

    @staticmethod
    def _near_expiry() -> int:
        return int(time.time() * 1000) + 10_000

    def test_three_server_errors_stop_after_exactly_three_attempts(self) -> None:
        target = self._target(access_token_expires_at=self._valid_until())
        self.http.queue("read_header", _json(500, {"error": {"code": 500, "message": "Backend Error"}}))

        result = self._deliverer().deliver(target, self.extraction)

        self.assertFalse(result.ok)
        self.assertEqual(result.status, 500)
        self.assertEqual(result.error_message, "Backend Error")
        self.assertEqual(self.http.count("read_header"), 3)
        self.assertEqual(self.http.count("append"), 0)
        self.assertEqual(self.token_endpoint.calls, [])
        self.assertEqual(self.sleeps, [0.25, 0.5])

    def test_rate_limit_is_retried_then_succeeds(self) -> None:
        target = self._target(access_token_expires_at=self._valid_until())
        self.http.queue(
            "read_header",
            _json(429, {"error": {"code": 429, "message": "Quota exceeded"}}),
            _json(200, {"values": [["Invoice", "Total"]]}),
        )

        result = self._deliverer().deliver(target, self.extraction)

        self.assertTrue(result.ok)
        self.assertEqual(self.http.count("read_header"), 2)
        self.assertEqual(self.sleeps, [0.25])

    def test_header_is_extended_and_row_appended_in_header_order(self) -> None:
        target = self._target(access_token_expires_at=self._valid_until())
        self.http.queue("read_header", _json(200, {"values": [["Date", "Invoice"]]}))

        result = self._deliverer().deliver(target, self.extraction)

        self.assertTrue(result.ok)
        self.assertEqual(result.status, 200)
        read = next(call for call in self.http.calls if call["route"] == "read_header")
        self.assertIn("/v4/spreadsheets/sheet-123/values/'Invoices'!1:1", read["url"])
        write = next(call for call in self.http.calls if call["route"] == "write_header")
        self.assertEqual(write["body"]["values"], [["Date", "Invoice", "Total"]])
        self.assertIn("valueInputOption=RAW", write["url"])
        append = next(call for call in self.http.calls if call["route"] == "append")
        self.assertEqual(append["body"]["values"], [["", "INV-1", "1510.5"]])
        self.assertIn("'Invoices'!A1:append", append["url"])
        self.assertIn("insertDataOption=INSERT_ROWS", append["url"])
        self.assertIn("valueInputOption=RAW", append["url"])
        self.assertEqual(append["headers"]["authorization"], "Bearer cached-token")
        self.assertEqual(self.sleeps, [])

    def test_complete_header_is_not_rewritten(self) -> None:
        target = self._target(access_token_expires_at=self._valid_until())
        self.http.queue("read_header", _json(200, {"values": [["Invoice", "Total"]]}))

        self.assertTrue(self._deliverer().deliver(target, self.extraction).ok)
        self.assertEqual(self.http.count("write_header"), 0)
        self.assertEqual(self.http.count("append"), 1)

    def test_unauthorized_forces_refresh_and_persists_rotated_tokens(self) -> None:
        target = self._target(access_token_expires_at=self._valid_until())
        self.http.queue(
            "read_header",
            _json(401, {"error": {"code": 401, "message": "Invalid Credentials"}}),
            _json(200, {"values": [["Invoice", "Total"]]}),
        )
        self.token_endpoint.queue(
            _json(200, {"access_token": "fresh-token", "expires_in": 3600, "refresh_token": "refresh-2"})
        )

        result = self._deliverer().deliver(target, self.extraction)

        self.assertTrue(result.ok)
        self.assertEqual(len(self.token_endpoint.calls), 1)
        self.assertEqual(self.token_endpoint.calls[0]["url"], GOOGLE_TOKEN_URL)
        self.assertEqual(self.token_endpoint.calls[0]["form"]["refresh_token"], ["refresh-1"])
        self.assertEqual(self.sleeps, [0.25])
        append = next(call for call in self.http.calls if call["route"] == "append")
        self.assertEqual(append["headers"]["authorization"], "Bearer fresh-token")

        version, oauth = self._stored_oauth(target.id)
        self.assertEqual(version, 2)
        self.assertEqual(decrypt_secret(oauth.access_token, self.key), "fresh-token")
        self.assertEqual(decrypt_secret(oauth.refresh_token, self.key), "refresh-2")
        self.assertEqual(oauth.account_email, "ops@example.com")

    def test_expired_cached_token_refreshes_before_first_call(self) -> None:
        target = self._target(access_token_expires_at=self._near_expiry())
        self.token_endpoint.queue(_json(200, {"access_token": "fresh-token", "expires_in": 3600}))
        self.http.queue("read_header", _json(200, {"values": [["Invoice", "Total"]]}))

        self.assertTrue(self._deliverer().deliver(target, self.extraction).ok)
        self.assertEqual(len(self.token_endpoint.calls), 1)
        self.assertEqual(self.http.calls[0]["headers"]["authorization"], "Bearer fresh-token")
        version, oauth = self._stored_oauth(target.id)
        self.assertEqual(version, 2)
        self.assertEqual(decrypt_secret(oauth.refresh_token, self.key), "refresh-1")

    def test_refreshed_token_is_stored_when_sheets_returns_a_non_json_page(self) -> None:
        target = self._target(access_token_expires_at=self._near_expiry())
        self.token_endpoint.queue(_json(200, {"access_token": "fresh-token", "expires_in": 3600}))
        self.http.queue("read_header", (200, b"<html>proxy page</html>"))

        result = self._deliverer().deliver(target, self.extraction)

        self.assertFalse(result.ok)
        self.assertIsNone(result.status)
        self.assertEqual(result.error_message, "Google Sheets returned a malformed response")
        self.assertEqual(self.http.count("read_header"), 1)
        self.assertEqual(self.http.count("append"), 0)
        version, oauth = self._stored_oauth(target.id)
        self.assertEqual(version, 2)
        self.assertEqual(decrypt_secret(oauth.access_token, self.key), "fresh-token")

    def test_json_array_body_is_a_malformed_response(self) -> None:
        target = self._target(access_token_expires_at=self._valid_until())
        self.http.queue("read_header", (200, b"[]"))

        result = self._deliverer().deliver(target, self.extraction)

        self.assertFalse(result.ok)
        self.assertEqual(result.error_message, "Google Sheets returned a malformed response")
        version, _ = self._stored_oauth(target.id)
        self.assertEqual(version, 1)

    def test_stale_config_version_keeps_newer_stored_token(self) -> None:
        target = self._target(access_token_expires_at=self._near_expiry())
        with self.SessionLocal() as db:
            stored = db.get(IntegrationTarget, target.id)
            assert stored is not None
            stored.config_version = 5
            db.commit()
        config = SheetsConfig.model_validate(target.config)

        with self.assertLogs("extractify.integrations.sheets_delivery", level="WARNING") as logs:
            self._deliverer()._persist_oauth(target, config, _refreshed(self.key))  # noqa: SLF001
        self.assertIn("sheets.oauth_persist_conflict", logs.output[0])
        with self.SessionLocal() as db:
            stored = db.get(IntegrationTarget, target.id)
            assert stored is not None
            self.assertEqual(stored.config_version, 5)
            self.assertEqual(stored.config["oauth"], target.config["oauth"])

    def test_missing_mapping_or_oauth_fails_without_network(self) -> None:
        target = self._target(access_token_expires_at=self._valid_until(), mapping_version="other-version")
        result = self._deliverer().deliver(target, self.extraction)
        self.assertFalse(result.ok)
        self.assertEqual(result.error_message, "No Sheets mapping configured for this model version")

        with self.SessionLocal() as db:
            stored = db.get(IntegrationTarget, target.id)
            assert stored is not None
            config = dict(stored.config)
            config.pop("oauth")
            stored.config = config
            db.commit()
        result = self._deliverer().deliver(target, self.extraction)
        self.assertEqual(result.error_message, "Google account is not connected")
        self.assertEqual(self.http.calls, [])
        self.assertEqual(self.token_endpoint.calls, [])


class TargetLockTests(unittest.TestCase):
    def test_lock_is_shared_while_held(self) -> None:
        lock = sheets_delivery._lock_for_target("target-held")  # noqa: SLF001
        self.assertIs(sheets_delivery._lock_for_target("target-held"), lock)  # noqa: SLF001
        self.assertIn("target-held", sheets_delivery._target_locks)  # noqa: SLF001

    def test_lock_entry_is_released_after_use(self) -> None:
        lock = sheets_delivery._lock_for_target("target-released")  # noqa: SLF001
        with lock:
            pass
        del lock
        gc.collect()
        self.assertNotIn("target-released", sheets_delivery._target_locks)  # noqa: SLF001


def _refreshed(key: bytes) -> ResolvedAccessToken:
    oauth = SheetsOAuth(
        refresh_token=encrypt_secret("refresh-1", key),
        access_token=encrypt_secret("fresh-token", key),
        access_token_expires_at=int(time.time() * 1000) + 3_600_000,
    )
    return ResolvedAccessToken(access_token="fresh-token", oauth=oauth, refreshed=True)


if __name__ == "__main__":
    unittest.main()
