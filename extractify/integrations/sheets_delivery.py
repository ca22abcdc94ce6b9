"""Append completed extraction results to a Google Sheet with bounded retries."""

from __future__ import annotations

import logging
import random
import threading
import time
import weakref
from collections.abc import Callable
from typing import Any

from google.auth.transport import Request as AuthRequest
from googleapiclient.discovery import Resource
from pydantic import ValidationError
from sqlalchemy.orm import Session

from extractify.config import Settings, get_settings
from extractify.errors import ExtractifyError, GoogleSheetsApiError
from extractify.integrations.credentials import load_secrets_key
from extractify.integrations.sheets_client import GoogleSheetsClient, build_sheets_service
from extractify.integrations.sheets_mapping import (
    build_row,
    header_needs_write,
    merge_headers,
    normalize_extraction_result,
)
from extractify.integrations.sheets_oauth import ResolvedAccessToken, resolve_sheets_access_token
from extractify.integrations.types import CompletedExtraction, DeliveryAttempt, DeliveryTarget
from extractify.schemas.integrations import SheetsConfig
from extractify.services.integrations import get_integration_target, update_integration_target_config

logger = logging.getLogger(__name__)

AUTH_RETRY_DELAY_SECONDS = 0.25
AUTH_RETRY_JITTER_SECONDS = 0.12

# Entries drop once no delivery holds the lock.
_target_locks: weakref.WeakValueDictionary[str, threading.Lock] = weakref.WeakValueDictionary()
_target_locks_guard = threading.Lock()


def _lock_for_target(target_id: str) -> threading.Lock:
    with _target_locks_guard:
        lock = _target_locks.get(target_id)
        if lock is None:
            lock = threading.Lock()
            _target_locks[target_id] = lock
        return lock


def is_retryable_status(status: int | None) -> bool:
    return status == 429 or (status is not None and status >= 500)


class SheetsDeliverer:
    """Runs one Sheets delivery: token resolution, header reconciliation, append, token write-back."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        *,
        settings: Settings | None = None,
        auth_request: AuthRequest | None = None,
        service_factory: Callable[[str], Resource] = build_sheets_service,
        secrets_key: bytes | None = None,
        sleep: Callable[[float], None] = time.sleep,
        jitter: Callable[[], float] = random.random,
    ) -> None:
        self._session_factory = session_factory
        self._settings = settings or get_settings()
        self._auth_request = auth_request
        self._service_factory = service_factory
        self._secrets_key = secrets_key
        self._sleep = sleep
        self._jitter = jitter

    def deliver(self, target: DeliveryTarget, extraction: CompletedExtraction) -> DeliveryAttempt:
        # Serializes token refresh and write-back for one target within this process.
        with _lock_for_target(target.id):
            return self._deliver(self._reload(target), extraction)

    def _reload(self, target: DeliveryTarget) -> DeliveryTarget:
        """Re-read config under the lock so a token written by a previous delivery is reused."""

        try:
            with self._session_factory() as db:
                row = get_integration_target(db, target.id)
                if row is None:
                    return target
                return DeliveryTarget(
                    id=row.id,
                    owner_id=row.owner_id,
                    type=row.type,
                    name=row.name,
                    config=dict(row.config or {}),
                    config_version=row.config_version,
                )
        except Exception:
            logger.exception("sheets.target_reload_failed target_id=%s", target.id)
            return target

    def _deliver(self, target: DeliveryTarget, extraction: CompletedExtraction) -> DeliveryAttempt:
        try:
            config = SheetsConfig.model_validate(target.config)
        except ValidationError:
            return DeliveryAttempt(ok=False, error_message="Invalid Google Sheets configuration")
        if config.oauth is None:
            return DeliveryAttempt(ok=False, error_message="Google account is not connected")
        mapping = config.find_mapping(extraction.model_id, extraction.model_version_id)
        if mapping is None:
            return DeliveryAttempt(ok=False, error_message="No Sheets mapping configured for this model version")

        try:
            secrets_key = self._secrets_key or load_secrets_key(self._settings)
            access = self._resolve(config, secrets_key, force_refresh=False)
        except ExtractifyError as exc:
            return DeliveryAttempt(ok=False, error_message=str(exc) or "OAuth refresh failed")

        oauth_changed = access.refreshed
        required_headers = [column.column_name for column in mapping.columns]
        normalized = normalize_extraction_result(extraction.result)
        max_attempts = max(1, self._settings.sheets_max_attempts)

        try:
            for attempt in range(1, max_attempts + 1):
                client = GoogleSheetsClient(self._service_factory(access.access_token))
                try:
                    existing = client.get_header(config.spreadsheet_id, config.sheet_name, config.header_row)
                    merged = merge_headers(existing, required_headers)
                    if header_needs_write(existing, merged):
                        client.write_header(config.spreadsheet_id, config.sheet_name, config.header_row, merged)
                    row = build_row(merged, normalized, mapping.columns)
                    client.append_row(config.spreadsheet_id, config.sheet_name, config.header_row, row)
                    break
                except GoogleSheetsApiError as exc:
                    logger.warning(
                        "sheets.attempt_failed target_id=%s attempt=%d status=%s",
                        target.id,
                        attempt,
                        exc.status,
                    )
                    if exc.status == 401 and attempt < max_attempts:
                        access = self._resolve(_with_oauth(config, access), secrets_key, force_refresh=True)
                        oauth_changed = True
                        self._sleep(AUTH_RETRY_DELAY_SECONDS + self._jitter() * AUTH_RETRY_JITTER_SECONDS)
                        continue
                    if is_retryable_status(exc.status) and attempt < max_attempts:
                        self._sleep(
                            self._settings.sheets_backoff_base_seconds * 2 ** (attempt - 1)
                            + self._jitter() * self._settings.sheets_backoff_jitter_seconds
                        )
                        continue
                    raise
            return DeliveryAttempt(ok=True, status=200)
        except GoogleSheetsApiError as exc:
            return DeliveryAttempt(ok=False, status=exc.status, error_message=str(exc))
        except ExtractifyError as exc:
            return DeliveryAttempt(ok=False, error_message=str(exc) or "Sheets delivery failed")
        finally:
            # A refreshed token is written back however the attempt ended.
            if oauth_changed:
                self._persist_oauth(target, config, access)

    def _resolve(self, config: SheetsConfig, secrets_key: bytes, *, force_refresh: bool) -> ResolvedAccessToken:
        return resolve_sheets_access_token(
            config.oauth,
            secrets_key=secrets_key,
            client_id=self._settings.google_client_id,
            client_secret=self._settings.google_client_secret,
            request=self._auth_request,
            force_refresh=force_refresh,
            skew_seconds=self._settings.oauth_expiry_skew_seconds,
        )

    def _persist_oauth(self, target: DeliveryTarget, config: SheetsConfig, access: ResolvedAccessToken) -> None:
        next_config: dict[str, Any] = {
            **target.config,
            "oauth": access.oauth.model_dump(by_alias=True, mode="json", exclude_none=True),
        }
        try:
            with self._session_factory() as db:
                written = update_integration_target_config(
                    db,
                    target.id,
                    next_config,
                    expected_version=target.config_version,
                )
        except Exception:
            logger.exception("sheets.oauth_persist_failed target_id=%s", target.id)
            return
        if not written:
            logger.warning(
                "sheets.oauth_persist_conflict target_id=%s expected_version=%d",
                target.id,
                target.config_version,
            )


def _with_oauth(config: SheetsConfig, access: ResolvedAccessToken) -> SheetsConfig:
    return config.model_copy(update={"oauth": access.oauth})
