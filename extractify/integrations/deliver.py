"""Fan-out of a completed extraction to its enabled integration targets."""

from __future__ import annotations

import logging
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from time import perf_counter

from sqlalchemy.orm import Session

from extractify.config import Settings, get_settings
from extractify.errors import ExtractifyError
from extractify.http_transport import HttpTransport
from extractify.integrations.credentials import load_secrets_key
from extractify.integrations.sheets_delivery import SheetsDeliverer
from extractify.integrations.types import CompletedExtraction, DeliveryAttempt, DeliveryTarget
from extractify.integrations.webhook import build_extraction_payload, deliver_webhook
from extractify.models.integration import IntegrationDelivery
from extractify.services.extractions import get_extraction_run_for_owner
from extractify.services.integrations import (
    create_integration_deliveries,
    list_enabled_integration_targets_for_owner,
    update_integration_delivery,
)

logger = logging.getLogger(__name__)

DELIVERABLE_TARGET_TYPES = frozenset({"webhook", "sheets"})


def _default_session_factory() -> Callable[[], Session]:
    from extractify.db.session import SessionLocal

    return SessionLocal


def deliver_integrations(
    owner_id: str,
    extraction_id: str,
    target_ids: list[str] | None = None,
    *,
    session_factory: Callable[[], Session] | None = None,
    settings: Settings | None = None,
    transport: HttpTransport | None = None,
    sheets_deliverer: SheetsDeliverer | None = None,
    max_workers: int | None = None,
) -> list[IntegrationDelivery]:
    """Create delivery records and attempt each target once; ``None`` targets every enabled one.

    Failures are recorded per delivery and never raised.
    """

    total_started = perf_counter()
    active_settings = settings or get_settings()
    factory = session_factory or _default_session_factory()

    with factory() as db:
        targets = [
            DeliveryTarget(
                id=row.id,
                owner_id=row.owner_id,
                type=row.type,
                name=row.name,
                config=dict(row.config or {}),
                config_version=row.config_version,
            )
            for row in list_enabled_integration_targets_for_owner(db, owner_id, target_ids)
            if row.type in DELIVERABLE_TARGET_TYPES
        ]
        if not targets:
            return []

        run = get_extraction_run_for_owner(db, owner_id, extraction_id)
        if run is None or run.status != "completed":
            logger.warning(
                "integrations.skipped_not_completed extraction_id=%s status=%s",
                extraction_id,
                None if run is None else run.status,
            )
            return []
        extraction = CompletedExtraction(
            id=run.id,
            owner_id=run.owner_id,
            model_id=run.model_id,
            model_version_id=run.model_version_id,
            llm_model_id=run.llm_model_id,
            created_at=run.created_at,
            completed_at=run.completed_at,
            result=run.result,
            usage=run.usage,
        )
        deliveries = create_integration_deliveries(db, extraction.id, [target.id for target in targets])
        delivery_ids = [(delivery.id, delivery.target_id) for delivery in deliveries]

    payload = build_extraction_payload(extraction)
    sheets = sheets_deliverer or SheetsDeliverer(factory, settings=active_settings)
    targets_by_id = {target.id: target for target in targets}

    def _run_one(delivery_id: str, target_id: str) -> None:
        target = targets_by_id.get(target_id)
        with factory() as db:
            if target is None:
                update_integration_delivery(db, delivery_id, status="failed", error_message="Target not found")
                return
            update_integration_delivery(db, delivery_id, status="processing")

        started = perf_counter()
        try:
            if target.type == "webhook":
                attempt = deliver_webhook(
                    target,
                    payload,
                    secrets_key=_optional_secrets_key(active_settings),
                    transport=transport,
                )
            elif target.type == "sheets":
                attempt = sheets.deliver(target, extraction)
            else:
                attempt = DeliveryAttempt(ok=False, error_message="Integration type is not supported")
        except Exception as exc:
            logger.exception("integrations.delivery_crashed delivery_id=%s target_id=%s", delivery_id, target.id)
            attempt = DeliveryAttempt(ok=False, error_message=str(exc) or "Delivery failed")

        with factory() as db:
            update_integration_delivery(
                db,
                delivery_id,
                status="succeeded" if attempt.ok else "failed",
                response_status=attempt.status,
                error_message=attempt.error_message,
            )
        logger.info(
            "integrations.delivered delivery_id=%s target_id=%s type=%s ok=%s status=%s elapsed_ms=%.2f",
            delivery_id,
            target.id,
            target.type,
            attempt.ok,
            attempt.status,
            (perf_counter() - started) * 1000.0,
        )

    workers = max(1, max_workers or active_settings.delivery_max_workers)
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="delivery") as executor:
        futures = [executor.submit(_run_one, delivery_id, target_id) for delivery_id, target_id in delivery_ids]
        for future in futures:
            try:
                future.result()
            except Exception:
                logger.exception("integrations.delivery_record_failed extraction_id=%s", extraction_id)

    logger.info(
        "integrations.completed extraction_id=%s targets=%d total_ms=%.2f",
        extraction_id,
        len(delivery_ids),
        (perf_counter() - total_started) * 1000.0,
    )
    with factory() as db:
        return [db.get(IntegrationDelivery, delivery_id) for delivery_id, _ in delivery_ids]


def _optional_secrets_key(settings: Settings) -> bytes | None:
    if not settings.integration_secrets_key:
        return None
    try:
        return load_secrets_key(settings)
    except ExtractifyError:
        logger.warning("integrations.secrets_key_invalid")
        return None
