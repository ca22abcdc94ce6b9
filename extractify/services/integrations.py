"""Persistence services for integration targets and deliveries."""

from __future__ import annotations

from typing import Any

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from extractify.models.integration import IntegrationDelivery, IntegrationTarget


def list_enabled_integration_targets_for_owner(
    db: Session,
    owner_id: str,
    target_ids: list[str] | None = None,
) -> list[IntegrationTarget]:
    """Return enabled targets for an owner, optionally restricted to ``target_ids``."""

    stmt = select(IntegrationTarget).where(
        IntegrationTarget.owner_id == owner_id,
        IntegrationTarget.enabled.is_(True),
    )
    if target_ids is not None:
        if not target_ids:
            return []
        stmt = stmt.where(IntegrationTarget.id.in_(target_ids))
    stmt = stmt.order_by(IntegrationTarget.created_at.asc(), IntegrationTarget.id.asc())
    return list(db.scalars(stmt).all())


def get_integration_target(db: Session, target_id: str) -> IntegrationTarget | None:
    return db.get(IntegrationTarget, target_id)


def create_integration_deliveries(
    db: Session,
    extraction_id: str,
    target_ids: list[str],
) -> list[IntegrationDelivery]:
    """Create one ``pending`` delivery per target."""

    created: list[IntegrationDelivery] = []
    for target_id in target_ids:
        delivery = IntegrationDelivery(
            target_id=target_id,
            extraction_id=extraction_id,
            status="pending",
        )
        db.add(delivery)
        created.append(delivery)
    db.commit()
    for delivery in created:
        db.refresh(delivery)
    return created


def update_integration_delivery(
    db: Session,
    delivery_id: str,
    *,
    status: str,
    response_status: int | None = None,
    error_message: str | None = None,
) -> IntegrationDelivery | None:
    delivery = db.get(IntegrationDelivery, delivery_id)
    if delivery is None:
        return None
    delivery.status = status
    delivery.response_status = response_status
    delivery.error_message = error_message
    db.commit()
    db.refresh(delivery)
    return delivery


def list_deliveries_for_extraction(
    db: Session,
    extraction_id: str,
) -> list[tuple[IntegrationDelivery, IntegrationTarget | None]]:
    """Return deliveries for a run joined to their target (newest first)."""

    stmt = (
        select(IntegrationDelivery, IntegrationTarget)
        .outerjoin(IntegrationTarget, IntegrationTarget.id == IntegrationDelivery.target_id)
        .where(IntegrationDelivery.extraction_id == extraction_id)
        .order_by(IntegrationDelivery.created_at.desc(), IntegrationDelivery.id.asc())
    )
    return [(row[0], row[1]) for row in db.execute(stmt).all()]


def update_integration_target_config(
    db: Session,
    target_id: str,
    config: dict[str, Any],
    *,
    expected_version: int,
) -> bool:
    """Write ``config`` only if the stored version still equals ``expected_version``.

    Returns ``False`` when another writer bumped the version first.
    """

    result = db.execute(
        update(IntegrationTarget)
        .where(
            IntegrationTarget.id == target_id,
            IntegrationTarget.config_version == expected_version,
        )
        .values(config=config, config_version=expected_version + 1)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount == 1
