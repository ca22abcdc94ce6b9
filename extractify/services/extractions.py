"""Persistence services for attribute models and extraction runs."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from extractify.errors import ModelVersionNotFoundError, UnsupportedFileTypeError
from extractify.extraction.strategy_interface import SUPPORTED_FILE_TYPES
from extractify.models.attribute_model import AttributeModel, AttributeModelVersion
from extractify.models.extraction import ExtractionError, ExtractionInput, ExtractionRun
from extractify.schema.attributes import Attribute, parse_attribute_list
from extractify.schemas.extraction import ExtractionCreate, ExtractionJobFile, ExtractionJobPayload

logger = logging.getLogger(__name__)

_UNSET: Any = object()


@dataclass(slots=True)
class ModelVersionSnapshot:
    """A model version's attribute tree together with its model's system prompt."""

    id: str
    model_id: str
    version_number: int
    attributes: list[Attribute]
    system_prompt: str | None = None


def _to_snapshot(version: AttributeModelVersion, model: AttributeModel) -> ModelVersionSnapshot:
    return ModelVersionSnapshot(
        id=version.id,
        model_id=version.model_id,
        version_number=version.version_number,
        attributes=parse_attribute_list(version.attributes or []),
        system_prompt=model.system_prompt,
    )


def get_model_version(db: Session, model_version_id: str) -> ModelVersionSnapshot | None:
    """Load a model version by id, or ``None`` when it does not exist."""

    row = db.execute(
        select(AttributeModelVersion, AttributeModel)
        .join(AttributeModel, AttributeModel.id == AttributeModelVersion.model_id)
        .where(AttributeModelVersion.id == model_version_id)
    ).first()
    if row is None:
        return None
    return _to_snapshot(row[0], row[1])


def get_active_model_version_for_owner(db: Session, owner_id: str, model_id: str) -> ModelVersionSnapshot | None:
    """Return the active version of an owner's model (highest version number wins)."""

    row = db.execute(
        select(AttributeModelVersion, AttributeModel)
        .join(AttributeModel, AttributeModel.id == AttributeModelVersion.model_id)
        .where(
            AttributeModel.id == model_id,
            AttributeModel.owner_id == owner_id,
            AttributeModelVersion.is_active.is_(True),
        )
        .order_by(AttributeModelVersion.version_number.desc())
        .limit(1)
    ).first()
    if row is None:
        return None
    return _to_snapshot(row[0], row[1])


def create_extraction_run(
    db: Session,
    *,
    owner_id: str,
    model_id: str,
    model_version_id: str,
    llm_model_id: str,
) -> ExtractionRun:
    run = ExtractionRun(
        owner_id=owner_id,
        model_id=model_id,
        model_version_id=model_version_id,
        llm_model_id=llm_model_id,
        status="processing",
    )
    db.add(run)
    db.commit()
    db.refresh(run)
    return run


def create_extraction_inputs(db: Session, extraction_id: str, files: list[dict[str, Any]]) -> list[ExtractionInput]:
    """Persist input rows; ``source_order`` follows list position."""

    created: list[ExtractionInput] = []
    for index, item in enumerate(files):
        record = ExtractionInput(
            extraction_id=extraction_id,
            file_name=item["file_name"],
            file_type=item["file_type"],
            file_size=item.get("file_size"),
            source_order=index,
        )
        db.add(record)
        created.append(record)
    db.commit()
    for record in created:
        db.refresh(record)
    return created


def update_extraction_run(
    db: Session,
    extraction_id: str,
    *,
    status: str | None = None,
    result: dict[str, Any] | None = _UNSET,
    usage: dict[str, int] | None = _UNSET,
    completed_at: datetime | None = _UNSET,
) -> ExtractionRun | None:
    """Apply a partial update to a run; omitted fields are left untouched."""

    run = db.get(ExtractionRun, extraction_id)
    if run is None:
        return None
    if status is not None:
        run.status = status
    if result is not _UNSET:
        run.result = result
    if usage is not _UNSET:
        run.usage = usage
    if completed_at is not _UNSET:
        run.completed_at = completed_at
    db.commit()
    db.refresh(run)
    return run


def set_extraction_error(db: Session, *, extraction_id: str, owner_id: str, message: str) -> ExtractionError:
    """Replace the run's error record so at most one exists."""

    db.execute(delete(ExtractionError).where(ExtractionError.extraction_id == extraction_id))
    record = ExtractionError(
        extraction_id=extraction_id,
        owner_id=owner_id,
        message=message,
        occurred_at=datetime.now(timezone.utc),
    )
    db.add(record)
    db.commit()
    db.refresh(record)
    return record


def get_extraction_run_for_owner(db: Session, owner_id: str, extraction_id: str) -> ExtractionRun | None:
    stmt = select(ExtractionRun).where(
        ExtractionRun.id == extraction_id,
        ExtractionRun.owner_id == owner_id,
    )
    return db.scalar(stmt)


def get_latest_extraction_error(db: Session, extraction_id: str) -> ExtractionError | None:
    stmt = (
        select(ExtractionError)
        .where(ExtractionError.extraction_id == extraction_id)
        .order_by(ExtractionError.occurred_at.desc())
        .limit(1)
    )
    return db.scalar(stmt)


def list_extraction_inputs(db: Session, extraction_id: str) -> list[ExtractionInput]:
    stmt = (
        select(ExtractionInput)
        .where(ExtractionInput.extraction_id == extraction_id)
        .order_by(ExtractionInput.source_order.asc())
    )
    return list(db.scalars(stmt).all())


def submit_extraction(
    db: Session,
    owner_id: str,
    payload: ExtractionCreate,
    enqueue: Callable[[ExtractionJobPayload], str],
) -> tuple[ExtractionRun, str]:
    """Create a ``processing`` run with its inputs and enqueue the job.

    A failed enqueue marks the run failed with an error record before re-raising.
    """

    unsupported = [item.file_type for item in payload.files if item.file_type not in SUPPORTED_FILE_TYPES]
    if unsupported:
        raise UnsupportedFileTypeError(unsupported[0])

    version = get_active_model_version_for_owner(db, owner_id, payload.model_id)
    if version is None:
        raise ModelVersionNotFoundError(payload.model_id)

    run = create_extraction_run(
        db,
        owner_id=owner_id,
        model_id=version.model_id,
        model_version_id=version.id,
        llm_model_id=payload.llm_model_id,
    )
    create_extraction_inputs(db, run.id, [item.model_dump() for item in payload.files])

    job = ExtractionJobPayload(
        extraction_id=run.id,
        owner_id=owner_id,
        model_id=version.model_id,
        model_version_id=version.id,
        llm_model_id=payload.llm_model_id,
        integration_target_ids=payload.integration_target_ids,
        files=[
            ExtractionJobFile(
                file_name=item.file_name,
                file_type=item.file_type,
                file_size=item.file_size,
                file_url=item.file_url,
                source_order=index,
            )
            for index, item in enumerate(payload.files)
        ],
    )
    try:
        job_id = enqueue(job)
    except Exception as exc:
        logger.exception("extraction.enqueue_failed extraction_id=%s", run.id)
        set_extraction_error(db, extraction_id=run.id, owner_id=owner_id, message=f"Failed to enqueue extraction: {exc}")
        update_extraction_run(db, run.id, status="failed", completed_at=datetime.now(timezone.utc))
        raise
    return run, job_id
