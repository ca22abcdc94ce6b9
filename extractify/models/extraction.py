"""Extraction run, input and error ORM models."""

from datetime import datetime, timezone

from sqlalchemy import JSON, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from extractify.models.base import Base, CreatedAtMixin, IdMixin, UpdatedAtMixin

EXTRACTION_STATUSES: tuple[str, ...] = ("processing", "completed", "failed")


class ExtractionRun(Base, IdMixin, CreatedAtMixin, UpdatedAtMixin):
    """One execution of the pipeline against a set of files and a model version."""

    __tablename__ = "extraction_runs"

    owner_id: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    model_id: Mapped[str] = mapped_column(
        ForeignKey("attribute_models.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    model_version_id: Mapped[str] = mapped_column(
        ForeignKey("attribute_model_versions.id", ondelete="CASCADE"),
        nullable=False,
    )
    llm_model_id: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(32), default="processing", index=True, nullable=False)
    result: Mapped[dict[str, object] | None] = mapped_column(JSON, nullable=True)
    usage: Mapped[dict[str, int] | None] = mapped_column(JSON, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class ExtractionInput(Base, IdMixin, CreatedAtMixin):
    """A source file submitted with an extraction run."""

    __tablename__ = "extraction_inputs"

    extraction_id: Mapped[str] = mapped_column(
        ForeignKey("extraction_runs.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    file_name: Mapped[str] = mapped_column(String(1024), nullable=False)
    file_type: Mapped[str] = mapped_column(String(128), nullable=False)
    file_size: Mapped[int | None] = mapped_column(Integer, nullable=True)
    source_order: Mapped[int] = mapped_column(Integer, nullable=False)


class ExtractionError(Base, IdMixin, CreatedAtMixin):
    """Latest failure message for a run (at most one row per run)."""

    __tablename__ = "extraction_errors"

    extraction_id: Mapped[str] = mapped_column(
        ForeignKey("extraction_runs.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    owner_id: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
