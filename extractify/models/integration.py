"""Integration target and delivery ORM models."""

from sqlalchemy import JSON, Boolean, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from extractify.models.base import Base, CreatedAtMixin, IdMixin, UpdatedAtMixin

INTEGRATION_TARGET_TYPES: tuple[str, ...] = ("webhook", "sheets", "postgres")
DELIVERY_STATUSES: tuple[str, ...] = ("pending", "processing", "succeeded", "failed")


class IntegrationTarget(Base, IdMixin, CreatedAtMixin, UpdatedAtMixin):
    """External destination for completed extraction results."""

    __tablename__ = "integration_targets"

    owner_id: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True, index=True, nullable=False)
    config: Mapped[dict[str, object]] = mapped_column(JSON, default=dict, nullable=False)
    # Bumped on every config write; refreshed OAuth tokens are persisted with compare-and-swap.
    config_version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)


class IntegrationDelivery(Base, IdMixin, CreatedAtMixin, UpdatedAtMixin):
    """One delivery of a completed run to one target."""

    __tablename__ = "integration_deliveries"

    target_id: Mapped[str] = mapped_column(
        ForeignKey("integration_targets.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    extraction_id: Mapped[str] = mapped_column(
        ForeignKey("extraction_runs.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    status: Mapped[str] = mapped_column(String(32), default="pending", index=True, nullable=False)
    response_status: Mapped[int | None] = mapped_column(Integer, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
