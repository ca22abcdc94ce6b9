"""Attribute model and version ORM models."""

from sqlalchemy import JSON, Boolean, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from extractify.models.base import Base, CreatedAtMixin, IdMixin


class AttributeModel(Base, IdMixin, CreatedAtMixin):
    """A reusable, owner-scoped extraction schema."""

    __tablename__ = "attribute_models"

    owner_id: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    system_prompt: Mapped[str | None] = mapped_column(Text, nullable=True)

    versions: Mapped[list["AttributeModelVersion"]] = relationship(back_populates="model")


class AttributeModelVersion(Base, IdMixin, CreatedAtMixin):
    """Immutable snapshot of a model's attribute tree."""

    __tablename__ = "attribute_model_versions"
    __table_args__ = (UniqueConstraint("model_id", "version_number", name="uq_attribute_model_versions_number"),)

    model_id: Mapped[str] = mapped_column(
        ForeignKey("attribute_models.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    version_number: Mapped[int] = mapped_column(Integer, nullable=False)
    changelog: Mapped[str | None] = mapped_column(Text, nullable=True)
    attributes: Mapped[list[dict[str, object]]] = mapped_column(JSON, default=list, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    model: Mapped[AttributeModel] = relationship(back_populates="versions")
