"""SQLAlchemy metadata registry import for Alembic."""

from extractify.models import (
    AttributeModel,
    AttributeModelVersion,
    ExtractionError,
    ExtractionInput,
    ExtractionRun,
    IntegrationDelivery,
    IntegrationTarget,
)
from extractify.models.base import Base

__all__ = [
    "Base",
    "AttributeModel",
    "AttributeModelVersion",
    "ExtractionRun",
    "ExtractionInput",
    "ExtractionError",
    "IntegrationTarget",
    "IntegrationDelivery",
]
