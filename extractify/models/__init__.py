"""ORM models package exports."""

from extractify.models.attribute_model import AttributeModel, AttributeModelVersion
from extractify.models.extraction import ExtractionError, ExtractionInput, ExtractionRun
from extractify.models.integration import IntegrationDelivery, IntegrationTarget

__all__ = [
    "AttributeModel",
    "AttributeModelVersion",
    "ExtractionRun",
    "ExtractionInput",
    "ExtractionError",
    "IntegrationTarget",
    "IntegrationDelivery",
]
