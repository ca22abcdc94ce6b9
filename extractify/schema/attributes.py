"""Attribute tree definitions consumed by the schema compiler."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

AttributeType = Literal["string", "number", "boolean", "date", "array", "record", "arrayOfRecords"]

ATTRIBUTE_TYPE_VALUES: tuple[str, ...] = (
    "string",
    "number",
    "boolean",
    "date",
    "array",
    "record",
    "arrayOfRecords",
)
NESTED_ATTRIBUTE_TYPES = frozenset({"record", "arrayOfRecords"})


class Attribute(BaseModel):
    """A named, possibly nested field to extract."""

    id: str = Field(min_length=1)
    name: str = Field(min_length=1)
    description: str | None = None
    type: AttributeType
    children: list[Attribute] | None = None

    @property
    def nested_children(self) -> list[Attribute]:
        """Children that take part in compilation (only for record-like types)."""

        if self.type not in NESTED_ATTRIBUTE_TYPES:
            return []
        return list(self.children or [])


def parse_attribute_list(raw: list[dict[str, object]] | list[Attribute]) -> list[Attribute]:
    """Validate stored attribute JSON into ``Attribute`` models."""

    return [item if isinstance(item, Attribute) else Attribute.model_validate(item) for item in raw]
