"""Attribute tree and structured-output schema compilation."""

from extractify.schema.attributes import ATTRIBUTE_TYPE_VALUES, Attribute, parse_attribute_list
from extractify.schema.extraction_schema import (
    CompiledAttributeSchema,
    build_document_section,
    build_extraction_prompt,
    compile_attribute_schema,
)

__all__ = [
    "ATTRIBUTE_TYPE_VALUES",
    "Attribute",
    "parse_attribute_list",
    "CompiledAttributeSchema",
    "build_document_section",
    "build_extraction_prompt",
    "compile_attribute_schema",
]
