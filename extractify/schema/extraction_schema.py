"""Compile an attribute tree into a structured-output schema and extraction instructions."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Union

from pydantic import BaseModel, Field, create_model

from extractify.schema.attributes import Attribute

DOCUMENT_SEPARATOR_TEMPLATE = "--- Document: {file_name} ---"
OUTPUT_SCHEMA_NAME = "extractify_extraction"

_FORMAT_HINTS: dict[str, str] = {
    "string": "string",
    "number": "number",
    "boolean": "boolean",
    "date": "date string (YYYY-MM-DD)",
    "array": "array of strings",
    "record": "object with nested fields",
    "arrayOfRecords": "array of objects with nested fields",
}

_INSTRUCTION_HINTS: dict[str, str] = {
    "array": " - Extract as an array of string values",
    "number": " - Extract as a number",
    "boolean": " - Extract as a boolean (true/false)",
    "date": " - Extract as a date string in YYYY-MM-DD format",
    "record": " - Extract as an object with the following nested fields:",
    "arrayOfRecords": " - Extract as an array of objects, where each object has the following fields:",
}

_PROMPT_HEADER = """Extract the following information from the provided document text.
Only extract information that is explicitly stated in the document and be precise.
If a field cannot be found, use null for that field.

The text may contain several documents. Every document starts with a line like:
--- Document: filename.pdf ---
Use these separator lines to tell which content belongs to which document.

For each attribute, return:
- value: the extracted value, or null when it is not found. The format depends on the attribute type:
  * string: a single string value
  * number: a numeric value
  * boolean: true or false
  * date: a date string in YYYY-MM-DD format
  * array: an array of string values (e.g., ["item1", "item2"])
  * record: an object with the nested fields as defined
  * arrayOfRecords: an array of objects, each with the defined nested fields
- confidence: a score between 0 and 1 describing how certain the extraction is:
  * 1.0 = very high confidence (the information is clearly and explicitly stated)
  * 0.8-0.9 = high confidence (the information is likely present but needs some inference)
  * 0.6-0.7 = medium confidence (the information is ambiguous or only partially present)
  * 0.4-0.5 = low confidence (unsure whether the information is present or correct)
  * 0.0-0.3 = very low confidence (the information is likely absent or very unclear)
  * when value is null, confidence must be 0.0"""


@dataclass(slots=True)
class CompiledAttributeSchema:
    """Everything the invoker needs to bind an attribute tree to a model call."""

    json_schema: dict[str, Any]
    output_model: type[BaseModel]
    instructions: str
    strict: bool


def compile_attribute_schema(attributes: list[Attribute]) -> CompiledAttributeSchema:
    """Compile the attribute tree into schema, validator model and instructions."""

    return CompiledAttributeSchema(
        json_schema=build_output_schema(attributes),
        output_model=build_output_model(attributes),
        instructions=build_attribute_instructions(attributes),
        strict=not any(_has_open_record(attr) for attr in attributes),
    )


def build_output_schema(attributes: list[Attribute]) -> dict[str, Any]:
    """Return a JSON Schema where every top-level attribute is wrapped as ``{value, confidence}``."""

    return _object_schema({attr.name: _field_schema(attr) for attr in attributes})


def build_output_model(attributes: list[Attribute]) -> type[BaseModel]:
    """Create a pydantic model that validates model output against the attribute tree."""

    fields: dict[str, Any] = {}
    for index, attr in enumerate(attributes):
        wrapper = create_model(
            f"AttributeField{index}",
            value=(_value_annotation(attr, f"AttributeValue{index}"), ...),
            confidence=(float, Field(..., ge=0.0, le=1.0)),
        )
        fields[f"field_{index}"] = (wrapper, Field(..., alias=attr.name))
    return create_model("ExtractionOutput", **fields)


def build_attribute_instructions(attributes: list[Attribute]) -> str:
    """Render the attribute list as indented, type-annotated bullet lines."""

    return "\n".join(_describe_attribute(attr) for attr in attributes)


def build_document_section(file_name: str, text: str) -> str:
    """Prefix extracted text with its document separator line."""

    return f"{DOCUMENT_SEPARATOR_TEMPLATE.format(file_name=file_name)}\n{text}"


def combine_document_sections(sections: list[str]) -> str:
    return "\n\n".join(sections)


def build_extraction_prompt(document_text: str, attributes: list[Attribute]) -> str:
    """Build the full user prompt for one extraction call."""

    return (
        f"{_PROMPT_HEADER}\n\n"
        f"Document text:\n{document_text}\n\n"
        f"Extract the following attributes:\n{build_attribute_instructions(attributes)}"
    )


def _field_schema(attr: Attribute) -> dict[str, Any]:
    description = attr.description or attr.name
    value_schema = dict(_value_schema(attr))
    value_schema["description"] = (
        f"The extracted value for {description}. Format: {_FORMAT_HINTS.get(attr.type, 'string')}"
    )
    schema = _object_schema(
        {
            "value": value_schema,
            "confidence": {
                "type": "number",
                "minimum": 0,
                "maximum": 1,
                "description": (
                    f"Confidence score (0-1) indicating how certain the extraction is for {description}"
                ),
            },
        }
    )
    schema["description"] = description
    return schema


def _value_schema(attr: Attribute) -> dict[str, Any]:
    if attr.type == "array":
        return {"type": ["array", "null"], "items": {"type": "string"}}
    if attr.type == "number":
        return {"type": ["number", "null"]}
    if attr.type == "boolean":
        return {"type": ["boolean", "null"]}
    if attr.type == "record":
        return _nullable(_record_schema(attr))
    if attr.type == "arrayOfRecords":
        return {"type": ["array", "null"], "items": _record_schema(attr)}
    return {"type": ["string", "null"]}


def _record_schema(attr: Attribute) -> dict[str, Any]:
    children = attr.nested_children
    if not children:
        return {"type": "object", "additionalProperties": {"type": "string"}}
    return _object_schema({child.name: _value_schema(child) for child in children})


def _object_schema(properties: dict[str, Any]) -> dict[str, Any]:
    return {
        "type": "object",
        "properties": properties,
        "required": list(properties),
        "additionalProperties": False,
    }


def _nullable(schema: dict[str, Any]) -> dict[str, Any]:
    return {**schema, "type": [schema["type"], "null"]}


def _value_annotation(attr: Attribute, model_name: str) -> Any:
    if attr.type == "array":
        return Optional[list[str]]
    if attr.type == "number":
        return Optional[Union[int, float]]
    if attr.type == "boolean":
        return Optional[bool]
    if attr.type == "record":
        return Optional[_record_annotation(attr, model_name)]
    if attr.type == "arrayOfRecords":
        return Optional[list[_record_annotation(attr, model_name)]]
    return Optional[str]


def _record_annotation(attr: Attribute, model_name: str) -> Any:
    children = attr.nested_children
    if not children:
        return dict[str, str]
    fields = {
        f"field_{index}": (
            _value_annotation(child, f"{model_name}_{index}"),
            Field(..., alias=child.name),
        )
        for index, child in enumerate(children)
    }
    return create_model(model_name, **fields)


def _has_open_record(attr: Attribute) -> bool:
    if attr.type in ("record", "arrayOfRecords") and not attr.nested_children:
        return True
    return any(_has_open_record(child) for child in attr.nested_children)


def _describe_attribute(attr: Attribute, indent: int = 0) -> str:
    prefix = "  " * indent
    label = f"{attr.name}: {attr.description}" if attr.description else attr.name
    line = f"{prefix}- {label} (type: {attr.type}){_INSTRUCTION_HINTS.get(attr.type, '')}"
    children = attr.nested_children
    if children:
        line += "\n" + "".join(f"\n{_describe_attribute(child, indent + 1)}" for child in children)
    return line
