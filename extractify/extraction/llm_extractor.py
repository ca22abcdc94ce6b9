"""LLM-backed structured extraction against a compiled attribute schema."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Protocol
from urllib import error as urllib_error
from urllib import request as urllib_request

from pydantic import ValidationError

from extractify.config import Settings, get_settings
from extractify.errors import ConfigurationError, LLMExtractionError
from extractify.extraction.types import DocumentText, ExtractionOutput, LLMResponse, TokenUsage
from extractify.schema.attributes import Attribute
from extractify.schema.extraction_schema import (
    OUTPUT_SCHEMA_NAME,
    build_document_section,
    build_extraction_prompt,
    combine_document_sections,
    compile_attribute_schema,
)

logger = logging.getLogger(__name__)


class LLMClient(Protocol):
    """Protocol for pluggable LLM clients used by the extractor."""

    def extract_structured(
        self,
        *,
        prompt: str,
        json_schema: dict[str, Any],
        strict: bool = True,
        system_prompt: str | None = None,
    ) -> LLMResponse:
        """Return a structured payload conforming to ``json_schema``."""


@dataclass(slots=True)
class OpenAIChatCompletionsClient:
    """Minimal OpenAI Chat Completions client using stdlib HTTP."""

    api_key: str
    model: str
    base_url: str = "https://api.openai.com/v1"
    timeout_seconds: int = 120
    temperature: float = 0.0

    def extract_structured(
        self,
        *,
        prompt: str,
        json_schema: dict[str, Any],
        strict: bool = True,
        system_prompt: str | None = None,
    ) -> LLMResponse:
        """Call OpenAI and return parsed JSON extraction output with token usage."""

        messages: list[dict[str, str]] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        payload = {
            "model": self.model,
            "temperature": self.temperature,
            "response_format": {
                "type": "json_schema",
                "json_schema": {
                    "name": OUTPUT_SCHEMA_NAME,
                    "strict": strict,
                    "schema": json_schema,
                },
            },
            "messages": messages,
        }
        url = f"{self.base_url.rstrip('/')}/chat/completions"
        req = urllib_request.Request(
            url=url,
            data=json.dumps(payload).encode("utf-8"),
            method="POST",
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
        )

        try:
            with urllib_request.urlopen(req, timeout=self.timeout_seconds) as resp:
                raw = resp.read().decode("utf-8")
        except urllib_error.HTTPError as exc:
            detail = exc.read().decode("utf-8", errors="replace")
            raise LLMExtractionError(f"OpenAI HTTP {exc.code}: {detail}") from exc
        except urllib_error.URLError as exc:
            raise LLMExtractionError(f"OpenAI request failed: {exc.reason}") from exc

        try:
            decoded = json.loads(raw)
            message = decoded["choices"][0]["message"]
            refusal = message.get("refusal")
            if isinstance(refusal, str) and refusal.strip():
                raise LLMExtractionError(f"OpenAI refused extraction request: {refusal.strip()}")
            content = message["content"]
            if not isinstance(content, str):
                raise TypeError("OpenAI response content is not a string")
            parsed = json.loads(content)
            if not isinstance(parsed, dict):
                raise TypeError("OpenAI response content is not a JSON object")
        except LLMExtractionError:
            raise
        except (KeyError, IndexError, TypeError, json.JSONDecodeError) as exc:
            raise LLMExtractionError("OpenAI returned an unexpected or non-JSON response") from exc

        usage = decoded.get("usage") or {}
        return LLMResponse(
            payload=parsed,
            usage=TokenUsage(
                input_tokens=int(usage.get("prompt_tokens") or 0),
                output_tokens=int(usage.get("completion_tokens") or 0),
            ),
        )


def get_default_llm_client(model_id: str, settings: Settings | None = None) -> LLMClient:
    """Return the OpenAI client for the requested model."""

    active = settings or get_settings()
    if not active.openai_api_key:
        raise ConfigurationError("OPENAI_API_KEY is not configured. Set it in .env before running extraction.")
    return OpenAIChatCompletionsClient(
        api_key=active.openai_api_key,
        model=model_id,
        base_url=active.openai_base_url,
        timeout_seconds=active.openai_timeout_seconds,
        temperature=active.llm_temperature,
    )


class LLMExtractor:
    """Builds one prompt for all documents and validates the structured reply."""

    def __init__(self, client: LLMClient) -> None:
        self._client = client
        self._last_raw_output: dict[str, Any] | None = None

    @property
    def model_name(self) -> str:
        return str(getattr(self._client, "model", self._client.__class__.__name__))

    @property
    def last_raw_output(self) -> dict[str, Any] | None:
        return self._last_raw_output

    def extract(
        self,
        documents: list[DocumentText],
        attributes: list[Attribute],
        *,
        system_prompt: str | None = None,
    ) -> ExtractionOutput:
        """Run a single structured-output call; no re-prompting on failure."""

        self._last_raw_output = None
        compiled = compile_attribute_schema(attributes)
        ordered = sorted(documents, key=lambda document: document.source_order)
        document_text = combine_document_sections(
            [build_document_section(document.file_name, document.text) for document in ordered]
        )
        prompt = build_extraction_prompt(document_text, attributes)

        response = self._client.extract_structured(
            prompt=prompt,
            json_schema=compiled.json_schema,
            strict=compiled.strict,
            system_prompt=(system_prompt or "").strip() or None,
        )
        self._last_raw_output = response.payload if isinstance(response.payload, dict) else None
        try:
            validated = compiled.output_model.model_validate(response.payload)
        except ValidationError as exc:
            raise LLMExtractionError(f"LLM extraction payload failed validation: {exc}") from exc

        logger.info(
            "llm_extraction.validated model=%s documents=%d attributes=%d strict=%s input_tokens=%s output_tokens=%s",
            self.model_name,
            len(ordered),
            len(attributes),
            compiled.strict,
            response.usage.input_tokens if response.usage else None,
            response.usage.output_tokens if response.usage else None,
        )
        return ExtractionOutput(
            result=validated.model_dump(by_alias=True, mode="json"),
            usage=response.usage,
            model_id=self.model_name,
        )
