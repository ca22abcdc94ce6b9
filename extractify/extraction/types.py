"""Typed extraction inputs and outputs independent of persistence."""

from dataclasses import dataclass, field
from typing import Any


@dataclass(slots=True)
class DownloadedFile:
    """A job file with its bytes fetched from storage."""

    file_name: str
    file_type: str
    data: bytes
    source_order: int = 0
    file_url: str | None = None


@dataclass(slots=True)
class DocumentText:
    """Text extracted from one source file."""

    file_name: str
    text: str
    source_order: int = 0


@dataclass(slots=True)
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def as_dict(self) -> dict[str, int]:
        return {"inputTokens": self.input_tokens, "outputTokens": self.output_tokens}


@dataclass(slots=True)
class LLMResponse:
    """Raw structured payload plus token accounting from one model call."""

    payload: dict[str, Any]
    usage: TokenUsage | None = None


@dataclass(slots=True)
class ExtractionOutput:
    """Validated structured result of one run."""

    result: dict[str, Any] = field(default_factory=dict)
    usage: TokenUsage | None = None
    model_id: str | None = None
