"""Shared delivery result and target shapes."""

from dataclasses import dataclass
from datetime import datetime
from typing import Any


@dataclass(slots=True)
class DeliveryAttempt:
    ok: bool
    status: int | None = None
    error_message: str | None = None


@dataclass(slots=True)
class DeliveryTarget:
    """Detached snapshot of an integration target row."""

    id: str
    owner_id: str
    type: str
    name: str
    config: dict[str, Any]
    config_version: int = 1


@dataclass(slots=True)
class CompletedExtraction:
    """Detached snapshot of a completed run handed to delivery adapters."""

    id: str
    owner_id: str
    model_id: str
    model_version_id: str
    llm_model_id: str
    created_at: datetime
    completed_at: datetime | None
    result: dict[str, Any] | None
    usage: dict[str, int] | None
