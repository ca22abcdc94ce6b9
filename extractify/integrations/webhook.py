"""Signed JSON webhook delivery."""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError

from extractify.errors import ExtractifyError, HttpTransportError
from extractify.http_transport import HttpTransport, UrllibTransport
from extractify.integrations.credentials import decrypt_secret
from extractify.integrations.timestamps import iso_utc_millis
from extractify.integrations.types import CompletedExtraction, DeliveryAttempt, DeliveryTarget
from extractify.schemas.integrations import WebhookConfig

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Extractify-Signature"
EVENT_NAME = "extraction.completed"
PAYLOAD_VERSION = "v1"


def build_extraction_payload(extraction: CompletedExtraction) -> dict[str, Any]:
    """Build the versioned ``extraction.completed`` event body."""

    usage = None
    if extraction.usage:
        input_tokens = int(extraction.usage.get("inputTokens") or 0)
        output_tokens = int(extraction.usage.get("outputTokens") or 0)
        usage = {
            "inputTokens": input_tokens,
            "outputTokens": output_tokens,
            "totalTokens": input_tokens + output_tokens,
        }
    return {
        "event": EVENT_NAME,
        "version": PAYLOAD_VERSION,
        "extraction": {
            "id": extraction.id,
            "modelId": extraction.model_id,
            "modelVersionId": extraction.model_version_id,
            "llmModelId": extraction.llm_model_id,
            "createdAt": iso_utc_millis(extraction.created_at),
            "completedAt": iso_utc_millis(extraction.completed_at or datetime.now(timezone.utc)),
            "status": "completed",
            "usage": usage,
        },
        "result": extraction.result,
    }


def sign_body(body: bytes, secret: str) -> str:
    """HMAC-SHA256 hex digest of the exact request body."""

    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def deliver_webhook(
    target: DeliveryTarget,
    payload: dict[str, Any],
    *,
    secrets_key: bytes | None,
    transport: HttpTransport | None = None,
) -> DeliveryAttempt:
    """Send one webhook request; the call is abandoned once ``timeoutMs`` elapses."""

    try:
        config = WebhookConfig.model_validate(target.config)
    except ValidationError:
        return DeliveryAttempt(ok=False, error_message="Invalid webhook configuration")

    body = json.dumps(payload, separators=(",", ":")).encode("utf-8")
    headers = {"Content-Type": "application/json", **config.headers}
    if config.secret is not None:
        try:
            if secrets_key is None:
                raise ExtractifyError("Webhook signing secret cannot be decrypted without a secrets key")
            headers[SIGNATURE_HEADER] = sign_body(body, decrypt_secret(config.secret, secrets_key))
        except ExtractifyError as exc:
            return DeliveryAttempt(ok=False, error_message=str(exc))

    active_transport = transport or UrllibTransport()
    timeout_seconds = config.timeout_ms / 1000.0
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="webhook")
    try:
        future = executor.submit(
            active_transport.request,
            config.method,
            str(config.url),
            headers=headers,
            body=body,
            timeout=timeout_seconds,
        )
        try:
            response = future.result(timeout=timeout_seconds)
        except FutureTimeoutError:
            future.cancel()
            logger.warning("webhook.timed_out target_id=%s timeout_ms=%d", target.id, config.timeout_ms)
            return DeliveryAttempt(ok=False, error_message=f"Webhook timed out after {config.timeout_ms} ms")
        except HttpTransportError as exc:
            return DeliveryAttempt(ok=False, error_message=str(exc))
    finally:
        executor.shutdown(wait=False, cancel_futures=True)

    return DeliveryAttempt(
        ok=response.ok,
        status=response.status,
        error_message=None if response.ok else "Webhook endpoint returned an error status",
    )
