"""Minimal stdlib HTTP transport shared by outbound integrations."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Protocol
from urllib import error as urllib_error
from urllib import request as urllib_request

from extractify.errors import HttpTransportError


@dataclass(slots=True)
class HttpResponse:
    status: int
    body: bytes = b""
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def json(self) -> Any:
        if not self.body:
            return None
        return json.loads(self.body.decode("utf-8"))

    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")


class HttpTransport(Protocol):
    """Protocol for pluggable HTTP transports (real or recorded in tests)."""

    def request(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        body: bytes | None = None,
        timeout: float | None = None,
    ) -> HttpResponse:
        """Send one request and return the response, including non-2xx responses."""


@dataclass(slots=True)
class UrllibTransport:
    """HTTP transport using ``urllib.request``."""

    default_timeout: float = 30.0

    def request(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        body: bytes | None = None,
        timeout: float | None = None,
    ) -> HttpResponse:
        req = urllib_request.Request(url=url, data=body, method=method, headers=headers or {})
        try:
            with urllib_request.urlopen(req, timeout=timeout or self.default_timeout) as resp:
                return HttpResponse(status=resp.status, body=resp.read(), headers=dict(resp.headers.items()))
        except urllib_error.HTTPError as exc:
            return HttpResponse(
                status=exc.code,
                body=exc.read(),
                headers=dict(exc.headers.items()) if exc.headers else {},
            )
        except urllib_error.URLError as exc:
            raise HttpTransportError(f"{method} {url} failed: {exc.reason}") from exc
        except (TimeoutError, OSError) as exc:
            raise HttpTransportError(f"{method} {url} failed: {exc}") from exc
