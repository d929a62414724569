# app/providers/http.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

import httpx

from app.errors import TransientFailure


@dataclass
class HttpResponse:
    status_code: int
    json: Optional[dict[str, Any]]
    text: str


class HttpClient:
    def __init__(self, timeout_s: float = 20.0, follow_redirects: bool = True):
        self._client = httpx.Client(timeout=timeout_s, follow_redirects=follow_redirects)

    def post(
        self,
        url: str,
        *,
        headers: dict[str, str],
        json_body: dict[str, Any] | None = None,
        content: bytes | None = None,
    ) -> HttpResponse:
        try:
            r = self._client.post(url, headers=headers, json=json_body, content=content)
        except httpx.TimeoutException as exc:
            raise TransientFailure(f"POST {url} timed out: {exc}") from exc
        except httpx.TransportError as exc:
            raise TransientFailure(f"POST {url} failed: {type(exc).__name__}: {exc}") from exc
        return self._wrap(r)

    @staticmethod
    def _wrap(r: httpx.Response) -> HttpResponse:
        try:
            payload = r.json()
        except ValueError:
            payload = None
        return HttpResponse(status_code=r.status_code, json=payload, text=r.text)


def is_retryable_http(code: int) -> bool:
    # Retry transient / throttling / gateway issues
    return code in (408, 425, 429, 500, 502, 503, 504)


def redact_headers(headers: dict[str, str]) -> dict[str, str]:
    safe = dict(headers or {})
    for key in ("Authorization", "X-Api-Key"):
        if key in safe:
            safe[key] = "REDACTED"
    return safe
