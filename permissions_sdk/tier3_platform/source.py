"""
permissions_sdk.tier3_platform.source
──────────────────────────────────────
Where policy documents come from. A source performs exactly one round trip
per fetch() and never retries; retry and timeout policy belong to the
resolver. Every transport failure surfaces as FetchError:

  unreachable   connection refused, DNS failure, protocol errors
  http_status   non-2xx response (status_code set)
  timeout       request exceeded the configured timeout

Backends: httpx (live endpoint) or an in-memory static source.
Configure via: PERMISSIONS_SOURCE_BACKEND=http|static
"""
from __future__ import annotations

import asyncio
import copy
from typing import Any, Protocol, runtime_checkable

import httpx

from permissions_sdk.tier0_core.config import PermissionsConfig, get_config
from permissions_sdk.tier0_core.errors import FetchError, FetchErrorKind
from permissions_sdk.tier1_runtime.context import get_context


@runtime_checkable
class PolicySource(Protocol):
    async def fetch(self) -> Any: ...


class HttpPolicySource:
    """
    GET the policy document over HTTP.

    Usage::

        source = HttpPolicySource("http://api.local/api/permissions/config", timeout=5)
        raw = await source.fetch()
    """

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 5.0,
        token: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = url
        self._timeout = timeout
        self._token = token
        self._client = client

    @property
    def url(self) -> str:
        return self._url

    def _build_headers(self) -> dict[str, str]:
        headers: dict[str, str] = {"Accept": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        ctx = get_context()
        if ctx is not None:
            headers["x-request-id"] = ctx.request_id
        return headers

    async def fetch(self) -> Any:
        try:
            if self._client is not None:
                response = await self._client.get(
                    self._url, headers=self._build_headers(), timeout=self._timeout
                )
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.get(self._url, headers=self._build_headers())
        except httpx.TimeoutException as exc:
            raise FetchError(
                FetchErrorKind.TIMEOUT,
                f"GET {self._url} timed out after {self._timeout}s",
            ) from exc
        except httpx.RequestError as exc:
            raise FetchError(
                FetchErrorKind.UNREACHABLE,
                f"GET {self._url} failed: {exc}",
            ) from exc

        if not response.is_success:
            raise FetchError(
                FetchErrorKind.HTTP_STATUS,
                f"GET {self._url} returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except (ValueError, RecursionError):
            # undecodable bodies are the validator's to reject
            return response.text


class StaticPolicySource:
    """
    In-memory source for tests and offline development. Serves a fixed
    payload or raises a fixed error; counts calls.
    """

    def __init__(
        self,
        payload: Any = None,
        *,
        error: FetchError | None = None,
        delay: float = 0.0,
    ) -> None:
        self._payload = payload
        self._error = error
        self.delay = delay
        self.calls = 0

    def set_payload(self, payload: Any) -> None:
        self._payload = payload
        self._error = None

    def set_error(self, error: FetchError) -> None:
        self._error = error

    async def fetch(self) -> Any:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self._error is not None:
            raise self._error
        if self._payload is None:
            raise FetchError(FetchErrorKind.UNREACHABLE, "static policy source has no payload")
        return copy.deepcopy(self._payload)


# ── Provider registry ─────────────────────────────────────────────────────────

_source: PolicySource | None = None


def _build_source(config: PermissionsConfig) -> PolicySource:
    if config.source_backend == "static":
        return StaticPolicySource()
    token = config.policy_token.get_secret_value() if config.policy_token else None
    return HttpPolicySource(config.policy_url, timeout=config.fetch_timeout, token=token)


def get_source(config: PermissionsConfig | None = None) -> PolicySource:
    global _source
    if config is not None:
        return _build_source(config)
    if _source is None:
        _source = _build_source(get_config())
    return _source


def _reset_source() -> None:
    global _source
    _source = None


__all__ = ["PolicySource", "HttpPolicySource", "StaticPolicySource", "get_source"]
