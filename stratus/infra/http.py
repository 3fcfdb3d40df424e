from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

import aiohttp
from loguru import logger
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

# ─── Errors ──────────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class HttpError(Exception):
    status: int
    body: str
    request_id: str | None = None

    def __str__(self) -> str:
        suffix = f" (request {self.request_id})" if self.request_id else ""
        return f"HTTP {self.status}: {self.fault}{suffix}"

    @property
    def fault(self) -> str:
        """The fault message from an OpenStack error body, else the raw body.

        Nova wraps errors as ``{"itemNotFound": {"message": ..., "code": 404}}``.
        """
        try:
            data = json.loads(self.body)
        except ValueError:
            return self.body
        if isinstance(data, dict) and len(data) == 1:
            (inner,) = data.values()
            if isinstance(inner, dict) and inner.get("message"):
                return str(inner["message"])
        return self.body


TRANSIENT_STATUSES = frozenset({0, 429, 502, 503, 504})

# A gateway error can arrive after the backend acted, so only these are resent
IDEMPOTENT_METHODS = frozenset({"GET", "HEAD", "OPTIONS", "PUT", "DELETE"})

# Nova sets the first, older deployments only the second
REQUEST_ID_HEADERS = ("X-OpenStack-Request-ID", "X-Compute-Request-ID")


def request_id_of(headers: Mapping[str, str]) -> str | None:
    for name in REQUEST_ID_HEADERS:
        if value := headers.get(name):
            return value
    return None


def is_transient(e: BaseException) -> bool:
    """Connection failures, throttling and gateway errors are worth retrying."""
    return isinstance(e, HttpError) and e.status in TRANSIENT_STATUSES


# ─── Response ────────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class Response:
    status: int
    data: Any
    headers: dict[str, str]


# ─── Auth ────────────────────────────────────────────────────────────


@runtime_checkable
class Auth(Protocol):
    async def headers(self) -> dict[str, str]: ...
    async def on_401(self) -> None: ...


class TokenAuth:
    """Static ``X-Auth-Token`` header, e.g. a pre-issued Keystone token."""

    def __init__(self, token: str) -> None:
        self._token = token

    async def headers(self) -> dict[str, str]:
        return {"X-Auth-Token": self._token, "Accept": "application/json"}

    async def on_401(self) -> None:
        pass


# ─── Client ──────────────────────────────────────────────────────────


class HttpClient:
    def __init__(
        self,
        base_url: str,
        auth: Auth | None = None,
        *,
        timeout: float = 30,
        default_headers: dict[str, str] | None = None,
        max_attempts: int = 3,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._auth = auth
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._default_headers = default_headers or {}
        self._max_attempts = max_attempts
        self._session: aiohttp.ClientSession | None = None
        self._log = logger.bind(component="http")

    @property
    def base_url(self) -> str:
        return self._base_url

    def _url(self, path: str) -> str:
        return f"{self._base_url}{path}"

    async def _ensure_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    async def _build_headers(self) -> dict[str, str]:
        headers = dict(self._default_headers)
        if self._auth:
            headers.update(await self._auth.headers())
        return headers

    async def _send_once(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | list[Any] | None = None,
        params: dict[str, Any] | None = None,
    ) -> Response:
        session = await self._ensure_session()
        headers = await self._build_headers()
        self._log.debug("{method} {path}", method=method, path=path)

        try:
            async with session.request(
                method, self._url(path), headers=headers, json=json, params=params
            ) as resp:
                if resp.status == 401 and self._auth:
                    self._log.debug("401 received, refreshing auth and retrying")
                    await self._auth.on_401()
                    retry_headers = await self._build_headers()
                    async with session.request(
                        method,
                        self._url(path),
                        headers=retry_headers,
                        json=json,
                        params=params,
                    ) as retry_resp:
                        return await self._parse(retry_resp)

                return await self._parse(resp)
        except aiohttp.ClientResponseError as e:
            raise HttpError(status=e.status, body=e.message) from e
        except aiohttp.ClientError as e:
            raise HttpError(status=0, body=str(e)) from e

    async def _parse(self, resp: aiohttp.ClientResponse) -> Response:
        if resp.status >= 400:
            body = await resp.text()
            request_id = request_id_of(resp.headers)
            self._log.warning(
                "HTTP {status} from {method} {url} (request {request_id}): {body}",
                status=resp.status, method=resp.method, url=str(resp.url),
                request_id=request_id, body=body[:500],
            )
            raise HttpError(status=resp.status, body=body, request_id=request_id)
        raw = await resp.read()
        data = await resp.json(content_type=None) if raw else None
        return Response(status=resp.status, data=data, headers=dict(resp.headers))

    def _log_retry(self, retry_state: RetryCallState) -> None:
        err = retry_state.outcome.exception() if retry_state.outcome else None
        self._log.warning(
            "Transient failure on attempt {n}/{max}: {err}",
            n=retry_state.attempt_number, max=self._max_attempts, err=err,
        )

    async def send(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | list[Any] | None = None,
        params: dict[str, Any] | None = None,
        retry: bool | None = None,
    ) -> Response:
        """Send a request, retrying transient failures with backoff.

        ``retry`` defaults to whether ``method`` is idempotent. A POST that
        creates something is sent once; resending it after a gateway error
        could create it twice.
        """
        if retry is None:
            retry = method.upper() in IDEMPOTENT_METHODS
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self._max_attempts if retry else 1),
            wait=wait_exponential(multiplier=0.5, max=10),
            retry=retry_if_exception(is_transient),
            before_sleep=self._log_retry,
            reraise=True,
        ):
            with attempt:
                return await self._send_once(method, path, json=json, params=params)
        raise AssertionError("unreachable")

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | list[Any] | None = None,
        params: dict[str, Any] | None = None,
        retry: bool | None = None,
    ) -> Any:
        return (await self.send(method, path, json=json, params=params, retry=retry)).data

    # ─── Lifecycle ───────────────────────────────────────────────────

    async def close(self) -> None:
        if self._session and not self._session.closed:
            self._log.debug("Closing HTTP session")
            await self._session.close()

    async def __aenter__(self) -> HttpClient:
        await self._ensure_session()
        return self

    async def __aexit__(self, *_: Any) -> None:
        await self.close()
