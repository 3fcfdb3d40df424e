"""Keystone v3 password authentication and service catalog lookup."""

from __future__ import annotations

import asyncio
from typing import Any

import aiohttp
from loguru import logger

from stratus.infra.http import HttpError

from .config import OpenStackCredentials
from .types import CatalogEntry

log = logger.bind(component="keystone")


def versioned_auth_url(url: str) -> str:
    """Keystone URL with the ``/v3`` path Nova clients expect."""
    url = url.rstrip("/")
    if url.endswith("/v3") or "/v3/" in url:
        return url
    if url.endswith("/v2.0"):
        url = url.removesuffix("/v2.0")
    return f"{url}/v3"


def find_endpoint(
    catalog: list[CatalogEntry],
    service_type: str,
    *,
    region: str | None = None,
    interface: str = "public",
) -> str | None:
    for service in catalog:
        if service["type"] != service_type:
            continue
        for ep in service["endpoints"]:
            if ep["interface"] != interface:
                continue
            if region and region not in (ep.get("region_id"), ep.get("region")):
                continue
            return ep["url"]
    return None


class KeystoneAuth:
    """``X-Auth-Token`` auth backed by Keystone password tokens.

    The token is fetched lazily and dropped on a 401 so the next request
    authenticates again.
    """

    def __init__(self, credentials: OpenStackCredentials, *, timeout: float = 30) -> None:
        self._credentials = credentials
        self._timeout = timeout
        self._token: str | None = None
        self._catalog: list[CatalogEntry] = []
        self._lock = asyncio.Lock()

    @property
    def catalog(self) -> list[CatalogEntry]:
        return self._catalog

    def _payload(self) -> dict[str, Any]:
        creds = self._credentials
        return {
            "auth": {
                "identity": {
                    "methods": ["password"],
                    "password": {
                        "user": {
                            "name": creds.username,
                            "domain": {"name": creds.user_domain},
                            "password": creds.password,
                        }
                    },
                },
                "scope": {
                    "project": {
                        "name": creds.project_name,
                        "domain": {"name": creds.project_domain},
                    }
                },
            }
        }

    async def _fetch_token(self) -> str:
        url = f"{versioned_auth_url(self._credentials.auth_url)}/auth/tokens"
        log.debug("Requesting Keystone token from {url}", url=url)

        timeout = aiohttp.ClientTimeout(total=self._timeout)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session, session.post(
                url, json=self._payload()
            ) as resp:
                if resp.status >= 400:
                    body = await resp.text()
                    log.error(
                        "Keystone authentication failed: status={status} body={body}",
                        status=resp.status, body=body[:200],
                    )
                    raise HttpError(status=resp.status, body=body)
                token = resp.headers.get("X-Subject-Token")
                data = await resp.json()
        except aiohttp.ClientError as e:
            raise HttpError(status=0, body=str(e)) from e

        if not token:
            raise HttpError(status=resp.status, body="Keystone response carried no X-Subject-Token")

        self._catalog = data.get("token", {}).get("catalog", [])
        log.info(
            "Authenticated with Keystone as {user} (project={project})",
            user=self._credentials.username, project=self._credentials.project_name,
        )
        return token

    async def authenticate(self) -> str:
        async with self._lock:
            if self._token is None:
                self._token = await self._fetch_token()
            return self._token

    async def headers(self) -> dict[str, str]:
        token = await self.authenticate()
        return {"X-Auth-Token": token, "Accept": "application/json"}

    async def on_401(self) -> None:
        async with self._lock:
            self._token = None
