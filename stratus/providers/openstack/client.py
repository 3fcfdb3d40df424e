"""Nova v2.1 REST clients implementing the compute and floating-IP capabilities."""

from __future__ import annotations

import re
from collections.abc import Mapping, Sequence
from types import MappingProxyType
from typing import Any

from loguru import logger

from stratus.api.model import VIRTUAL_ID_TAG, FloatingIP, ServerDetails
from stratus.infra.http import HttpClient, HttpError

from .types import FloatingIPResponse, ServerResponse

log = logger.bind(component="nova")

# os-floating-ips and the add/removeFloatingIp actions are gone after 2.35
NOVA_HEADERS = {
    "X-OpenStack-Nova-API-Version": "2.1",
    "Content-Type": "application/json",
}


def flatten_addresses(addresses: Mapping[str, Sequence[Mapping[str, Any]]] | None) -> tuple[str, ...]:
    """Flatten Nova's per-network address lists, fixed addresses first.

    Within each kind the provider's order is kept. Entries without an
    ``OS-EXT-IPS:type`` count as fixed.
    """
    if not addresses:
        return ()
    fixed: list[str] = []
    floating: list[str] = []
    for entries in addresses.values():
        for entry in entries:
            addr = entry.get("addr")
            if not addr:
                continue
            if entry.get("OS-EXT-IPS:type") == "floating":
                floating.append(addr)
            else:
                fixed.append(addr)
    return (*fixed, *floating)


def parse_server(data: ServerResponse) -> ServerDetails:
    return ServerDetails(
        id=str(data.get("id") or ""),
        name=data.get("name", ""),
        status=data.get("status", "UNKNOWN"),
        addresses=flatten_addresses(data.get("addresses")),
        metadata=MappingProxyType(dict(data.get("metadata") or {})),
    )


def matches_name_tag(server: ServerDetails, name: str) -> bool:
    """True when ``server`` was tagged with ``name`` as its virtual id.

    Servers created elsewhere carry no tag; for those the decorated name
    (``<prefix>-<name>``) is the only evidence.
    """
    tagged = server.metadata.get(VIRTUAL_ID_TAG)
    if tagged is not None:
        return tagged == name
    return server.name == name or server.name.endswith(f"-{name}")


# =============================================================================
# Compute
# =============================================================================


class NovaComputeClient:
    def __init__(self, http: HttpClient) -> None:
        self._http = http

    async def create_instance(
        self,
        name: str,
        image: str,
        flavor: str,
        networks: Sequence[str],
        availability_zone: str | None,
        security_groups: Sequence[str],
        key_name: str,
        tags: Mapping[str, str],
    ) -> str:
        server: dict[str, Any] = {
            "name": name,
            "imageRef": image,
            "flavorRef": flavor,
            "networks": [{"uuid": net} for net in networks],
            "security_groups": [{"name": group} for group in security_groups],
            "key_name": key_name,
            "metadata": dict(tags),
        }
        if availability_zone:
            server["availability_zone"] = availability_zone

        data = await self._http.request("POST", "/servers", json={"server": server})
        created = (data or {}).get("server", {})
        return str(created.get("id") or "")

    async def get_instance(self, instance_id: str) -> ServerDetails | None:
        try:
            data = await self._http.request("GET", f"/servers/{instance_id}")
        except HttpError as e:
            if e.status == 404:
                return None
            raise
        return parse_server(data["server"])

    async def delete_instance(self, instance_id: str) -> bool:
        try:
            await self._http.request("DELETE", f"/servers/{instance_id}")
        except HttpError as e:
            if e.status == 404:
                log.debug("Instance {pid} already gone", pid=instance_id)
                return False
            raise
        return True

    async def list_instances_by_name_tag(self, name: str) -> list[ServerDetails]:
        # Nova treats the name filter as a regular expression
        data = await self._http.request(
            "GET", "/servers/detail", params={"name": f"{re.escape(name)}$"},
        )
        servers = [parse_server(s) for s in (data or {}).get("servers", [])]
        return [s for s in servers if matches_name_tag(s, name)]


# =============================================================================
# Floating IPs
# =============================================================================


def _parse_floating_ip(data: FloatingIPResponse) -> FloatingIP:
    return FloatingIP(
        id=str(data["id"]),
        address=data["ip"],
        instance_id=data.get("instance_id"),
        pool=data.get("pool"),
    )


class NovaFloatingIPClient:
    def __init__(self, http: HttpClient) -> None:
        self._http = http

    async def allocate_from_pool(self, pool: str) -> str:
        data = await self._http.request("POST", "/os-floating-ips", json={"pool": pool})
        return data["floating_ip"]["ip"]

    async def associate(self, address: str, instance_id: str) -> None:
        await self._http.request(
            "POST", f"/servers/{instance_id}/action",
            json={"addFloatingIp": {"address": address}},
        )

    async def disassociate(self, address: str, instance_id: str) -> None:
        await self._http.request(
            "POST", f"/servers/{instance_id}/action",
            json={"removeFloatingIp": {"address": address}},
        )

    async def release_by_id(self, floating_ip_id: str) -> None:
        await self._http.request("DELETE", f"/os-floating-ips/{floating_ip_id}")

    async def list_allocated(self) -> list[FloatingIP]:
        data = await self._http.request("GET", "/os-floating-ips")
        return [_parse_floating_ip(f) for f in (data or {}).get("floating_ips", [])]
