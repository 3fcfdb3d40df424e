"""Nova and Keystone API response types.

TypedDicts for API responses - no conversion needed.
"""

from __future__ import annotations

from typing import NotRequired, TypedDict

# =============================================================================
# Keystone
# =============================================================================


class CatalogEndpoint(TypedDict):
    interface: str
    url: str
    region: NotRequired[str]
    region_id: NotRequired[str]


class CatalogEntry(TypedDict):
    type: str
    endpoints: list[CatalogEndpoint]
    name: NotRequired[str]


# =============================================================================
# Nova servers
# =============================================================================


# "OS-EXT-IPS:type" is "fixed" or "floating"; not a valid identifier, so
# the functional syntax is required here.
ServerAddress = TypedDict(
    "ServerAddress",
    {
        "addr": str,
        "version": NotRequired[int],
        "OS-EXT-IPS:type": NotRequired[str],
    },
)


class ServerResponse(TypedDict):
    id: str
    name: NotRequired[str]
    status: NotRequired[str]
    addresses: NotRequired[dict[str, list[ServerAddress]]]
    metadata: NotRequired[dict[str, str]]


class FloatingIPResponse(TypedDict):
    id: str | int
    ip: str
    instance_id: NotRequired[str | None]
    pool: NotRequired[str | None]
    fixed_ip: NotRequired[str | None]
