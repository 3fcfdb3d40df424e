"""Projection of native Nova server statuses onto ``InstanceState``."""

from __future__ import annotations

from collections.abc import Iterable
from types import MappingProxyType

from loguru import logger

from stratus.api.model import InstanceState, VirtualInstanceId
from stratus.api.provider import ComputeClient
from stratus.errors import ResolutionFailure
from stratus.identity import IdentityResolver

log = logger.bind(component="status")

NATIVE_STATUS_TABLE = MappingProxyType({
    "BUILD": InstanceState.PENDING,
    "REBUILD": InstanceState.PENDING,
    "REBOOT": InstanceState.PENDING,
    "HARD_REBOOT": InstanceState.PENDING,
    "ACTIVE": InstanceState.RUNNING,
    "PASSWORD": InstanceState.RUNNING,
    "RESCUE": InstanceState.RUNNING,
    "RESIZE": InstanceState.RUNNING,
    "VERIFY_RESIZE": InstanceState.RUNNING,
    "REVERT_RESIZE": InstanceState.RUNNING,
    "MIGRATING": InstanceState.RUNNING,
    "SHELVING": InstanceState.STOPPING,
    "SHUTOFF": InstanceState.STOPPED,
    "STOPPED": InstanceState.STOPPED,
    "SUSPENDED": InstanceState.STOPPED,
    "PAUSED": InstanceState.STOPPED,
    "SHELVED": InstanceState.STOPPED,
    "SHELVED_OFFLOADED": InstanceState.STOPPED,
    "SOFT_DELETED": InstanceState.DELETING,
    "DELETED": InstanceState.DELETED,
    "ERROR": InstanceState.FAILED,
    "UNKNOWN": InstanceState.UNKNOWN,
})


def project(native_status: str | None) -> InstanceState:
    """Map a native status to an abstract state. Never raises."""
    if not native_status:
        return InstanceState.UNKNOWN
    state = NATIVE_STATUS_TABLE.get(native_status.strip().upper())
    if state is None:
        log.debug("Unrecognized native status {status!r}", status=native_status)
        return InstanceState.UNKNOWN
    return state


class StatusProjector:
    def __init__(self, compute: ComputeClient, resolver: IdentityResolver) -> None:
        self._compute = compute
        self._resolver = resolver

    async def get_instance_state(
        self, virtual_ids: Iterable[VirtualInstanceId],
    ) -> dict[VirtualInstanceId, InstanceState]:
        ids = list(dict.fromkeys(virtual_ids))
        mapping = await self._resolver.resolve(ids)

        states: dict[VirtualInstanceId, InstanceState] = {}
        for vid in ids:
            pid = mapping.provider_id(vid)
            if pid is None:
                states[vid] = InstanceState.DELETED
                continue
            try:
                server = await self._compute.get_instance(pid)
            except Exception as e:
                raise ResolutionFailure(
                    f"Failed to read status of instance {pid} ({vid}): {e}",
                    virtual_id=vid, provider_id=pid,
                ) from e
            # Gone between resolve and query
            states[vid] = InstanceState.DELETED if server is None else project(server.status)

        return states
