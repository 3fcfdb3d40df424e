"""Reconciliation between caller-assigned virtual ids and provider ids."""

from __future__ import annotations

from collections.abc import Iterable

from loguru import logger

from stratus.api.model import (
    IdentityMapping,
    InstanceTemplate,
    ProviderInstanceId,
    VirtualInstanceId,
)
from stratus.api.provider import ComputeClient
from stratus.errors import ResolutionFailure

log = logger.bind(component="identity")


def decorate_instance_name(template: InstanceTemplate, virtual_id: VirtualInstanceId) -> str:
    """Provider-side instance name for a virtual id: ``<prefix>-<virtual id>``."""
    return f"{template.instance_name_prefix}-{virtual_id}"


class IdentityResolver:
    """Maps virtual instance ids to the provider instances tagged with them.

    Holds no state between calls. Every ``resolve`` goes back to the
    provider, since instances may appear or vanish between operations.
    """

    def __init__(self, compute: ComputeClient) -> None:
        self._compute = compute

    async def lookup(self, virtual_id: VirtualInstanceId) -> ProviderInstanceId | None:
        """Provider id of the first instance tagged with ``virtual_id``."""
        try:
            servers = await self._compute.list_instances_by_name_tag(virtual_id)
        except Exception as e:
            raise ResolutionFailure(
                f"Failed to look up instance for virtual id {virtual_id}: {e}",
                virtual_id=virtual_id,
            ) from e

        if not servers:
            return None
        if len(servers) > 1:
            log.warning(
                "{n} instances tagged {vid}, using {pid}",
                n=len(servers), vid=virtual_id, pid=servers[0].id,
            )
        return servers[0].id or None

    async def resolve(self, virtual_ids: Iterable[VirtualInstanceId]) -> IdentityMapping:
        """Resolve every virtual id, one provider query each.

        Ids without a matching instance are left out of the mapping. A
        failed query aborts the whole call with ``ResolutionFailure``.
        """
        found: dict[VirtualInstanceId, ProviderInstanceId] = {}
        for vid in dict.fromkeys(virtual_ids):
            pid = await self.lookup(vid)
            if pid is not None:
                found[vid] = pid

        log.debug("Resolved {n} virtual id(s) to provider instances", n=len(found))
        return IdentityMapping(found)
