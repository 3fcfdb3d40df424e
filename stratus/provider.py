"""The four operations the cluster orchestrator calls."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable
from types import TracebackType
from typing import Self

from loguru import logger

from stratus.api.model import (
    AllocationResult,
    InstanceRecord,
    InstanceState,
    InstanceTemplate,
    VirtualInstanceId,
)
from stratus.api.provider import ComputeClient, FloatingIPClient
from stratus.errors import ResolutionFailure
from stratus.floating_ip import FloatingIPManager
from stratus.identity import IdentityResolver
from stratus.provisioning import ProvisioningOrchestrator, ProvisioningPolicy
from stratus.status import StatusProjector
from stratus.teardown import TeardownOrchestrator

log = logger.bind(component="provider")


class ComputeProvider:
    """Allocate, delete, find and report on instances by virtual id.

    Backend agnostic: everything provider specific sits behind the
    ``ComputeClient`` and ``FloatingIPClient`` capabilities. Every call
    resolves virtual ids afresh; nothing is cached between calls.

    Example:
        async with await OpenStack(region="RegionOne").create_provider() as provider:
            await provider.allocate(template, ["node-1", "node-2"], min_count=2)
            states = await provider.get_instance_state(["node-1", "node-2"])
            await provider.delete(["node-1", "node-2"])
    """

    def __init__(
        self,
        compute: ComputeClient,
        floating_ips: FloatingIPClient | None = None,
        *,
        policy: ProvisioningPolicy | None = None,
        on_close: Callable[[], Awaitable[None]] | None = None,
    ) -> None:
        policy = policy or ProvisioningPolicy()
        self._compute = compute
        self._on_close = on_close
        self._resolver = IdentityResolver(compute)
        self._floating_ips = FloatingIPManager(compute, floating_ips)
        self._teardown = TeardownOrchestrator(
            compute, self._resolver, self._floating_ips, max_workers=policy.max_workers,
        )
        self._provisioning = ProvisioningOrchestrator(
            compute, self._resolver, self._floating_ips, self._teardown, policy,
        )
        self._status = StatusProjector(compute, self._resolver)

    @property
    def policy(self) -> ProvisioningPolicy:
        return self._provisioning.policy

    async def allocate(
        self,
        template: InstanceTemplate,
        virtual_ids: Iterable[VirtualInstanceId],
        min_count: int,
    ) -> AllocationResult:
        return await self._provisioning.allocate(template, virtual_ids, min_count)

    async def delete(self, virtual_ids: Iterable[VirtualInstanceId]) -> None:
        await self._teardown.delete(virtual_ids)

    async def find(
        self,
        template: InstanceTemplate,
        virtual_ids: Iterable[VirtualInstanceId],
    ) -> list[InstanceRecord]:
        """Records for the virtual ids that currently have an instance, in input order."""
        ids = list(dict.fromkeys(virtual_ids))
        mapping = await self._resolver.resolve(ids)

        records: list[InstanceRecord] = []
        for vid in ids:
            pid = mapping.provider_id(vid)
            if pid is None:
                continue
            try:
                server = await self._compute.get_instance(pid)
            except Exception as e:
                raise ResolutionFailure(
                    f"Failed to fetch instance {pid} ({vid}): {e}",
                    virtual_id=vid, provider_id=pid,
                ) from e
            if server is None:
                log.debug("Instance {pid} ({vid}) vanished after resolve", pid=pid, vid=vid)
                continue
            records.append(InstanceRecord(virtual_id=vid, template=template, server=server))

        return records

    async def get_instance_state(
        self, virtual_ids: Iterable[VirtualInstanceId],
    ) -> dict[VirtualInstanceId, InstanceState]:
        return await self._status.get_instance_state(virtual_ids)

    # ─── Lifecycle ───────────────────────────────────────────────────

    async def close(self) -> None:
        if self._on_close is not None:
            await self._on_close()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()
