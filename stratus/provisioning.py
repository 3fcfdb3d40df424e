"""Batched instance provisioning with bounded readiness polling and rollback.

Each virtual id gets its own worker: create the instance, wait for the
backend to assign an id, wait for a private address, then attach a
floating IP once. Workers share one ``_AllocationRun`` that owns the
pending set. When every worker has finished or run out of time, the
ready count is compared to ``min_count`` in one place and the whole
batch is rolled back if it falls short.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from dataclasses import dataclass, field

from loguru import logger
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_delay,
    wait_fixed,
)

from stratus.api.model import (
    INSTANCE_NAME_TAG,
    VIRTUAL_ID_TAG,
    AddressState,
    AllocationResult,
    InstanceTemplate,
    ProviderInstanceId,
    VirtualInstanceId,
)
from stratus.api.provider import ComputeClient
from stratus.errors import ProvisioningShortfall, ResolutionFailure, RollbackFailure
from stratus.floating_ip import FloatingIPManager
from stratus.identity import IdentityResolver, decorate_instance_name
from stratus.teardown import TeardownOrchestrator

log = logger.bind(component="provisioning")


@dataclass(frozen=True, slots=True)
class ProvisioningPolicy:
    """Timing knobs for ``allocate``.

    Attributes:
        poll_interval: Seconds between readiness checks.
        timeout: Per-instance budget, counted from the create call returning,
            shared by the wait for an instance id and the wait for a private
            address.
        max_workers: Concurrent provider calls per operation.
    """

    poll_interval: float = 5.0
    timeout: float = 180.0
    max_workers: int = 8

    def __post_init__(self) -> None:
        if self.poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        if self.timeout < 0:
            raise ValueError("timeout must not be negative")
        if self.max_workers < 1:
            raise ValueError("max_workers must be at least 1")


class _StillPendingError(Exception):
    """Instance not ready yet - retry."""


@dataclass
class _AllocationRun:
    """Mutable state of one ``allocate`` call. Never shared across calls."""

    template: InstanceTemplate
    virtual_ids: tuple[VirtualInstanceId, ...]
    slots: asyncio.Semaphore
    pending: set[VirtualInstanceId] = field(default_factory=set)
    created: dict[VirtualInstanceId, ProviderInstanceId] = field(default_factory=dict)
    unassigned: set[VirtualInstanceId] = field(default_factory=set)
    attached: set[ProviderInstanceId] = field(default_factory=set)

    def __post_init__(self) -> None:
        self.pending = set(self.virtual_ids)

    @property
    def ready(self) -> tuple[VirtualInstanceId, ...]:
        return tuple(vid for vid in self.virtual_ids if vid not in self.pending)

    @property
    def still_pending(self) -> tuple[VirtualInstanceId, ...]:
        return tuple(vid for vid in self.virtual_ids if vid in self.pending)


def _log_wait(retry_state: RetryCallState) -> None:
    outcome = retry_state.outcome
    reason = outcome.exception() if outcome is not None else None
    delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
    log.debug("{reason}, checking again in {delay:.1f}s", reason=reason, delay=delay)


class ProvisioningOrchestrator:
    def __init__(
        self,
        compute: ComputeClient,
        resolver: IdentityResolver,
        floating_ips: FloatingIPManager,
        teardown: TeardownOrchestrator,
        policy: ProvisioningPolicy | None = None,
    ) -> None:
        self._compute = compute
        self._resolver = resolver
        self._floating_ips = floating_ips
        self._teardown = teardown
        self._policy = policy or ProvisioningPolicy()

    @property
    def policy(self) -> ProvisioningPolicy:
        return self._policy

    # -------------------------------------------------------------------------
    # Polling
    # -------------------------------------------------------------------------

    def _poller(self, deadline: float) -> AsyncRetrying:
        remaining = max(0.0, deadline - asyncio.get_running_loop().time())
        return AsyncRetrying(
            stop=stop_after_delay(remaining),
            wait=wait_fixed(self._policy.poll_interval),
            retry=retry_if_exception_type(_StillPendingError),
            before_sleep=_log_wait,
            reraise=True,
        )

    async def _wait_for_id(
        self, run: _AllocationRun, vid: VirtualInstanceId, deadline: float,
    ) -> ProviderInstanceId | None:
        """Poll by name until the backend has assigned an instance id."""
        try:
            async for attempt in self._poller(deadline):
                with attempt:
                    async with run.slots:
                        pid = await self._resolver.lookup(vid)
                    if not pid:
                        raise _StillPendingError(f"Instance for {vid} has no id yet")
        except _StillPendingError:
            return None
        return pid

    async def _has_private_address(
        self, run: _AllocationRun, vid: VirtualInstanceId, pid: ProviderInstanceId,
    ) -> bool:
        try:
            async with run.slots:
                server = await self._compute.get_instance(pid)
        except Exception as e:
            raise ResolutionFailure(
                f"Failed to read addresses of instance {pid} ({vid}): {e}",
                virtual_id=vid, provider_id=pid,
            ) from e
        return server is not None and server.address_state is not AddressState.NONE

    async def _wait_for_private_address(
        self,
        run: _AllocationRun,
        vid: VirtualInstanceId,
        pid: ProviderInstanceId,
        deadline: float,
    ) -> bool:
        try:
            async for attempt in self._poller(deadline):
                with attempt:
                    if not await self._has_private_address(run, vid, pid):
                        raise _StillPendingError(f"Instance {pid} ({vid}) has no IP yet")
        except _StillPendingError:
            return False
        return True

    # -------------------------------------------------------------------------
    # Per-instance worker
    # -------------------------------------------------------------------------

    async def _create(self, run: _AllocationRun, vid: VirtualInstanceId) -> ProviderInstanceId | None:
        template = run.template
        name = decorate_instance_name(template, vid)
        tags = {**template.tags, VIRTUAL_ID_TAG: vid, INSTANCE_NAME_TAG: name}

        try:
            async with run.slots:
                pid = await self._compute.create_instance(
                    name=name,
                    image=template.image,
                    flavor=template.flavor,
                    networks=[template.network],
                    availability_zone=template.availability_zone,
                    security_groups=list(template.security_group_names),
                    key_name=template.key_name,
                    tags=tags,
                )
        except Exception as e:
            log.error("Failed to create instance {name}: {err}", name=name, err=e)
            return None

        log.debug("Submitted instance {name} (id={pid!r})", name=name, pid=pid)
        return pid

    async def _attach_floating_ip(
        self, run: _AllocationRun, vid: VirtualInstanceId, pid: ProviderInstanceId,
    ) -> None:
        if pid in run.attached:
            return
        run.attached.add(pid)
        try:
            async with run.slots:
                await self._floating_ips.attach(run.template.floating_ip_pool, pid)
        except Exception as e:
            log.warning(
                "Floating IP attach failed for instance {pid} ({vid}): {err}",
                pid=pid, vid=vid, err=e,
            )

    async def _provision_one(self, run: _AllocationRun, vid: VirtualInstanceId) -> None:
        pid = await self._create(run, vid)
        if pid is None:
            return

        deadline = asyncio.get_running_loop().time() + self._policy.timeout

        if not pid:
            run.unassigned.add(vid)
            pid = await self._wait_for_id(run, vid, deadline)
            if pid is None:
                log.warning("Instance for {vid} got no id within {t:.0f}s", vid=vid, t=self._policy.timeout)
                return
            run.unassigned.discard(vid)

        run.created[vid] = pid

        if not await self._wait_for_private_address(run, vid, pid, deadline):
            log.warning(
                "Instance {pid} ({vid}) has no private IP after {t:.0f}s",
                pid=pid, vid=vid, t=self._policy.timeout,
            )
            return

        await self._attach_floating_ip(run, vid, pid)
        run.pending.discard(vid)
        log.info(
            "Instance {pid} ({vid}) ready, {n} instance(s) still pending",
            pid=pid, vid=vid, n=len(run.pending),
        )

    # -------------------------------------------------------------------------
    # Rollback
    # -------------------------------------------------------------------------

    async def _rollback(self, run: _AllocationRun) -> list[RollbackFailure]:
        failures: list[RollbackFailure] = []

        try:
            mapping = await self._resolver.resolve(run.virtual_ids)
            targets = {vid: mapping.by_virtual_id[vid] for vid in run.virtual_ids if vid in mapping}
        except ResolutionFailure as e:
            log.error("Rollback could not resolve instances, using ids seen at creation: {err}", err=e)
            failures.append(RollbackFailure(e.virtual_id or "*", None, f"resolution failed: {e}"))
            targets = {}

        for vid, pid in run.created.items():
            targets.setdefault(vid, pid)

        for vid in run.unassigned - targets.keys():
            failures.append(RollbackFailure(vid, None, "instance never got an id and could not be located"))

        async def _release_one(vid: VirtualInstanceId, pid: ProviderInstanceId) -> None:
            async with run.slots:
                problems = await self._teardown.release(vid, pid)
            if problems:
                failures.append(RollbackFailure(vid, pid, "; ".join(problems)))
            else:
                log.info("Rolled back instance {pid} ({vid})", pid=pid, vid=vid)

        await asyncio.gather(*(_release_one(vid, pid) for vid, pid in targets.items()))
        return failures

    # -------------------------------------------------------------------------
    # Entry point
    # -------------------------------------------------------------------------

    async def allocate(
        self,
        template: InstanceTemplate,
        virtual_ids: Iterable[VirtualInstanceId],
        min_count: int,
    ) -> AllocationResult:
        """Create one instance per virtual id and wait for their private IPs.

        Returns when at least ``min_count`` instances have a private address.
        Instances still without one are left in place. Below ``min_count``
        every instance of the batch is deleted and ``ProvisioningShortfall``
        is raised with whatever could not be cleaned up.

        Raises:
            ValueError: ``min_count`` outside ``0..len(virtual_ids)``. Nothing
                is created.
            ProvisioningShortfall: Too few instances became ready.
            ResolutionFailure: Instance state could not be read while polling.
        """
        ids = tuple(dict.fromkeys(virtual_ids))
        if min_count < 0:
            raise ValueError(f"min_count must not be negative, got {min_count}")
        if min_count > len(ids):
            raise ValueError(f"min_count ({min_count}) exceeds the number of instances requested ({len(ids)})")
        if not ids:
            return AllocationResult(ready=())

        run = _AllocationRun(
            template=template,
            virtual_ids=ids,
            slots=asyncio.Semaphore(self._policy.max_workers),
        )
        log.info(
            "Allocating {n} instance(s) from template {name} (min {min_count})",
            n=len(ids), name=template.name, min_count=min_count,
        )

        tasks = [asyncio.create_task(self._provision_one(run, vid)) for vid in ids]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        ready = len(ids) - len(run.pending)
        if ready >= min_count:
            if run.pending:
                log.warning(
                    "{n} instance(s) still without a private IP, leaving them: {ids}",
                    n=len(run.pending), ids=run.still_pending,
                )
            return AllocationResult(ready=run.ready, pending=run.still_pending)

        log.warning(
            "Only {ready} of {n} instance(s) ready, {min_count} required; rolling back",
            ready=ready, n=len(ids), min_count=min_count,
        )
        failures = await self._rollback(run)
        raise ProvisioningShortfall(
            requested=len(ids), ready=ready, min_count=min_count, failures=failures,
        )
