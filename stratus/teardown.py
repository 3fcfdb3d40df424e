"""Best-effort teardown of provider instances by virtual id."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable

from loguru import logger

from stratus.api.model import ProviderInstanceId, VirtualInstanceId
from stratus.api.provider import ComputeClient
from stratus.floating_ip import FloatingIPManager
from stratus.identity import IdentityResolver

log = logger.bind(component="teardown")


class TeardownOrchestrator:
    def __init__(
        self,
        compute: ComputeClient,
        resolver: IdentityResolver,
        floating_ips: FloatingIPManager,
        *,
        max_workers: int = 8,
    ) -> None:
        self._compute = compute
        self._resolver = resolver
        self._floating_ips = floating_ips
        self._max_workers = max_workers

    async def release(
        self, virtual_id: VirtualInstanceId, instance_id: ProviderInstanceId,
    ) -> list[str]:
        """Release the floating IP, then delete the instance.

        Never raises for provider errors. Returns the problems hit along the
        way; an empty list means the instance is gone cleanly. A floating IP
        failure does not stop the instance delete.
        """
        problems: list[str] = []

        try:
            await self._floating_ips.detach_and_release(instance_id)
        except Exception as e:
            problems.append(f"floating IP cleanup failed: {e}")

        try:
            deleted = await self._compute.delete_instance(instance_id)
        except Exception as e:
            problems.append(f"delete failed: {e}")
        else:
            if not deleted:
                problems.append("backend reported instance not deleted")

        return problems

    async def delete(self, virtual_ids: Iterable[VirtualInstanceId]) -> None:
        """Delete the instances behind ``virtual_ids``.

        Ids with no matching instance are skipped, so repeated calls are
        harmless. Per-instance failures are logged and the batch carries on.
        """
        ids = list(dict.fromkeys(virtual_ids))
        if not ids:
            return

        mapping = await self._resolver.resolve(ids)
        sem = asyncio.Semaphore(self._max_workers)

        async def _delete_one(vid: VirtualInstanceId, pid: ProviderInstanceId) -> None:
            async with sem:
                problems = await self.release(vid, pid)
            if problems:
                for problem in problems:
                    log.warning("Unable to terminate instance {pid} ({vid}): {problem}",
                                pid=pid, vid=vid, problem=problem)
            else:
                log.info("Terminated instance {pid} ({vid})", pid=pid, vid=vid)

        skipped = [vid for vid in ids if vid not in mapping]
        if skipped:
            log.debug("No instance found for {ids}, skipping", ids=skipped)

        await asyncio.gather(*(_delete_one(vid, mapping.provider_id(vid)) for vid in ids if vid in mapping))
