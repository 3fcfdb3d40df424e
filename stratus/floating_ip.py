"""Floating (public) address handling."""

from __future__ import annotations

from loguru import logger

from stratus.api.model import ProviderInstanceId
from stratus.api.provider import ComputeClient, FloatingIPClient
from stratus.errors import StratusError

log = logger.bind(component="floating_ip")


class FloatingIPManager:
    def __init__(self, compute: ComputeClient, floating_ips: FloatingIPClient | None) -> None:
        self._compute = compute
        self._floating_ips = floating_ips

    async def attach(self, pool: str | None, instance_id: ProviderInstanceId) -> str | None:
        """Allocate one address from ``pool`` and associate it to the instance.

        No-op without a pool. Each call consumes a new address, so call it
        at most once per instance.
        """
        if not pool:
            return None
        if self._floating_ips is None:
            raise RuntimeError(f"Floating IP pool {pool!r} configured but no floating IP client")

        address = await self._floating_ips.allocate_from_pool(pool)
        try:
            await self._floating_ips.associate(address, instance_id)
        except Exception:
            # unassociated addresses are invisible to detach_and_release
            await self._release_unattached(self._floating_ips, address)
            raise
        log.info("Instance {pid} got floating IP {ip} from {pool}", pid=instance_id, ip=address, pool=pool)
        return address

    async def _release_unattached(self, client: FloatingIPClient, address: str) -> None:
        try:
            fip_id = await self._find_id(client, address)
            if fip_id is None:
                log.error("Unattached floating IP {ip} not in allocation list, left allocated", ip=address)
                return
            await client.release_by_id(fip_id)
        except Exception as e:
            log.error("Could not release unattached floating IP {ip}: {err}", ip=address, err=e)
            return
        log.info("Released unattached floating IP {ip}", ip=address)

    @staticmethod
    async def _find_id(client: FloatingIPClient, address: str) -> str | None:
        for fip in await client.list_allocated():
            if fip.address == address:
                return fip.id
        return None

    async def detach_and_release(self, instance_id: ProviderInstanceId) -> str | None:
        """Disassociate and release the instance's floating address, if any.

        The first address is the fixed one; only a second address is
        treated as floating. Returns the released address. Raises
        ``StratusError`` when the address is not in the allocation list, after
        disassociating it, since it then stays allocated.
        """
        server = await self._compute.get_instance(instance_id)
        if server is None or server.floating_ip is None:
            return None

        address = server.floating_ip
        if self._floating_ips is None:
            log.warning(
                "Instance {pid} has floating IP {ip} but no floating IP client, leaving it",
                pid=instance_id, ip=address,
            )
            return None

        fip_id = await self._find_id(self._floating_ips, address)
        await self._floating_ips.disassociate(address, instance_id)

        if fip_id is None:
            raise StratusError(f"Floating IP {address} not found in allocation list, left allocated")

        await self._floating_ips.release_by_id(fip_id)
        log.info("Released floating IP {ip} from instance {pid}", ip=address, pid=instance_id)
        return address
