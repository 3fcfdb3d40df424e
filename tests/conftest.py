from __future__ import annotations

import asyncio
import itertools
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from types import MappingProxyType

import pytest

from stratus import ComputeProvider, InstanceTemplate, ProvisioningPolicy
from stratus.api.model import VIRTUAL_ID_TAG, FloatingIP, ServerDetails


@dataclass
class FakeServer:
    id: str
    name: str
    virtual_id: str
    metadata: dict[str, str]
    status: str = "BUILD"
    private_ip: str | None = None
    floating_ip: str | None = None
    polls: int = 0

    def details(self) -> ServerDetails:
        addresses = tuple(a for a in (self.private_ip, self.floating_ip) if a)
        return ServerDetails(
            id=self.id,
            name=self.name,
            status=self.status,
            addresses=addresses,
            metadata=MappingProxyType(dict(self.metadata)),
        )


@dataclass
class FakeCloud:
    """In-memory compute and floating IP backend.

    Instances become ACTIVE with a private address on their ``ready_after``-th
    status read (default 1). Virtual ids in ``never_ready`` stay in BUILD.
    """

    ready_after: dict[str, int] = field(default_factory=dict)
    never_ready: set[str] = field(default_factory=set)
    id_delay: dict[str, int] = field(default_factory=dict)
    fail_create: set[str] = field(default_factory=set)
    fail_get: set[str] = field(default_factory=set)
    fail_lookup: set[str] = field(default_factory=set)
    fail_delete: set[str] = field(default_factory=set)
    delete_returns_false: set[str] = field(default_factory=set)
    fail_associate: bool = False
    fail_release: bool = False

    servers: dict[str, FakeServer] = field(default_factory=dict)
    floating: dict[str, FloatingIP] = field(default_factory=dict)
    created: list[str] = field(default_factory=list)
    create_calls: list[dict] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    allocated: list[str] = field(default_factory=list)
    associated: list[tuple[str, str]] = field(default_factory=list)
    disassociated: list[tuple[str, str]] = field(default_factory=list)
    released: list[str] = field(default_factory=list)
    lookups: dict[str, int] = field(default_factory=dict)
    in_flight: int = 0
    peak: int = 0

    _ids: itertools.count = field(default_factory=lambda: itertools.count(1))

    async def _enter(self) -> None:
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        await asyncio.sleep(0)
        self.in_flight -= 1

    def add_server(
        self,
        virtual_id: str,
        *,
        status: str = "ACTIVE",
        private_ip: str | None = "10.0.0.99",
        floating_ip: str | None = None,
    ) -> FakeServer:
        """Seed an instance as if an earlier allocate had created it."""
        n = next(self._ids)
        server = FakeServer(
            id=f"srv-{n}",
            name=f"stratus-{virtual_id}",
            virtual_id=virtual_id,
            metadata={VIRTUAL_ID_TAG: virtual_id},
            status=status,
            private_ip=private_ip,
            floating_ip=floating_ip,
        )
        self.servers[server.id] = server
        if floating_ip:
            fip = FloatingIP(id=f"fip-{n}", address=floating_ip, instance_id=server.id, pool="public")
            self.floating[fip.id] = fip
        return server

    def by_virtual_id(self, virtual_id: str) -> list[FakeServer]:
        return [s for s in self.servers.values() if s.virtual_id == virtual_id]

    # ─── ComputeClient ───────────────────────────────────────────────

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
        await self._enter()
        self.create_calls.append({
            "name": name, "image": image, "flavor": flavor, "networks": list(networks),
            "availability_zone": availability_zone, "security_groups": list(security_groups),
            "key_name": key_name, "tags": dict(tags),
        })
        vid = tags[VIRTUAL_ID_TAG]
        if vid in self.fail_create:
            raise RuntimeError(f"quota exceeded for {vid}")

        n = next(self._ids)
        server = FakeServer(id=f"srv-{n}", name=name, virtual_id=vid, metadata=dict(tags))
        self.servers[server.id] = server
        self.created.append(vid)
        return "" if vid in self.id_delay else server.id

    async def get_instance(self, instance_id: str) -> ServerDetails | None:
        await self._enter()
        server = self.servers.get(instance_id)
        if server is None:
            return None
        if server.virtual_id in self.fail_get:
            raise RuntimeError("compute API unavailable")

        server.polls += 1
        if server.virtual_id not in self.never_ready and server.polls >= self.ready_after.get(server.virtual_id, 1):
            server.status = "ACTIVE"
            server.private_ip = server.private_ip or f"10.0.0.{instance_id.removeprefix('srv-')}"
        return server.details()

    async def delete_instance(self, instance_id: str) -> bool:
        await self._enter()
        server = self.servers.get(instance_id)
        vid = server.virtual_id if server else None
        if vid in self.fail_delete:
            raise RuntimeError(f"cannot delete {instance_id}")
        if server is None or vid in self.delete_returns_false:
            return False
        del self.servers[instance_id]
        self.deleted.append(vid)
        return True

    async def list_instances_by_name_tag(self, name: str) -> list[ServerDetails]:
        await self._enter()
        self.lookups[name] = self.lookups.get(name, 0) + 1
        if name in self.fail_lookup:
            raise RuntimeError("compute API unavailable")
        if self.lookups[name] <= self.id_delay.get(name, 0):
            return []
        return [s.details() for s in self.by_virtual_id(name)]

    # ─── FloatingIPClient ────────────────────────────────────────────

    async def allocate_from_pool(self, pool: str) -> str:
        await self._enter()
        n = next(self._ids)
        fip = FloatingIP(id=f"fip-{n}", address=f"203.0.113.{n}", pool=pool)
        self.floating[fip.id] = fip
        self.allocated.append(fip.address)
        return fip.address

    async def associate(self, address: str, instance_id: str) -> None:
        await self._enter()
        if self.fail_associate:
            raise RuntimeError("floating IP quota exceeded")
        self.associated.append((address, instance_id))
        self.servers[instance_id].floating_ip = address

    async def disassociate(self, address: str, instance_id: str) -> None:
        await self._enter()
        self.disassociated.append((address, instance_id))
        server = self.servers.get(instance_id)
        if server is not None:
            server.floating_ip = None

    async def release_by_id(self, floating_ip_id: str) -> None:
        await self._enter()
        if self.fail_release:
            raise RuntimeError("release refused")
        del self.floating[floating_ip_id]
        self.released.append(floating_ip_id)

    async def list_allocated(self) -> list[FloatingIP]:
        await self._enter()
        return list(self.floating.values())


@pytest.fixture
def cloud() -> FakeCloud:
    return FakeCloud()


@pytest.fixture
def policy() -> ProvisioningPolicy:
    return ProvisioningPolicy(poll_interval=0.01, timeout=0.2, max_workers=8)


@pytest.fixture
def template() -> InstanceTemplate:
    return InstanceTemplate(
        name="worker",
        image="img-1",
        flavor="m1.small",
        network="net-1",
        security_group_names=("default", "cluster"),
        key_name="director",
        availability_zone="nova",
    )


@pytest.fixture
def provider(cloud: FakeCloud, policy: ProvisioningPolicy) -> ComputeProvider:
    return ComputeProvider(cloud, cloud, policy=policy)
