from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any

type VirtualInstanceId = str
type ProviderInstanceId = str

VIRTUAL_ID_TAG = "VIRTUAL_INSTANCE_ID"
INSTANCE_NAME_TAG = "INSTANCE_NAME"
DEFAULT_NAME_PREFIX = "stratus"


def _split_csv(value: str | list[str] | tuple[str, ...]) -> tuple[str, ...]:
    if isinstance(value, str):
        return tuple(part.strip() for part in value.split(",") if part.strip())
    return tuple(str(part).strip() for part in value if str(part).strip())


def _first(raw: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if raw.get(key) not in (None, ""):
            return raw[key]
    return None


# =============================================================================
# Template
# =============================================================================


@dataclass(frozen=True, slots=True)
class InstanceTemplate:
    """Immutable description of the instances to launch for one group.

    Shared read-only across a batch. Nothing in the orchestration layer
    validates or mutates it.
    """

    name: str
    image: str
    flavor: str
    network: str
    security_group_names: tuple[str, ...]
    key_name: str
    availability_zone: str | None = None
    floating_ip_pool: str | None = None
    instance_name_prefix: str = DEFAULT_NAME_PREFIX
    tags: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def from_config(cls, name: str, raw: Mapping[str, Any]) -> InstanceTemplate:
        """Build a template from a TOML table or orchestrator-provided mapping.

        Accepts both snake_case keys and the camelCase keys used by the
        orchestrator's template properties (``imageId``, ``networkId``,
        ``securityGroupNames`` as a comma separated string, ...).
        """
        values = {
            "image": _first(raw, "image", "imageId"),
            "flavor": _first(raw, "flavor", "type", "flavorId"),
            "network": _first(raw, "network", "networkId"),
            "security_group_names": _first(raw, "security_group_names", "securityGroupNames"),
            "key_name": _first(raw, "key_name", "keyName"),
        }
        missing = [key for key, value in values.items() if value is None]
        if missing:
            raise ValueError(f"Template '{name}' missing required field(s): {', '.join(missing)}")

        groups = _split_csv(values["security_group_names"])
        if not groups:
            raise ValueError(f"Template '{name}' needs at least one security group")

        return cls(
            name=name,
            image=str(values["image"]),
            flavor=str(values["flavor"]),
            network=str(values["network"]),
            security_group_names=groups,
            key_name=str(values["key_name"]),
            availability_zone=_first(raw, "availability_zone", "availabilityZone"),
            floating_ip_pool=_first(raw, "floating_ip_pool", "floatingIpPool"),
            instance_name_prefix=_first(raw, "instance_name_prefix", "instanceNamePrefix")
            or DEFAULT_NAME_PREFIX,
            tags=MappingProxyType(dict(raw.get("tags") or {})),
        )


# =============================================================================
# Provider-side views
# =============================================================================


class AddressState(Enum):
    NONE = "none"
    PRIVATE = "private"
    PRIVATE_AND_FLOATING = "private_and_floating"


@dataclass(frozen=True, slots=True)
class ServerDetails:
    """The slice of a provider instance record the orchestration needs.

    ``addresses`` keeps the provider's order: the first entry is the fixed
    (private) address, a second one is the floating address.
    """

    id: ProviderInstanceId
    name: str
    status: str
    addresses: tuple[str, ...] = ()
    metadata: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))

    @property
    def private_ip(self) -> str | None:
        return self.addresses[0] if self.addresses else None

    @property
    def floating_ip(self) -> str | None:
        return self.addresses[1] if len(self.addresses) > 1 else None

    @property
    def address_state(self) -> AddressState:
        match len(self.addresses):
            case 0:
                return AddressState.NONE
            case 1:
                return AddressState.PRIVATE
            case _:
                return AddressState.PRIVATE_AND_FLOATING


@dataclass(frozen=True, slots=True)
class FloatingIP:
    id: str
    address: str
    instance_id: ProviderInstanceId | None = None
    pool: str | None = None


# =============================================================================
# Identity
# =============================================================================


@dataclass(frozen=True, slots=True)
class IdentityMapping:
    """Virtual id <-> provider id pairs observed by one resolve call.

    Built fresh for every operation and discarded with it; a virtual id
    missing from the mapping had no matching instance at query time.
    """

    by_virtual_id: Mapping[VirtualInstanceId, ProviderInstanceId] = field(
        default_factory=lambda: MappingProxyType({})
    )

    def __post_init__(self) -> None:
        object.__setattr__(self, "by_virtual_id", MappingProxyType(dict(self.by_virtual_id)))

    def provider_id(self, virtual_id: VirtualInstanceId) -> ProviderInstanceId | None:
        return self.by_virtual_id.get(virtual_id)

    def virtual_id(self, provider_id: ProviderInstanceId) -> VirtualInstanceId | None:
        for vid, pid in self.by_virtual_id.items():
            if pid == provider_id:
                return vid
        return None

    def __contains__(self, virtual_id: object) -> bool:
        return virtual_id in self.by_virtual_id

    def __iter__(self) -> Iterator[VirtualInstanceId]:
        return iter(self.by_virtual_id)

    def __len__(self) -> int:
        return len(self.by_virtual_id)


# =============================================================================
# Caller-facing results
# =============================================================================


class InstanceState(Enum):
    """Abstract lifecycle state reported to the orchestrator."""

    PENDING = "pending"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    DELETING = "deleting"
    DELETED = "deleted"
    FAILED = "failed"
    UNKNOWN = "unknown"


@dataclass(frozen=True, slots=True)
class InstanceRecord:
    virtual_id: VirtualInstanceId
    template: InstanceTemplate
    server: ServerDetails

    @property
    def provider_id(self) -> ProviderInstanceId:
        return self.server.id

    @property
    def private_ip(self) -> str | None:
        return self.server.private_ip

    @property
    def floating_ip(self) -> str | None:
        return self.server.floating_ip

    @property
    def state(self) -> InstanceState:
        from stratus.status import project

        return project(self.server.status)


@dataclass(frozen=True, slots=True)
class AllocationResult:
    """Outcome of a successful allocate call.

    ``pending`` instances were created but showed no private address before
    the deadline. They are left running.
    """

    ready: tuple[VirtualInstanceId, ...]
    pending: tuple[VirtualInstanceId, ...] = ()
