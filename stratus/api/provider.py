from collections.abc import Mapping, Sequence
from typing import Protocol, runtime_checkable

from stratus.api.model import FloatingIP, ProviderInstanceId, ServerDetails


@runtime_checkable
class ProviderConfig[P](Protocol):
    @property
    def type(self) -> str: ...

    async def create_provider(self) -> P: ...


@runtime_checkable
class ComputeClient(Protocol):
    """Instance operations the orchestration consumes.

    Implementations hold only connection state. Every call is a single
    round-trip to the backend; no caching of instance records.
    """

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
    ) -> ProviderInstanceId:
        """Submit a create request.

        Returns
        -------
        ProviderInstanceId
            The backend id, which may still be empty when the backend
            assigns ids asynchronously.
        """
        ...

    async def get_instance(self, instance_id: ProviderInstanceId) -> ServerDetails | None:
        """Current status and addresses, or None if the instance is gone."""
        ...

    async def delete_instance(self, instance_id: ProviderInstanceId) -> bool:
        """Request deletion. False means the backend reported it was not deleted."""
        ...

    async def list_instances_by_name_tag(self, name: str) -> list[ServerDetails]:
        """Instances tagged with ``name`` as their virtual instance id."""
        ...


@runtime_checkable
class FloatingIPClient(Protocol):
    async def allocate_from_pool(self, pool: str) -> str: ...

    async def associate(self, address: str, instance_id: ProviderInstanceId) -> None: ...

    async def disassociate(self, address: str, instance_id: ProviderInstanceId) -> None: ...

    async def release_by_id(self, floating_ip_id: str) -> None: ...

    async def list_allocated(self) -> list[FloatingIP]: ...
