"""Public types and capability interfaces."""

from stratus.api.model import (
    AddressState,
    AllocationResult,
    FloatingIP,
    IdentityMapping,
    InstanceRecord,
    InstanceState,
    InstanceTemplate,
    ProviderInstanceId,
    ServerDetails,
    VirtualInstanceId,
)
from stratus.api.provider import ComputeClient, FloatingIPClient, ProviderConfig

__all__ = [
    "AddressState",
    "AllocationResult",
    "ComputeClient",
    "FloatingIP",
    "FloatingIPClient",
    "IdentityMapping",
    "InstanceRecord",
    "InstanceState",
    "InstanceTemplate",
    "ProviderConfig",
    "ProviderInstanceId",
    "ServerDetails",
    "VirtualInstanceId",
]
