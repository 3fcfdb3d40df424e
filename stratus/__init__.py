"""Stratus - Allocate and tear down OpenStack instances by virtual id.

Example:

    from stratus import InstanceTemplate, OpenStack

    template = InstanceTemplate(
        name="worker",
        image="5b0a0a3e-...",
        flavor="m1.large",
        network="0f5e...",
        security_group_names=("default",),
        key_name="director",
        floating_ip_pool="public",
    )

    async with await OpenStack(region="RegionOne").create_provider() as provider:
        result = await provider.allocate(template, ["node-1", "node-2"], min_count=1)
        states = await provider.get_instance_state(result.ready)
        await provider.delete(["node-1", "node-2"])
"""

# Logging (disables the "stratus" logger on import)
from stratus.logging import LogConfig, LogLevel, setup_logging, teardown_logging

# Types and capabilities
from stratus.api import (
    AddressState,
    AllocationResult,
    ComputeClient,
    FloatingIP,
    FloatingIPClient,
    IdentityMapping,
    InstanceRecord,
    InstanceState,
    InstanceTemplate,
    ProviderConfig,
    ProviderInstanceId,
    ServerDetails,
    VirtualInstanceId,
)

# Errors
from stratus.errors import (
    ProvisioningShortfall,
    ResolutionFailure,
    RollbackFailure,
    StratusError,
)

# Components
from stratus.floating_ip import FloatingIPManager
from stratus.identity import IdentityResolver
from stratus.provisioning import ProvisioningOrchestrator, ProvisioningPolicy
from stratus.status import StatusProjector
from stratus.teardown import TeardownOrchestrator

# Facade
from stratus.provider import ComputeProvider

# Configuration
from stratus.config import load_config, resolve_policy, resolve_provider, resolve_template

# Providers
from stratus.providers import OpenStack

__all__ = [
    # Logging
    "LogConfig",
    "LogLevel",
    "setup_logging",
    "teardown_logging",
    # Types
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
    # Errors
    "ProvisioningShortfall",
    "ResolutionFailure",
    "RollbackFailure",
    "StratusError",
    # Components
    "FloatingIPManager",
    "IdentityResolver",
    "ProvisioningOrchestrator",
    "ProvisioningPolicy",
    "StatusProjector",
    "TeardownOrchestrator",
    # Facade
    "ComputeProvider",
    # Configuration
    "load_config",
    "resolve_policy",
    "resolve_provider",
    "resolve_template",
    # Providers
    "OpenStack",
]
