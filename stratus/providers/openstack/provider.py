"""Wiring of Keystone, Nova and the orchestration layer."""

from __future__ import annotations

from loguru import logger

from stratus.infra.http import HttpClient
from stratus.provider import ComputeProvider
from stratus.provisioning import ProvisioningPolicy

from .auth import KeystoneAuth, find_endpoint
from .client import NOVA_HEADERS, NovaComputeClient, NovaFloatingIPClient
from .config import OpenStack

log = logger.bind(provider="openstack")


async def connect(config: OpenStack, policy: ProvisioningPolicy | None = None) -> ComputeProvider:
    """Authenticate against Keystone and build a provider on Nova.

    Raises:
        ValueError: Credentials incomplete, or no compute endpoint for the region.
        HttpError: Keystone rejected the credentials or was unreachable.
    """
    auth = KeystoneAuth(config.credentials(), timeout=config.request_timeout)
    await auth.authenticate()

    compute_url = config.compute_url or find_endpoint(
        auth.catalog, "compute", region=config.region_name,
    )
    if not compute_url:
        raise ValueError(
            f"No public compute endpoint in the Keystone catalog"
            f"{f' for region {config.region_name}' if config.region_name else ''}"
        )

    log.info("Using Nova endpoint {url}", url=compute_url)
    http = HttpClient(
        compute_url, auth,
        timeout=config.request_timeout,
        default_headers=NOVA_HEADERS,
    )
    return ComputeProvider(
        NovaComputeClient(http),
        NovaFloatingIPClient(http),
        policy=policy,
        on_close=http.close,
    )
