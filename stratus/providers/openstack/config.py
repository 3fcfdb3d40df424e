"""OpenStack provider configuration.

Immutable configuration dataclass for the Nova provider.
"""

from __future__ import annotations

import os
import typing
from dataclasses import dataclass

from stratus.api.provider import ProviderConfig
from stratus.provider import ComputeProvider

if typing.TYPE_CHECKING:
    from stratus.provisioning import ProvisioningPolicy

# =============================================================================
# Credentials
# =============================================================================


@dataclass(frozen=True, slots=True)
class OpenStackCredentials:
    """Resolved Keystone password credentials."""

    auth_url: str
    username: str
    password: str
    project_name: str
    user_domain: str = "Default"
    project_domain: str = "Default"

    def __repr__(self) -> str:
        return (
            f"OpenStackCredentials(auth_url={self.auth_url!r}, username={self.username!r}, "
            f"project_name={self.project_name!r}, password='***')"
        )


def _split_identity(identity: str) -> tuple[str | None, str]:
    """Split a ``project:user`` identity. A bare name is the user."""
    project, sep, user = identity.partition(":")
    if not sep:
        return None, identity
    return project or None, user


# =============================================================================
# Configuration
# =============================================================================


@dataclass(frozen=True, slots=True)
class OpenStack(ProviderConfig[ComputeProvider]):
    """OpenStack Nova provider configuration.

    Example:
        >>> from stratus.providers.openstack import OpenStack
        >>> config = OpenStack(
        ...     endpoint="https://keystone.example.com:5000/v3",
        ...     identity="analytics:director",
        ...     region="RegionOne",
        ... )

    Args:
        endpoint: Keystone URL. Falls back to OS_AUTH_URL.
        identity: ``project:user``. Falls back to OS_PROJECT_NAME and OS_USERNAME.
        credential: Password. Falls back to OS_PASSWORD.
        region: Region used to pick the compute endpoint. Falls back to OS_REGION_NAME.
        user_domain: Keystone user domain. Falls back to OS_USER_DOMAIN_NAME.
        project_domain: Keystone project domain. Falls back to OS_PROJECT_DOMAIN_NAME.
        compute_url: Skip catalog discovery and talk to this Nova endpoint.
        request_timeout: Per-request timeout in seconds.
    """

    endpoint: str | None = None
    identity: str | None = None
    credential: str | None = None
    region: str | None = None
    user_domain: str | None = None
    project_domain: str | None = None
    compute_url: str | None = None
    request_timeout: int = 30

    @property
    def type(self) -> str:
        return "openstack"

    @property
    def region_name(self) -> str | None:
        return self.region or os.environ.get("OS_REGION_NAME")

    def credentials(self) -> OpenStackCredentials:
        """Resolve credentials from this config, then the OS_* environment."""
        auth_url = self.endpoint or os.environ.get("OS_AUTH_URL")
        project, user = _split_identity(self.identity) if self.identity else (None, None)
        project = project or os.environ.get("OS_PROJECT_NAME")
        user = user or os.environ.get("OS_USERNAME")
        password = self.credential or os.environ.get("OS_PASSWORD")

        missing = [
            name
            for name, value in (
                ("endpoint (OS_AUTH_URL)", auth_url),
                ("user (OS_USERNAME)", user),
                ("credential (OS_PASSWORD)", password),
                ("project (OS_PROJECT_NAME)", project),
            )
            if not value
        ]
        if missing:
            raise ValueError(
                f"OpenStack credentials incomplete, missing: {', '.join(missing)}. "
                "Set them on OpenStack() or via the OS_* environment variables."
            )

        assert auth_url and user and password and project
        return OpenStackCredentials(
            auth_url=auth_url,
            username=user,
            password=password,
            project_name=project,
            user_domain=self.user_domain or os.environ.get("OS_USER_DOMAIN_NAME", "Default"),
            project_domain=self.project_domain or os.environ.get("OS_PROJECT_DOMAIN_NAME", "Default"),
        )

    async def create_provider(self, policy: ProvisioningPolicy | None = None) -> ComputeProvider:
        from stratus.providers.openstack.provider import connect
        return await connect(self, policy)
