"""OpenStack Nova backend."""

from .config import OpenStack, OpenStackCredentials

__all__ = ["OpenStack", "OpenStackCredentials"]
