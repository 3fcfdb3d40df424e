"""Backend implementations of the compute capabilities."""

from .openstack import OpenStack

__all__ = ["OpenStack"]
