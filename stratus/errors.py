"""Error types raised by the provisioning core."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass


class StratusError(Exception):
    """Base class for errors raised by stratus."""


class ResolutionFailure(StratusError):
    """A lookup against the provider failed, so instance existence or
    readiness could not be determined."""

    def __init__(
        self,
        message: str,
        *,
        virtual_id: str | None = None,
        provider_id: str | None = None,
    ) -> None:
        super().__init__(message)
        self.virtual_id = virtual_id
        self.provider_id = provider_id


@dataclass(frozen=True, slots=True)
class RollbackFailure:
    virtual_id: str
    provider_id: str | None
    message: str

    def __str__(self) -> str:
        target = f"{self.virtual_id} ({self.provider_id})" if self.provider_id else self.virtual_id
        return f"{target}: {self.message}"


class ProvisioningShortfall(StratusError):
    """Too few instances became ready; the batch was rolled back.

    ``failures`` lists every instance that could not be cleaned up, so the
    caller can reconcile them out of band. Retrying the same batch blindly
    is unsafe: some virtual ids may be half cleaned.
    """

    def __init__(
        self,
        requested: int,
        ready: int,
        min_count: int,
        failures: Sequence[RollbackFailure] = (),
    ) -> None:
        self.requested = requested
        self.ready = ready
        self.min_count = min_count
        self.failures = tuple(failures)

        message = (
            f"Problem allocating instances: {ready} of {requested} ready, "
            f"at least {min_count} required"
        )
        if self.failures:
            details = "; ".join(str(f) for f in self.failures)
            message += f". Rollback left {len(self.failures)} failure(s): {details}"
        super().__init__(message)

    @property
    def shortfall(self) -> int:
        return self.min_count - self.ready
