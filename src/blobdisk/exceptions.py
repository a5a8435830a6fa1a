"""Exception hierarchy for the blob disk controller.

All exceptions inherit from BlobDiskError so callers can catch
controller-level errors with a single except clause.  Errors raised by
the Azure SDK itself (``azure.core.exceptions.AzureError``) are left to
propagate unchanged.
"""

from __future__ import annotations

from typing import Any


class BlobDiskError(Exception):
    """Base exception for all blob disk errors."""

    def __init__(self, message: str = "", *, details: dict[str, Any] | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


# =============================================================================
# Remote API Errors
# =============================================================================


class RemoteOperationError(BlobDiskError):
    """Raised when a remote call returns an unusable result."""


class RemoteListError(RemoteOperationError):
    """Raised when listing storage accounts fails or returns no value."""


class AccountNotFoundError(RemoteOperationError):
    """Raised when a storage account expected to exist is missing."""


# =============================================================================
# Pool Errors
# =============================================================================


class PoolError(BlobDiskError):
    """Base for account-pool errors."""


class CapacityExceededError(PoolError):
    """Raised when the pool already holds the maximum number of accounts."""

    def __init__(
        self,
        message: str = "",
        *,
        current: int = 0,
        maximum: int = 0,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.current = current
        self.maximum = maximum
        super().__init__(message, details=details)


class PollTimeoutError(BlobDiskError):
    """Raised when a bounded polling loop runs out of attempts."""

    def __init__(
        self,
        message: str = "",
        *,
        attempts: int = 0,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.attempts = attempts
        super().__init__(message, details=details)


class ProvisioningTimeoutError(PollTimeoutError):
    """Raised when an account never reports ``Succeeded`` provisioning state."""


class ReadinessTimeoutError(PollTimeoutError):
    """Raised when waiting for another caller's readiness check takes too long."""


# =============================================================================
# Disk Errors
# =============================================================================


class DiskError(BlobDiskError):
    """Base for disk lifecycle errors."""


class InvalidDiskURIError(DiskError):
    """Raised when a disk URI cannot be split into account and blob name."""


class DiskLeasedError(DiskError):
    """Raised when attaching a disk whose blob still holds a lease."""


class UnsupportedNodeModeError(DiskError):
    """Raised when a node uses managed disks and cannot take blob disks."""


class NoAvailableLunError(DiskError):
    """Raised when every LUN slot on a node is already in use."""
