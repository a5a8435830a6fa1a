"""Tests for blobdisk.exceptions — error hierarchy."""

from __future__ import annotations

import pytest

from blobdisk.exceptions import (
    AccountNotFoundError,
    BlobDiskError,
    CapacityExceededError,
    DiskError,
    DiskLeasedError,
    InvalidDiskURIError,
    NoAvailableLunError,
    PollTimeoutError,
    PoolError,
    ProvisioningTimeoutError,
    ReadinessTimeoutError,
    RemoteListError,
    RemoteOperationError,
    UnsupportedNodeModeError,
)


class TestHierarchy:
    @pytest.mark.parametrize(
        ("exc_type", "parent"),
        [
            (RemoteListError, RemoteOperationError),
            (AccountNotFoundError, RemoteOperationError),
            (CapacityExceededError, PoolError),
            (ProvisioningTimeoutError, PollTimeoutError),
            (ReadinessTimeoutError, PollTimeoutError),
            (DiskLeasedError, DiskError),
            (UnsupportedNodeModeError, DiskError),
            (NoAvailableLunError, DiskError),
            (InvalidDiskURIError, DiskError),
        ],
    )
    def test_parents(self, exc_type, parent):
        assert issubclass(exc_type, parent)
        assert issubclass(exc_type, BlobDiskError)


class TestDetails:
    def test_default_details(self):
        assert BlobDiskError("x").details == {}

    def test_details_kept(self):
        exc = DiskLeasedError("leased", details={"disk_uri": "u"})
        assert exc.details == {"disk_uri": "u"}
        assert str(exc) == "leased"

    def test_capacity_fields(self):
        exc = CapacityExceededError("full", current=100, maximum=100)
        assert (exc.current, exc.maximum) == (100, 100)

    def test_poll_timeout_attempts(self):
        assert ReadinessTimeoutError("slow", attempts=20).attempts == 20
