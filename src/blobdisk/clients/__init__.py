"""Remote storage and compute clients."""

from __future__ import annotations

from blobdisk.clients.base import (
    PROVISIONING_SUCCEEDED,
    ComputeClient,
    SkuName,
    StorageAccountInfo,
    StorageAccountState,
    StorageClient,
)

__all__ = [
    "PROVISIONING_SUCCEEDED",
    "ComputeClient",
    "SkuName",
    "StorageAccountInfo",
    "StorageAccountState",
    "StorageClient",
]
