"""blobdisk — Pooled page-blob disk provisioning and attach/detach for Azure."""

from __future__ import annotations

__version__ = "0.1.0"

from blobdisk.controller import BlobDiskController
from blobdisk.pool import AccountPoolManager
from blobdisk.service import BlobDiskService, create_service, run_service
from blobdisk.settings import BlobDiskSettings

__all__ = [
    "AccountPoolManager",
    "BlobDiskController",
    "BlobDiskService",
    "BlobDiskSettings",
    "__version__",
    "create_service",
    "run_service",
]
