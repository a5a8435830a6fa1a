"""Wire settings, clients, pool and controller into one service object."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from blobdisk.bootstrap import PoolBootstrapper
from blobdisk.clients.mock import MockComputeClient, MockStorageClient
from blobdisk.controller import BlobDiskController
from blobdisk.logging_config import setup_logging
from blobdisk.naming import ClusterNaming
from blobdisk.pool import AccountPoolManager
from blobdisk.settings import BlobDiskSettings

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from blobdisk.clients.base import ComputeClient, StorageClient

logger = logging.getLogger(__name__)

CONTROL_PLANE_ROLE = "controller"


class BlobDiskService:
    """Owns the controller and the background bootstrap for one process."""

    def __init__(
        self,
        settings: BlobDiskSettings,
        storage: StorageClient,
        compute: ComputeClient,
    ) -> None:
        self.settings = settings
        self.storage = storage
        self.compute = compute
        self.naming = ClusterNaming(
            subscription_id=settings.azure.subscription_id,
            resource_group=settings.azure.resource_group,
            location=settings.azure.location,
            storage_endpoint_suffix=settings.azure.storage_endpoint_suffix,
        )
        self.pool = AccountPoolManager(storage, self.naming, settings.pool, settings.polling)
        self.controller = BlobDiskController(self.pool, storage, compute, settings.polling)
        self.bootstrapper = PoolBootstrapper(
            self.pool,
            settings.pool,
            is_control_plane=lambda: settings.process_role == CONTROL_PLANE_ROLE,
        )

    async def start(self) -> None:
        logger.info(
            "Blob disk service starting (backend=%s, resource_group=%s, container=%s)",
            self.settings.backend,
            self.naming.resource_group,
            self.naming.container_name,
        )
        await self.bootstrapper.start()

    async def stop(self) -> None:
        await self.bootstrapper.stop()
        for client in (self.storage, self.compute):
            close = getattr(client, "close", None)
            if close is not None:
                close()
        logger.info("Blob disk service stopped")


def _build_clients(settings: BlobDiskSettings) -> tuple[Any, Any]:
    if settings.backend == "mock":
        return MockStorageClient(), MockComputeClient()

    from blobdisk.clients.azure_compute import AzureComputeClient
    from blobdisk.clients.azure_storage import AzureStorageClient
    from blobdisk.clients.credentials import make_credential

    credential = make_credential(settings.azure)
    storage = AzureStorageClient(
        credential=credential,
        subscription_id=settings.azure.subscription_id,
        resource_group=settings.azure.resource_group,
        storage_endpoint_suffix=settings.azure.storage_endpoint_suffix,
    )
    compute = AzureComputeClient(
        credential=credential,
        subscription_id=settings.azure.subscription_id,
        resource_group=settings.azure.resource_group,
        location=settings.azure.location,
    )
    return storage, compute


def create_service(
    settings: BlobDiskSettings | None = None,
    *,
    configure_logging: bool = True,
) -> BlobDiskService:
    """Build a :class:`BlobDiskService` for the configured backend."""
    if settings is None:
        settings = BlobDiskSettings()
    if configure_logging:
        setup_logging(settings.log_level, json_output=settings.log_json)

    storage, compute = _build_clients(settings)
    return BlobDiskService(settings, storage, compute)


@asynccontextmanager
async def run_service(
    settings: BlobDiskSettings | None = None,
    *,
    configure_logging: bool = True,
) -> AsyncGenerator[BlobDiskService, None]:
    """Start a service for the duration of the block and stop it afterwards."""
    service = create_service(settings, configure_logging=configure_logging)
    await service.start()
    try:
        yield service
    finally:
        await service.stop()
