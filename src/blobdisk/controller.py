"""Disk lifecycle: create, delete, attach and detach page-blob disks.

Each operation is a short sequence of remote steps.  Steps are not
retried here; only provisioning readiness (in the pool) and detach
confirmation are polled with backoff.  Cleanup and recount steps that
follow an already-decided outcome log their own failures instead of
raising.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from azure.core.exceptions import AzureError

from blobdisk.backoff import Backoff, poll_until
from blobdisk.exceptions import (
    BlobDiskError,
    DiskLeasedError,
    PollTimeoutError,
    UnsupportedNodeModeError,
)
from blobdisk.instance import AttachedDisk, CachingMode, DiskMode, find_empty_lun
from blobdisk.locks import KeyedLocks
from blobdisk.logging_config import operation_scope
from blobdisk.naming import make_crc32, split_disk_uri
from blobdisk.vhd import VHD_FOOTER_SIZE, create_fixed_footer

if TYPE_CHECKING:
    from blobdisk.clients.base import ComputeClient, SkuName, StorageClient
    from blobdisk.pool import AccountPoolManager
    from blobdisk.settings import PollingConfig

logger = logging.getLogger(__name__)

GIB = 1024**3
DISK_METADATA = {"created-by": "blobdisk-data-disk"}
LEASE_PROBE_METADATA = {"blobdiskcheck": "ok"}


class BlobDiskController:
    """Creates page-blob disks in the account pool and binds them to nodes.

    Parameters
    ----------
    pool:
        Account pool used for placement, keys and disk-count bookkeeping.
    storage:
        Remote account/blob client.
    compute:
        Remote client for node disk-attachment descriptors.
    polling:
        Backoff schedule for detach confirmation.
    """

    def __init__(
        self,
        pool: AccountPoolManager,
        storage: StorageClient,
        compute: ComputeClient,
        polling: PollingConfig,
    ) -> None:
        self._pool = pool
        self._naming = pool.naming
        self._storage = storage
        self._compute = compute
        self._backoff = Backoff.from_config(polling)
        self._node_locks = KeyedLocks()

    # ------------------------------------------------------------------
    # Create / delete
    # ------------------------------------------------------------------

    async def create_disk(
        self,
        disk_name: str,
        sku: SkuName,
        size_gib: int,
        dedicated: bool = False,
    ) -> str:
        """Create a fixed VHD page blob and return its URI.

        Dedicated disks get an account of their own, which does not count
        against the shared pool's account limit.
        """
        with operation_scope("create_disk", disk=disk_name, sku=sku.value):
            if dedicated:
                account = self._naming.dedicated_account_name(disk_name)
                logger.info("Disk %s will be placed on dedicated account %s", disk_name, account)
                await self._pool.provision_account(account, sku, enforce_max_count=False)
            else:
                account = await self._pool.find_or_create_account(sku)

            blob_name = self._naming.blob_name(disk_name)
            uri = await self._write_vhd_blob(account, blob_name, size_gib)

            if not dedicated:
                self._pool.record_disk_created(account)

            logger.info("Created disk %s (%d GiB) at %s", disk_name, size_gib, uri)
            return uri

    async def _write_vhd_blob(self, account: str, blob_name: str, size_gib: int) -> str:
        key = await self._pool.get_account_key(account)
        container = self._naming.container_name
        size_bytes = size_gib * GIB

        await self._storage.put_page_blob(
            account,
            key,
            container,
            blob_name,
            size_bytes + VHD_FOOTER_SIZE,
            dict(DISK_METADATA),
        )

        try:
            footer = create_fixed_footer(size_bytes)
            await self._storage.put_page(account, key, container, blob_name, size_bytes, footer)
        except Exception:
            logger.error(
                "Failed to write the VHD footer of %s in account %s, deleting the blob",
                blob_name,
                account,
            )
            try:
                await self._storage.delete_blob_if_exists(account, key, container, blob_name)
            except AzureError:
                logger.warning(
                    "Failed to delete partially written blob %s in account %s",
                    blob_name,
                    account,
                    exc_info=True,
                )
            raise

        return self._naming.disk_uri(account, blob_name)

    async def delete_disk(self, disk_uri: str, was_forced: bool = False) -> None:
        """Delete a disk; a forced (dedicated) disk takes its whole account with it."""
        with operation_scope("delete_disk", disk_uri=disk_uri):
            account, container, blob_name = split_disk_uri(disk_uri)

            if was_forced:
                logger.info("Deleting dedicated account %s of disk %s", account, disk_uri)
                await self._pool.delete_account(account)
                return

            key = await self._pool.get_account_key(account)
            try:
                deleted = await self._storage.delete_blob_if_exists(
                    account,
                    key,
                    container,
                    blob_name,
                )
            except AzureError:
                logger.error("Failed to delete blob %s in account %s", blob_name, account)
                self._pool.invalidate_disk_count(account)
                raise

            if not deleted:
                logger.info("Blob %s in account %s was already absent", blob_name, account)
            await self._reconcile_disk_count(account, deleted)

    async def _reconcile_disk_count(self, account: str, deleted: bool) -> None:
        descriptor = self._pool.get(account)
        if descriptor is None:
            logger.warning("Account %s is not in the pool cache, disk count not updated", account)
            return

        if not deleted:
            self._pool.invalidate_disk_count(account)
            return

        if descriptor.disk_count_known:
            self._pool.record_disk_deleted(account)
            return

        # A fresh listing no longer includes the deleted blob.
        try:
            count = await self._pool.disk_count(account)
        except (AzureError, BlobDiskError):
            logger.warning("Failed to recount disks of account %s", account, exc_info=True)
            return
        logger.debug("Account %s now holds %d disks", account, count)

    # ------------------------------------------------------------------
    # Attach / detach
    # ------------------------------------------------------------------

    async def attach_disk(
        self,
        node_name: str,
        disk_uri: str,
        caching: CachingMode = CachingMode.NONE,
    ) -> int:
        """Append *disk_uri* to the node's data disks and return its LUN.

        Completion is not polled; the node side waits for the device.
        """
        with operation_scope("attach_disk", node=node_name, disk_uri=disk_uri):
            if not await self.disk_has_no_lease(disk_uri):
                raise DiskLeasedError(
                    f"Disk {disk_uri} still holds a lease and cannot be attached to {node_name}",
                    details={"disk_uri": disk_uri, "node": node_name},
                )

            _, _, blob_name = split_disk_uri(disk_uri)

            async with self._node_locks.hold(node_name):
                instance = await self._compute.get_instance(node_name)
                if instance.disk_mode is DiskMode.MANAGED:
                    raise UnsupportedNodeModeError(
                        f"Node {node_name} uses managed disks and cannot attach blob disk "
                        f"{blob_name}",
                        details={"disk_uri": disk_uri, "node": node_name},
                    )

                max_disks = await self._compute.max_data_disks(instance.vm_size)
                lun = find_empty_lun(max_disks, instance.data_disks)
                data_disks = [
                    *instance.data_disks,
                    AttachedDisk(lun=lun, name=blob_name, caching=caching, vhd_uri=disk_uri),
                ]
                await self._compute.update_data_disks(node_name, data_disks)

            logger.info("Attached disk %s to node %s at LUN %d", blob_name, node_name, lun)
            return lun

    async def detach_disk(self, node_name: str, hashed_disk_uri: str) -> None:
        """Remove the disk whose URI hashes to *hashed_disk_uri* from the node.

        Removal is confirmed on a best-effort basis: a confirmation that
        never converges is logged, not raised.
        """
        with operation_scope("detach_disk", node=node_name, disk_hash=hashed_disk_uri):
            async with self._node_locks.hold(node_name):
                instance = await self._compute.get_instance(node_name)
                matches = instance.find_by_hash(hashed_disk_uri)
                if not matches:
                    logger.warning(
                        "No disk with hash %s is attached to node %s, nothing to detach",
                        hashed_disk_uri,
                        node_name,
                    )
                    return

                await self._compute.update_data_disks(
                    node_name,
                    instance.without_hash(hashed_disk_uri),
                )

            disk_uri = matches[0].vhd_uri or ""
            logger.info(
                "Detach of %s from node %s issued, waiting for removal",
                disk_uri,
                node_name,
            )
            await self._confirm_detach(node_name, hashed_disk_uri, disk_uri)

    async def _confirm_detach(self, node_name: str, hashed_disk_uri: str, disk_uri: str) -> None:
        async def _detached() -> bool:
            return not await self._compute.is_disk_attached(hashed_disk_uri, node_name)

        try:
            await poll_until(
                _detached,
                self._backoff,
                description=f"detach of {hashed_disk_uri} from {node_name}",
            )
        except (PollTimeoutError, AzureError) as exc:
            logger.warning(
                "Could not confirm detach of %s from node %s (%s), checking its lease instead",
                disk_uri,
                node_name,
                exc,
            )
        else:
            logger.info("Node %s reports disk %s detached", node_name, disk_uri)
            return

        async def _unleased() -> bool:
            try:
                return await self._check_lease(disk_uri)
            except (AzureError, BlobDiskError) as exc:
                logger.info(
                    "Could not check the lease of %s, assuming a clean detach: %s",
                    disk_uri,
                    exc,
                )
                return True

        try:
            await poll_until(
                _unleased,
                self._backoff,
                description=f"lease release of {disk_uri}",
            )
        except PollTimeoutError:
            logger.warning(
                "Neither the node nor the blob lease confirmed detach of %s from %s",
                disk_uri,
                node_name,
            )
            return
        logger.info("Lease of disk %s was released after detach from %s", disk_uri, node_name)

    # ------------------------------------------------------------------
    # Lease check
    # ------------------------------------------------------------------

    async def disk_has_no_lease(self, disk_uri: str) -> bool:
        """Probe for a lease by writing harmless metadata to the blob.

        Disks outside this cluster's container are assumed unleased, since
        their account keys are not ours to fetch.  A probe that cannot be
        set up is read as leased.
        """
        try:
            return await self._check_lease(disk_uri)
        except (AzureError, BlobDiskError) as exc:
            logger.info("Lease probe on %s failed, treating it as leased: %s", disk_uri, exc)
            return False

    async def _check_lease(self, disk_uri: str) -> bool:
        """Like :meth:`disk_has_no_lease`, but raises when the account key is unavailable."""
        if not self._naming.is_cluster_disk(disk_uri):
            logger.info("Disk %s is not in a pool container, assuming it has no lease", disk_uri)
            return True

        account, container, blob_name = split_disk_uri(disk_uri)
        key = await self._pool.get_account_key(account)
        try:
            await self._storage.set_blob_metadata(
                account,
                key,
                container,
                blob_name,
                dict(LEASE_PROBE_METADATA),
            )
        except AzureError as exc:
            logger.info("Disk %s rejected the lease probe: %s", disk_uri, exc)
            return False
        return True


def hash_disk_uri(disk_uri: str) -> str:
    """Hashed form of a disk URI, as passed to :meth:`BlobDiskController.detach_disk`."""
    return make_crc32(disk_uri)
