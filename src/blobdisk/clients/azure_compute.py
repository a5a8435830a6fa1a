"""Azure compute client: read and patch a VM's data-disk list.

Uses ``azure-mgmt-compute``.  VM documents are decoded into
:class:`~blobdisk.instance.InstanceDescriptor` at the boundary so the
controller never manipulates raw SDK models.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from blobdisk.instance import (
    AttachedDisk,
    CachingMode,
    DiskMode,
    InstanceDescriptor,
    data_disks_update,
)
from blobdisk.naming import make_crc32

logger = logging.getLogger(__name__)

try:
    from azure.mgmt.compute import ComputeManagementClient  # pragma: no cover

    _HAS_COMPUTE = True  # pragma: no cover
except ImportError:
    _HAS_COMPUTE = False

# Used when a VM size is missing from the regional size listing.
DEFAULT_MAX_DATA_DISKS = 16


def _enum_value(value: Any) -> str | None:
    if value is None:
        return None
    return str(getattr(value, "value", value))


def descriptor_from_vm(vm: Any) -> InstanceDescriptor:
    """Decode an SDK ``VirtualMachine`` into an :class:`InstanceDescriptor`."""
    storage_profile = vm.storage_profile
    os_disk = storage_profile.os_disk if storage_profile is not None else None
    managed = os_disk is not None and os_disk.managed_disk is not None

    data_disks = []
    for disk in (storage_profile.data_disks if storage_profile is not None else None) or []:
        data_disks.append(
            AttachedDisk(
                lun=disk.lun,
                name=disk.name or "",
                caching=CachingMode(_enum_value(disk.caching) or CachingMode.NONE.value),
                create_option=_enum_value(disk.create_option) or "Attach",
                vhd_uri=disk.vhd.uri if disk.vhd is not None else None,
                managed_disk_id=disk.managed_disk.id if disk.managed_disk is not None else None,
            )
        )

    return InstanceDescriptor(
        name=vm.name,
        vm_size=_enum_value(vm.hardware_profile.vm_size) or "",
        disk_mode=DiskMode.MANAGED if managed else DiskMode.UNMANAGED,
        data_disks=data_disks,
    )


class AzureComputeClient:
    """Virtual machines in one resource group.

    Parameters
    ----------
    credential:
        Azure credential for the management plane.
    subscription_id:
        Subscription owning the resource group.
    resource_group:
        Resource group holding the nodes.
    location:
        Region used to look up VM size capabilities.
    """

    def __init__(
        self,
        *,
        credential: Any,
        subscription_id: str,
        resource_group: str,
        location: str,
    ) -> None:
        if not _HAS_COMPUTE:
            raise RuntimeError(
                "azure-mgmt-compute is required for the Azure backend. "
                "Install it with:  pip install azure-mgmt-compute"
            )

        self._resource_group = resource_group
        self._location = location
        self._compute = ComputeManagementClient(credential, subscription_id)
        self._max_disks_by_size: dict[str, int] = {}

    async def get_instance(self, node_name: str) -> InstanceDescriptor:
        vm = await asyncio.to_thread(
            self._compute.virtual_machines.get,
            self._resource_group,
            node_name,
        )
        return descriptor_from_vm(vm)

    async def update_data_disks(self, node_name: str, data_disks: list[AttachedDisk]) -> None:
        body = data_disks_update(data_disks)

        def _update() -> None:
            # Convergence is observed by the caller; the poller is not awaited.
            self._compute.virtual_machines.begin_update(
                self._resource_group,
                node_name,
                body,
            )

        await asyncio.to_thread(_update)
        logger.info(
            "[azure] Patched data disks of %s (%d attached)",
            node_name,
            len(data_disks),
        )

    async def max_data_disks(self, vm_size: str) -> int:
        if not self._max_disks_by_size:

            def _fetch_sizes() -> dict[str, int]:
                return {
                    size.name.lower(): int(size.max_data_disk_count or 0)
                    for size in self._compute.virtual_machine_sizes.list(
                        location=self._location,
                    )
                }

            self._max_disks_by_size = await asyncio.to_thread(_fetch_sizes)
            logger.info(
                "[azure] Cached %d VM sizes for region %s",
                len(self._max_disks_by_size),
                self._location,
            )

        count = self._max_disks_by_size.get(vm_size.lower())
        if not count:
            logger.warning(
                "[azure] Unknown VM size %s, assuming %d data disks",
                vm_size,
                DEFAULT_MAX_DATA_DISKS,
            )
            return DEFAULT_MAX_DATA_DISKS
        return count

    async def is_disk_attached(self, hashed_disk_uri: str, node_name: str) -> bool:
        instance = await self.get_instance(node_name)
        return any(
            d.vhd_uri is not None and make_crc32(d.vhd_uri) == hashed_disk_uri
            for d in instance.data_disks
        )

    def close(self) -> None:
        self._compute.close()
