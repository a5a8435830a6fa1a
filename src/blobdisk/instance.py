"""Typed view of a node's disk-attachment descriptor.

Only the fields the controller reads or patches are modelled.  Decoding
goes through pydantic validation, and :meth:`InstanceDescriptor.to_update`
produces a partial update that carries nothing but the data-disk list.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from blobdisk.exceptions import NoAvailableLunError
from blobdisk.naming import make_crc32


class DiskMode(StrEnum):
    """How a node's disks are backed."""

    UNMANAGED = "unmanaged"
    MANAGED = "managed"


class CachingMode(StrEnum):
    """Host caching for an attached data disk."""

    NONE = "None"
    READ_ONLY = "ReadOnly"
    READ_WRITE = "ReadWrite"


class AttachedDisk(BaseModel):
    """One entry of a node's data-disk list."""

    model_config = ConfigDict(frozen=True)

    lun: int = Field(ge=0)
    name: str
    caching: CachingMode = CachingMode.NONE
    create_option: str = "Attach"
    vhd_uri: str | None = None
    managed_disk_id: str | None = None

    @property
    def hashed_uri(self) -> str | None:
        return make_crc32(self.vhd_uri) if self.vhd_uri else None

    def to_update(self) -> dict[str, Any]:
        entry: dict[str, Any] = {
            "lun": self.lun,
            "name": self.name,
            "caching": self.caching.value,
            "create_option": self.create_option,
        }
        if self.vhd_uri:
            entry["vhd"] = {"uri": self.vhd_uri}
        if self.managed_disk_id:
            entry["managed_disk"] = {"id": self.managed_disk_id}
        return entry


class InstanceDescriptor(BaseModel):
    """The parts of a node description that disk attach/detach touches."""

    name: str
    vm_size: str
    disk_mode: DiskMode
    data_disks: list[AttachedDisk] = Field(default_factory=list)

    @property
    def used_luns(self) -> set[int]:
        return {d.lun for d in self.data_disks}

    def find_by_hash(self, hashed_disk_uri: str) -> list[AttachedDisk]:
        return [d for d in self.data_disks if d.hashed_uri == hashed_disk_uri]

    def without_hash(self, hashed_disk_uri: str) -> list[AttachedDisk]:
        return [d for d in self.data_disks if d.hashed_uri != hashed_disk_uri]

    def to_update(self, data_disks: list[AttachedDisk] | None = None) -> dict[str, Any]:
        return data_disks_update(self.data_disks if data_disks is None else data_disks)


def data_disks_update(data_disks: list[AttachedDisk]) -> dict[str, Any]:
    """Partial-update body replacing only ``storage_profile.data_disks``."""
    return {"storage_profile": {"data_disks": [d.to_update() for d in data_disks]}}


def find_empty_lun(max_data_disks: int, data_disks: list[AttachedDisk]) -> int:
    """Lowest LUN in ``[0, max_data_disks)`` not used by *data_disks*."""
    used = {d.lun for d in data_disks}
    for lun in range(max_data_disks):
        if lun not in used:
            return lun
    raise NoAvailableLunError(
        f"All {max_data_disks} LUNs are in use",
        details={"max_data_disks": max_data_disks},
    )
