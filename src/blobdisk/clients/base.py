"""Remote client protocols and the data they exchange."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from blobdisk.instance import AttachedDisk, InstanceDescriptor

PROVISIONING_SUCCEEDED = "Succeeded"


class SkuName(StrEnum):
    """Storage account redundancy / performance tier."""

    STANDARD_LRS = "Standard_LRS"
    STANDARD_GRS = "Standard_GRS"
    STANDARD_RAGRS = "Standard_RAGRS"
    STANDARD_ZRS = "Standard_ZRS"
    PREMIUM_LRS = "Premium_LRS"


@dataclass
class StorageAccountInfo:
    """An account as returned by the account listing."""

    name: str | None
    sku: str | None
    provisioning_state: str | None = None
    tags: dict[str, str] = field(default_factory=dict)


@dataclass
class StorageAccountState:
    """Existence and readiness of one account."""

    name: str
    provisioning_state: str
    sku: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.provisioning_state == PROVISIONING_SUCCEEDED


@runtime_checkable
class StorageClient(Protocol):
    """Account management plus the blob operations disks need."""

    async def list_accounts(self) -> list[StorageAccountInfo] | None:
        """List accounts in the resource group (``None`` if the API gave no value)."""
        ...  # pragma: no cover

    async def get_account_state(self, account_name: str) -> StorageAccountState | None:
        """Return the account state, or ``None`` if it does not exist."""
        ...  # pragma: no cover

    async def create_account(
        self,
        account_name: str,
        sku: SkuName,
        location: str,
        tags: dict[str, str],
    ) -> None:
        """Start creating an account; does not wait for provisioning."""
        ...  # pragma: no cover

    async def delete_account(self, account_name: str) -> None:
        ...  # pragma: no cover

    async def list_account_keys(self, account_name: str) -> list[str]:
        ...  # pragma: no cover

    async def create_container_if_not_exists(
        self,
        account_name: str,
        account_key: str,
        container: str,
    ) -> bool:
        """Create *container*; ``True`` if it was created by this call."""
        ...  # pragma: no cover

    async def put_page_blob(
        self,
        account_name: str,
        account_key: str,
        container: str,
        blob_name: str,
        size_bytes: int,
        metadata: dict[str, str],
    ) -> None:
        ...  # pragma: no cover

    async def put_page(
        self,
        account_name: str,
        account_key: str,
        container: str,
        blob_name: str,
        offset: int,
        data: bytes,
    ) -> None:
        ...  # pragma: no cover

    async def delete_blob_if_exists(
        self,
        account_name: str,
        account_key: str,
        container: str,
        blob_name: str,
    ) -> bool:
        """Delete the blob; ``False`` if it did not exist."""
        ...  # pragma: no cover

    async def set_blob_metadata(
        self,
        account_name: str,
        account_key: str,
        container: str,
        blob_name: str,
        metadata: dict[str, str],
    ) -> None:
        ...  # pragma: no cover

    async def list_blobs(
        self,
        account_name: str,
        account_key: str,
        container: str,
    ) -> list[str]:
        ...  # pragma: no cover


@runtime_checkable
class ComputeClient(Protocol):
    """Read and patch a node's disk-attachment descriptor."""

    async def get_instance(self, node_name: str) -> InstanceDescriptor:
        ...  # pragma: no cover

    async def update_data_disks(self, node_name: str, data_disks: list[AttachedDisk]) -> None:
        """Replace the node's data-disk list with a partial update."""
        ...  # pragma: no cover

    async def max_data_disks(self, vm_size: str) -> int:
        ...  # pragma: no cover

    async def is_disk_attached(self, hashed_disk_uri: str, node_name: str) -> bool:
        ...  # pragma: no cover
