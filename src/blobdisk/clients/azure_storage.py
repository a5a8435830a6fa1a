"""Azure storage client: account management and page-blob operations.

Uses ``azure-mgmt-storage`` for storage accounts and ``azure-storage-blob``
for containers and blobs, authenticating to each account with its shared
key.  All blocking SDK calls are dispatched via :func:`asyncio.to_thread`.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from azure.core.exceptions import ResourceExistsError, ResourceNotFoundError

from blobdisk.clients.base import SkuName, StorageAccountInfo, StorageAccountState

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Lazy imports for optional Azure SDK packages
# ---------------------------------------------------------------------------

try:
    from azure.mgmt.storage import StorageManagementClient  # pragma: no cover

    _HAS_STORAGE_MGMT = True  # pragma: no cover
except ImportError:
    _HAS_STORAGE_MGMT = False

try:
    from azure.storage.blob import BlobServiceClient  # pragma: no cover

    _HAS_BLOB = True  # pragma: no cover
except ImportError:
    _HAS_BLOB = False

_ACCOUNT_KIND = "Storage"


def _enum_value(value: Any) -> str | None:
    if value is None:
        return None
    return str(getattr(value, "value", value))


class AzureStorageClient:
    """Storage accounts in one resource group, and the blobs inside them.

    Parameters
    ----------
    credential:
        Azure credential for the management plane.
    subscription_id:
        Subscription owning the resource group.
    resource_group:
        Resource group in which pool accounts are listed and created.
    storage_endpoint_suffix:
        Blob endpoint suffix, ``core.windows.net`` in the public cloud.
    """

    def __init__(
        self,
        *,
        credential: Any,
        subscription_id: str,
        resource_group: str,
        storage_endpoint_suffix: str = "core.windows.net",
    ) -> None:
        if not _HAS_STORAGE_MGMT:
            raise RuntimeError(
                "azure-mgmt-storage is required for the Azure backend. "
                "Install it with:  pip install azure-mgmt-storage"
            )
        if not _HAS_BLOB:
            raise RuntimeError(
                "azure-storage-blob is required for the Azure backend. "
                "Install it with:  pip install azure-storage-blob"
            )

        self._resource_group = resource_group
        self._endpoint_suffix = storage_endpoint_suffix
        self._mgmt = StorageManagementClient(credential, subscription_id)

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    async def list_accounts(self) -> list[StorageAccountInfo] | None:
        def _list() -> list[StorageAccountInfo] | None:
            result = self._mgmt.storage_accounts.list_by_resource_group(self._resource_group)
            if result is None:
                return None
            return [
                StorageAccountInfo(
                    name=account.name,
                    sku=_enum_value(account.sku.name) if account.sku is not None else None,
                    provisioning_state=_enum_value(account.provisioning_state),
                    tags=dict(account.tags or {}),
                )
                for account in result
            ]

        return await asyncio.to_thread(_list)

    async def get_account_state(self, account_name: str) -> StorageAccountState | None:
        def _get() -> StorageAccountState | None:
            try:
                account = self._mgmt.storage_accounts.get_properties(
                    self._resource_group,
                    account_name,
                )
            except ResourceNotFoundError:
                return None
            return StorageAccountState(
                name=account_name,
                provisioning_state=_enum_value(account.provisioning_state) or "",
                sku=_enum_value(account.sku.name) if account.sku is not None else None,
            )

        return await asyncio.to_thread(_get)

    async def create_account(
        self,
        account_name: str,
        sku: SkuName,
        location: str,
        tags: dict[str, str],
    ) -> None:
        def _create() -> None:
            # Provisioning completes asynchronously; callers poll the state.
            self._mgmt.storage_accounts.begin_create(
                self._resource_group,
                account_name,
                {
                    "sku": {"name": sku.value},
                    "kind": _ACCOUNT_KIND,
                    "location": location,
                    "tags": tags,
                },
            )

        await asyncio.to_thread(_create)
        logger.info("[azure] Requested storage account %s (sku=%s)", account_name, sku.value)

    async def delete_account(self, account_name: str) -> None:
        await asyncio.to_thread(
            self._mgmt.storage_accounts.delete,
            self._resource_group,
            account_name,
        )
        logger.info("[azure] Deleted storage account %s", account_name)

    async def list_account_keys(self, account_name: str) -> list[str]:
        def _keys() -> list[str]:
            result = self._mgmt.storage_accounts.list_keys(self._resource_group, account_name)
            return [k.value for k in (result.keys or []) if k.value]

        return await asyncio.to_thread(_keys)

    # ------------------------------------------------------------------
    # Containers & blobs
    # ------------------------------------------------------------------

    def _blob_service(self, account_name: str, account_key: str) -> Any:
        return BlobServiceClient(
            account_url=f"https://{account_name}.blob.{self._endpoint_suffix}",
            credential={"account_name": account_name, "account_key": account_key},
        )

    async def create_container_if_not_exists(
        self,
        account_name: str,
        account_key: str,
        container: str,
    ) -> bool:
        def _create() -> bool:
            service = self._blob_service(account_name, account_key)
            try:
                service.get_container_client(container).create_container()
            except ResourceExistsError:
                return False
            return True

        return await asyncio.to_thread(_create)

    async def put_page_blob(
        self,
        account_name: str,
        account_key: str,
        container: str,
        blob_name: str,
        size_bytes: int,
        metadata: dict[str, str],
    ) -> None:
        def _put() -> None:
            blob = self._blob_service(account_name, account_key).get_blob_client(
                container,
                blob_name,
            )
            blob.create_page_blob(size_bytes, metadata=metadata)

        await asyncio.to_thread(_put)

    async def put_page(
        self,
        account_name: str,
        account_key: str,
        container: str,
        blob_name: str,
        offset: int,
        data: bytes,
    ) -> None:
        def _put() -> None:
            blob = self._blob_service(account_name, account_key).get_blob_client(
                container,
                blob_name,
            )
            blob.upload_page(data, offset=offset, length=len(data))

        await asyncio.to_thread(_put)

    async def delete_blob_if_exists(
        self,
        account_name: str,
        account_key: str,
        container: str,
        blob_name: str,
    ) -> bool:
        def _delete() -> bool:
            blob = self._blob_service(account_name, account_key).get_blob_client(
                container,
                blob_name,
            )
            try:
                blob.delete_blob()
            except ResourceNotFoundError:
                return False
            return True

        return await asyncio.to_thread(_delete)

    async def set_blob_metadata(
        self,
        account_name: str,
        account_key: str,
        container: str,
        blob_name: str,
        metadata: dict[str, str],
    ) -> None:
        def _set() -> None:
            blob = self._blob_service(account_name, account_key).get_blob_client(
                container,
                blob_name,
            )
            blob.set_blob_metadata(metadata)

        await asyncio.to_thread(_set)

    async def list_blobs(
        self,
        account_name: str,
        account_key: str,
        container: str,
    ) -> list[str]:
        def _list() -> list[str]:
            client = self._blob_service(account_name, account_key).get_container_client(container)
            return [b.name for b in client.list_blobs()]

        return await asyncio.to_thread(_list)

    def close(self) -> None:
        self._mgmt.close()
