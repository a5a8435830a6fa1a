"""In-memory storage and compute clients for development and testing."""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from azure.core.exceptions import HttpResponseError, ResourceNotFoundError

from blobdisk.clients.base import (
    PROVISIONING_SUCCEEDED,
    StorageAccountInfo,
    StorageAccountState,
)
from blobdisk.instance import AttachedDisk, DiskMode, InstanceDescriptor
from blobdisk.naming import make_crc32

if TYPE_CHECKING:
    from blobdisk.clients.base import SkuName


@dataclass
class MockBlob:
    size_bytes: int
    metadata: dict[str, str] = field(default_factory=dict)
    pages: dict[int, bytes] = field(default_factory=dict)
    leased: bool = False


@dataclass
class MockAccount:
    name: str
    sku: str
    tags: dict[str, str] = field(default_factory=dict)
    keys: list[str] = field(default_factory=lambda: [uuid.uuid4().hex, uuid.uuid4().hex])
    pending_checks: int = 0
    containers: dict[str, dict[str, MockBlob]] = field(default_factory=dict)

    @property
    def provisioning_state(self) -> str:
        return "Creating" if self.pending_checks > 0 else PROVISIONING_SUCCEEDED


class MockStorageClient:
    """Account and blob store kept in dictionaries.

    Newly created accounts report ``Creating`` for the first
    ``ready_after_checks`` state reads.  Operation names listed in
    ``failures`` raise the mapped exception on their next call.
    """

    def __init__(self, *, latency_seconds: float = 0.0, ready_after_checks: int = 0) -> None:
        self._latency = latency_seconds
        self.ready_after_checks = ready_after_checks
        self.accounts: dict[str, MockAccount] = {}
        self.calls: list[tuple[str, ...]] = []
        self.failures: dict[str, BaseException] = {}
        self.list_returns_none = False

    async def _call(self, op: str, *args: str) -> None:
        self.calls.append((op, *args))
        if self._latency:
            await asyncio.sleep(self._latency)
        else:
            await asyncio.sleep(0)
        exc = self.failures.pop(op, None)
        if exc is not None:
            raise exc

    def count_calls(self, op: str) -> int:
        return sum(1 for c in self.calls if c[0] == op)

    def add_account(
        self,
        name: str,
        sku: str,
        *,
        blobs: int = 0,
        container: str | None = None,
    ) -> MockAccount:
        """Seed an already-provisioned account, optionally holding *blobs* disks."""
        account = MockAccount(name=name, sku=sku)
        if container is not None:
            account.containers[container] = {
                f"seed-{i}.vhd": MockBlob(size_bytes=1024) for i in range(blobs)
            }
        self.accounts[name] = account
        return account

    def _account(self, name: str) -> MockAccount:
        account = self.accounts.get(name)
        if account is None:
            raise ResourceNotFoundError(f"Storage account {name} not found")
        return account

    def _container(
        self,
        account_name: str,
        account_key: str,
        container: str,
    ) -> dict[str, MockBlob]:
        account = self._account(account_name)
        if account_key not in account.keys:
            raise HttpResponseError(f"Invalid key for account {account_name}")
        blobs = account.containers.get(container)
        if blobs is None:
            raise ResourceNotFoundError(f"Container {container} not found in {account_name}")
        return blobs

    def blob(self, account_name: str, container: str, blob_name: str) -> MockBlob | None:
        return self.accounts[account_name].containers.get(container, {}).get(blob_name)

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    async def list_accounts(self) -> list[StorageAccountInfo] | None:
        await self._call("list_accounts")
        if self.list_returns_none:
            return None
        return [
            StorageAccountInfo(
                name=a.name,
                sku=a.sku,
                provisioning_state=a.provisioning_state,
                tags=dict(a.tags),
            )
            for a in self.accounts.values()
        ]

    async def get_account_state(self, account_name: str) -> StorageAccountState | None:
        await self._call("get_account_state", account_name)
        account = self.accounts.get(account_name)
        if account is None:
            return None
        state = StorageAccountState(
            name=account_name,
            provisioning_state=account.provisioning_state,
            sku=account.sku,
        )
        if account.pending_checks > 0:
            account.pending_checks -= 1
        return state

    async def create_account(
        self,
        account_name: str,
        sku: SkuName,
        location: str,
        tags: dict[str, str],
    ) -> None:
        await self._call("create_account", account_name, sku.value)
        if account_name not in self.accounts:
            self.accounts[account_name] = MockAccount(
                name=account_name,
                sku=sku.value,
                tags=dict(tags),
                pending_checks=self.ready_after_checks,
            )

    async def delete_account(self, account_name: str) -> None:
        await self._call("delete_account", account_name)
        self._account(account_name)
        del self.accounts[account_name]

    async def list_account_keys(self, account_name: str) -> list[str]:
        await self._call("list_account_keys", account_name)
        return list(self._account(account_name).keys)

    # ------------------------------------------------------------------
    # Containers & blobs
    # ------------------------------------------------------------------

    async def create_container_if_not_exists(
        self,
        account_name: str,
        account_key: str,
        container: str,
    ) -> bool:
        await self._call("create_container", account_name, container)
        account = self._account(account_name)
        if container in account.containers:
            return False
        account.containers[container] = {}
        return True

    async def put_page_blob(
        self,
        account_name: str,
        account_key: str,
        container: str,
        blob_name: str,
        size_bytes: int,
        metadata: dict[str, str],
    ) -> None:
        await self._call("put_page_blob", account_name, blob_name)
        blobs = self._container(account_name, account_key, container)
        blobs[blob_name] = MockBlob(size_bytes=size_bytes, metadata=dict(metadata))

    async def put_page(
        self,
        account_name: str,
        account_key: str,
        container: str,
        blob_name: str,
        offset: int,
        data: bytes,
    ) -> None:
        await self._call("put_page", account_name, blob_name)
        blob = self._container(account_name, account_key, container).get(blob_name)
        if blob is None:
            raise ResourceNotFoundError(f"Blob {blob_name} not found")
        if offset % 512 or len(data) % 512 or offset + len(data) > blob.size_bytes:
            raise HttpResponseError(f"Invalid page range {offset}+{len(data)} for {blob_name}")
        blob.pages[offset] = data

    async def delete_blob_if_exists(
        self,
        account_name: str,
        account_key: str,
        container: str,
        blob_name: str,
    ) -> bool:
        await self._call("delete_blob", account_name, blob_name)
        blobs = self._container(account_name, account_key, container)
        return blobs.pop(blob_name, None) is not None

    async def set_blob_metadata(
        self,
        account_name: str,
        account_key: str,
        container: str,
        blob_name: str,
        metadata: dict[str, str],
    ) -> None:
        await self._call("set_blob_metadata", account_name, blob_name)
        blob = self._container(account_name, account_key, container).get(blob_name)
        if blob is None:
            raise ResourceNotFoundError(f"Blob {blob_name} not found")
        if blob.leased:
            raise HttpResponseError(f"There is currently a lease on blob {blob_name}")
        blob.metadata.update(metadata)

    async def list_blobs(
        self,
        account_name: str,
        account_key: str,
        container: str,
    ) -> list[str]:
        await self._call("list_blobs", account_name)
        return list(self._container(account_name, account_key, container))


class MockComputeClient:
    """Nodes and their data-disk lists kept in memory.

    A detached disk keeps being reported as attached for
    ``detach_lag_checks`` calls to :meth:`is_disk_attached`.
    """

    def __init__(self, *, max_data_disks: int = 8, detach_lag_checks: int = 0) -> None:
        self.default_max_data_disks = max_data_disks
        self.detach_lag_checks = detach_lag_checks
        self.nodes: dict[str, InstanceDescriptor] = {}
        self.max_disks_by_size: dict[str, int] = {}
        self.calls: list[tuple[str, ...]] = []
        self.failures: dict[str, BaseException] = {}
        self._lagging: dict[tuple[str, str], int] = {}

    async def _call(self, op: str, *args: str) -> None:
        self.calls.append((op, *args))
        await asyncio.sleep(0)
        exc = self.failures.pop(op, None)
        if exc is not None:
            raise exc

    def count_calls(self, op: str) -> int:
        return sum(1 for c in self.calls if c[0] == op)

    def add_node(
        self,
        name: str,
        *,
        vm_size: str = "Standard_D2s_v3",
        disk_mode: DiskMode = DiskMode.UNMANAGED,
        data_disks: list[AttachedDisk] | None = None,
    ) -> InstanceDescriptor:
        node = InstanceDescriptor(
            name=name,
            vm_size=vm_size,
            disk_mode=disk_mode,
            data_disks=data_disks or [],
        )
        self.nodes[name] = node
        return node

    async def get_instance(self, node_name: str) -> InstanceDescriptor:
        await self._call("get_instance", node_name)
        node = self.nodes.get(node_name)
        if node is None:
            raise ResourceNotFoundError(f"Virtual machine {node_name} not found")
        return node.model_copy(deep=True)

    async def update_data_disks(self, node_name: str, data_disks: list[AttachedDisk]) -> None:
        await self._call("update_data_disks", node_name)
        node = self.nodes.get(node_name)
        if node is None:
            raise ResourceNotFoundError(f"Virtual machine {node_name} not found")
        kept = {d.hashed_uri for d in data_disks}
        for disk in node.data_disks:
            if disk.hashed_uri and disk.hashed_uri not in kept and self.detach_lag_checks:
                self._lagging[(node_name, disk.hashed_uri)] = self.detach_lag_checks
        self.nodes[node_name] = node.model_copy(update={"data_disks": list(data_disks)})

    async def max_data_disks(self, vm_size: str) -> int:
        await self._call("max_data_disks", vm_size)
        return self.max_disks_by_size.get(vm_size, self.default_max_data_disks)

    async def is_disk_attached(self, hashed_disk_uri: str, node_name: str) -> bool:
        await self._call("is_disk_attached", node_name, hashed_disk_uri)
        key = (node_name, hashed_disk_uri)
        remaining = self._lagging.get(key, 0)
        if remaining > 0:
            self._lagging[key] = remaining - 1
            return True
        node = self.nodes.get(node_name)
        if node is None:
            raise ResourceNotFoundError(f"Virtual machine {node_name} not found")
        return any(
            d.vhd_uri is not None and make_crc32(d.vhd_uri) == hashed_disk_uri
            for d in node.data_disks
        )
