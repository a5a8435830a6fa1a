"""Storage-account pool: cache, placement and growth.

The pool is a local cache of the storage accounts that belong to this
cluster.  It is never authoritative: accounts are rediscovered from the
remote listing, disk counts are lazily re-derived from container
listings, and every remote step is written to be safe when repeated by
another caller or another process.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from azure.core.exceptions import AzureError

from blobdisk.backoff import Backoff, poll_until
from blobdisk.clients.base import SkuName
from blobdisk.exceptions import (
    AccountNotFoundError,
    CapacityExceededError,
    ProvisioningTimeoutError,
    ReadinessTimeoutError,
    RemoteListError,
    RemoteOperationError,
)
from blobdisk.locks import KeyedLocks
from blobdisk.logging_config import operation_scope

if TYPE_CHECKING:
    from blobdisk.clients.base import StorageClient
    from blobdisk.naming import ClusterNaming
    from blobdisk.settings import PollingConfig, PoolConfig

logger = logging.getLogger(__name__)

UNKNOWN_DISK_COUNT = -1
ACCOUNT_TAGS = {"created-by": "blobdisk"}


@dataclass
class AccountDescriptor:
    """Cached state of one storage account."""

    name: str
    sku: SkuName | str
    key: str = ""
    disk_count: int = UNKNOWN_DISK_COUNT
    default_container_created: bool = False

    @property
    def disk_count_known(self) -> bool:
        return self.disk_count != UNKNOWN_DISK_COUNT


def _coerce_sku(value: str) -> SkuName | str:
    try:
        return SkuName(value)
    except ValueError:
        return value


class AccountPoolManager:
    """Owns the account cache and decides where new disks land.

    Parameters
    ----------
    storage:
        Remote account/blob client.
    naming:
        Cluster naming derived once at construction.
    pool_config:
        Pool sizing (account and per-account disk ceilings, growth threshold).
    polling:
        Settling delay, backoff schedule and readiness-wait budget.
    """

    def __init__(
        self,
        storage: StorageClient,
        naming: ClusterNaming,
        pool_config: PoolConfig,
        polling: PollingConfig,
    ) -> None:
        self._storage = storage
        self._naming = naming
        self._config = pool_config
        self._polling = polling
        self._backoff = Backoff.from_config(polling)

        self._accounts: dict[str, AccountDescriptor] = {}
        self._accounts_lock = asyncio.Lock()
        self._loaded = False

        self._provisioning = KeyedLocks()
        self._readiness = KeyedLocks()

    # ------------------------------------------------------------------
    # Cache access
    # ------------------------------------------------------------------

    @property
    def naming(self) -> ClusterNaming:
        return self._naming

    @property
    def loaded(self) -> bool:
        return self._loaded

    def get(self, name: str) -> AccountDescriptor | None:
        return self._accounts.get(name)

    def accounts(self) -> list[AccountDescriptor]:
        """Snapshot of every cached descriptor."""
        return list(self._accounts.values())

    def pooled_accounts(self) -> list[AccountDescriptor]:
        return [a for a in self._accounts.values() if self._naming.is_pooled_account(a.name)]

    def is_validating(self, name: str) -> bool:
        """Whether some caller is currently polling *name* for readiness."""
        return self._readiness.locked(name)

    async def _add_account(self, descriptor: AccountDescriptor) -> None:
        async with self._accounts_lock:
            self._accounts.setdefault(descriptor.name, descriptor)

    async def _remove_account(self, name: str) -> None:
        async with self._accounts_lock:
            self._accounts.pop(name, None)
        self._provisioning.discard(name)
        self._readiness.discard(name)

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def refresh_pool(self) -> None:
        """Rebuild the cache from the remote listing of this cluster's accounts."""
        try:
            listing = await self._storage.list_accounts()
        except AzureError as exc:
            raise RemoteListError(
                f"Listing storage accounts failed: {exc}",
                details={"resource_group": self._naming.resource_group},
            ) from exc
        if listing is None:
            raise RemoteListError(
                "Storage account listing returned no value",
                details={"resource_group": self._naming.resource_group},
            )

        accounts: dict[str, AccountDescriptor] = {}
        for info in listing:
            if not info.name or not info.sku:
                logger.info("Skipping storage account listing entry without name or SKU")
                continue
            if not self._naming.is_pooled_account(info.name):
                continue
            logger.info("Identified account %s as part of the shared disk pool", info.name)
            accounts[info.name] = AccountDescriptor(name=info.name, sku=_coerce_sku(info.sku))

        async with self._accounts_lock:
            self._accounts = accounts
        self._loaded = True
        logger.info("Pool refreshed: %d shared accounts", len(accounts))

    async def ensure_loaded(self) -> None:
        if not self._loaded:
            await self.refresh_pool()

    # ------------------------------------------------------------------
    # Placement
    # ------------------------------------------------------------------

    async def find_or_create_account(self, sku: SkuName) -> str:
        """Pick the pooled account for a new disk of *sku*, growing the pool if needed."""
        await self.ensure_loaded()

        ceiling = self._config.max_disks_per_account
        least_loaded: str | None = None
        least_count = 0
        total_disks = 0
        sku_accounts = 0

        for account in self.pooled_accounts():
            # Utilization is computed per SKU.
            if account.sku != sku:
                continue

            count = await self.disk_count(account.name)
            total_disks += count
            sku_accounts += 1

            if count == 0:
                logger.info("Account %s has no disks and was selected for a new disk", account.name)
                return account.name

            if least_loaded is None or count < least_count:
                least_count = count
                least_loaded = account.name

        pool_size = len(self.pooled_accounts())
        at_max = pool_size >= self._config.max_accounts

        if least_loaded is None:
            logger.info("No shared %s account exists, a new one will be created", sku.value)
            return await self._grow(sku)

        if least_count >= ceiling:
            if not at_max:
                logger.info(
                    "All %d shared %s accounts are full, a new one will be created",
                    sku_accounts,
                    sku.value,
                )
                return await self._grow(sku)
            logger.warning(
                "All shared %s accounts hold %d or more disks and the pool is at its "
                "maximum of %d accounts; placing the disk on %s",
                sku.value,
                ceiling,
                self._config.max_accounts,
                least_loaded,
            )
            return least_loaded

        utilization = (total_disks + 1) / (sku_accounts * ceiling)
        above_threshold = utilization > self._config.growth_utilization_threshold

        if above_threshold and not at_max:
            logger.info(
                "Shared %s utilization %.3f is above %.3f, a new account will be created",
                sku.value,
                utilization,
                self._config.growth_utilization_threshold,
            )
            return await self._grow(sku)

        if above_threshold:
            logger.info(
                "Shared %s utilization %.3f is above %.3f but the pool is at its maximum of "
                "%d accounts; exceeding the threshold",
                sku.value,
                utilization,
                self._config.growth_utilization_threshold,
                self._config.max_accounts,
            )

        return least_loaded

    async def _grow(self, sku: SkuName) -> str:
        name = self._naming.account_name(self.next_account_number())
        await self.provision_account(name, sku, enforce_max_count=True)
        return name

    def next_account_number(self) -> int:
        """One more than the highest sequence number among pooled accounts."""
        numbers = [self._naming.account_number(a.name) for a in self.pooled_accounts()]
        return max(numbers, default=0) + 1

    # ------------------------------------------------------------------
    # Provisioning
    # ------------------------------------------------------------------

    async def provision_account(
        self,
        name: str,
        sku: SkuName,
        *,
        enforce_max_count: bool,
    ) -> None:
        """Create *name* if absent, then make sure its default container exists.

        Safe to call redundantly: concurrent callers for the same name are
        serialized, so only the first issues the remote create.
        """
        with operation_scope("provision_account", account=name, sku=sku.value):
            await self._provision_account(name, sku, enforce_max_count=enforce_max_count)

    async def _provision_account(self, name: str, sku: SkuName, *, enforce_max_count: bool) -> None:
        async with self._provisioning.hold(name):
            state = await self._storage.get_account_state(name)
            created = False
            if state is not None:
                await self._add_account(AccountDescriptor(name=name, sku=sku))
            else:
                pool_size = len(self.pooled_accounts())
                if enforce_max_count and pool_size >= self._config.max_accounts:
                    raise CapacityExceededError(
                        f"Cannot create storage account {name}: pool already holds "
                        f"{pool_size} of {self._config.max_accounts} accounts",
                        current=pool_size,
                        maximum=self._config.max_accounts,
                        details={"account": name},
                    )

                logger.info("Creating storage account %s (sku=%s)", name, sku.value)
                await self._storage.create_account(
                    name,
                    sku,
                    self._naming.location,
                    dict(ACCOUNT_TAGS),
                )
                await self._add_account(AccountDescriptor(name=name, sku=sku))
                created = True

        if created:
            logger.debug(
                "Storage account %s was just created, waiting %.0fs before polling",
                name,
                self._polling.settle_delay_seconds,
            )
            await asyncio.sleep(self._polling.settle_delay_seconds)

        await self.ensure_default_container(name)

    async def delete_account(self, name: str) -> None:
        """Delete the remote account and drop it from the cache."""
        await self._storage.delete_account(name)
        await self._remove_account(name)
        logger.info("Storage account %s was deleted", name)

    # ------------------------------------------------------------------
    # Readiness
    # ------------------------------------------------------------------

    async def ensure_default_container(self, name: str) -> None:
        """Make sure *name* is provisioned and holds the cluster container."""
        account = self._accounts.get(name)
        if account is not None and account.default_container_created:
            return

        state = await self._storage.get_account_state(name)
        if state is None:
            raise AccountNotFoundError(
                f"Storage account {name} does not exist while ensuring its default container",
                details={"account": name},
            )

        if not state.succeeded:
            wait = self._polling.readiness_wait_attempts * self._polling.readiness_wait_seconds
            try:
                lock = await self._readiness.acquire(name, timeout=wait)
            except TimeoutError as exc:
                raise ReadinessTimeoutError(
                    f"Timed out after {wait:.0f}s waiting for another caller to "
                    f"validate account {name}",
                    attempts=self._polling.readiness_wait_attempts,
                    details={"account": name},
                ) from exc
            try:
                account = self._accounts.get(name)
                if account is not None and account.default_container_created:
                    return
                await self._wait_until_provisioned(name)
                await self._create_default_container(name)
                return
            finally:
                lock.release()

        await self._create_default_container(name)

    async def _wait_until_provisioned(self, name: str) -> None:
        async def _succeeded() -> bool:
            state = await self._storage.get_account_state(name)
            if state is not None and state.succeeded:
                return True
            logger.debug("Storage account %s is not ready yet", name)
            return False

        await poll_until(
            _succeeded,
            self._backoff,
            description=f"storage account {name} provisioning",
            timeout_error=ProvisioningTimeoutError,
        )

    async def _create_default_container(self, name: str) -> None:
        container = self._naming.container_name
        key = await self.get_account_key(name)
        created = await self._storage.create_container_if_not_exists(name, key, container)
        if created:
            logger.info(
                "Storage account %s had no default container (%s) and it was created",
                name,
                container,
            )
        account = self._accounts.get(name)
        if account is not None:
            account.default_container_created = True

    # ------------------------------------------------------------------
    # Keys & counts
    # ------------------------------------------------------------------

    async def get_account_key(self, name: str) -> str:
        """Access key for *name*, cached on its descriptor after the first fetch."""
        account = self._accounts.get(name)
        if account is not None and account.key:
            return account.key

        keys = await self._storage.list_account_keys(name)
        if not keys:
            raise RemoteOperationError(
                f"Storage account {name} returned no access keys",
                details={"account": name},
            )

        account = self._accounts.get(name)
        if account is None:
            logger.warning("Account %s was not cached while getting its keys", name)
            return keys[0]
        account.key = keys[0]
        return account.key

    async def disk_count(self, name: str) -> int:
        """Number of disks in *name*, listed from the container when not cached."""
        account = self._accounts.get(name)
        if account is not None and account.disk_count_known:
            return account.disk_count

        await self.ensure_default_container(name)
        key = await self.get_account_key(name)
        blobs = await self._storage.list_blobs(name, key, self._naming.container_name)
        count = len(blobs)
        logger.debug("Refreshed disk count for account %s: %d", name, count)

        account = self._accounts.get(name)
        if account is not None:
            account.disk_count = count
        return count

    def record_disk_created(self, name: str) -> None:
        account = self._accounts.get(name)
        if account is not None and account.disk_count_known:
            account.disk_count += 1

    def record_disk_deleted(self, name: str) -> None:
        account = self._accounts.get(name)
        if account is not None and account.disk_count_known:
            account.disk_count = max(account.disk_count - 1, 0)

    def invalidate_disk_count(self, name: str) -> None:
        account = self._accounts.get(name)
        if account is not None:
            account.disk_count = UNKNOWN_DISK_COUNT
