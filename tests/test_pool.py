"""Tests for blobdisk.pool — account cache, placement and growth."""

from __future__ import annotations

import asyncio
from unittest.mock import patch

import pytest
from azure.core.exceptions import HttpResponseError

from blobdisk.clients.base import SkuName
from blobdisk.clients.mock import MockStorageClient
from blobdisk.exceptions import (
    AccountNotFoundError,
    CapacityExceededError,
    ProvisioningTimeoutError,
    ReadinessTimeoutError,
    RemoteListError,
)
from blobdisk.naming import ClusterNaming
from blobdisk.pool import UNKNOWN_DISK_COUNT, AccountPoolManager
from blobdisk.settings import PollingConfig, PoolConfig

STANDARD = SkuName.STANDARD_LRS
PREMIUM = SkuName.PREMIUM_LRS


def _seed(storage: MockStorageClient, naming: ClusterNaming, number: int, sku: SkuName, disks: int):
    name = naming.account_name(number)
    storage.add_account(name, sku.value, blobs=disks, container=naming.container_name)
    return name


class TestRefreshPool:
    async def test_keeps_only_pooled_accounts(self, pool, storage, naming):
        pooled = _seed(storage, naming, 1, STANDARD, 0)
        storage.add_account(naming.dedicated_account_name("disk-a"), STANDARD.value)
        storage.add_account("unrelatedaccount", STANDARD.value)

        await pool.refresh_pool()

        assert [a.name for a in pool.accounts()] == [pooled]
        descriptor = pool.get(pooled)
        assert descriptor.sku is STANDARD
        assert descriptor.disk_count == UNKNOWN_DISK_COUNT
        assert descriptor.key == ""
        assert pool.loaded

    async def test_ignores_accounts_with_longer_hash(self, pool, storage, naming):
        storage.add_account(f"pvc{naming.cluster_hash}7001", STANDARD.value)

        await pool.refresh_pool()

        assert pool.accounts() == []
        assert pool.next_account_number() == 1

    async def test_listing_none(self, pool, storage):
        storage.list_returns_none = True
        with pytest.raises(RemoteListError):
            await pool.refresh_pool()
        assert not pool.loaded

    async def test_listing_failure(self, pool, storage):
        storage.failures["list_accounts"] = HttpResponseError("throttled")
        with pytest.raises(RemoteListError):
            await pool.refresh_pool()

    async def test_replaces_cache(self, pool, storage, naming):
        first = _seed(storage, naming, 1, STANDARD, 0)
        await pool.refresh_pool()
        del storage.accounts[first]
        second = _seed(storage, naming, 2, PREMIUM, 0)

        await pool.refresh_pool()

        assert [a.name for a in pool.accounts()] == [second]


class TestNextAccountNumber:
    async def test_empty_pool(self, pool):
        assert pool.next_account_number() == 1

    async def test_ignores_foreign_accounts(self, pool, storage, naming):
        _seed(storage, naming, 1, STANDARD, 0)
        _seed(storage, naming, 4, PREMIUM, 0)
        storage.add_account("pvc999999999", STANDARD.value)
        await pool.refresh_pool()

        assert pool.next_account_number() == 5


class TestFindOrCreateAccount:
    async def test_reuses_lightly_loaded_account(self, pool, storage, naming):
        only = _seed(storage, naming, 1, PREMIUM, 2)

        chosen = await pool.find_or_create_account(PREMIUM)

        assert chosen == only
        assert storage.count_calls("create_account") == 0

    async def test_picks_least_loaded(self, pool, storage, naming):
        _seed(storage, naming, 1, STANDARD, 9)
        lighter = _seed(storage, naming, 2, STANDARD, 3)

        assert await pool.find_or_create_account(STANDARD) == lighter

    async def test_grows_above_threshold(self, pool, storage, naming):
        _seed(storage, naming, 1, PREMIUM, 59)

        chosen = await pool.find_or_create_account(PREMIUM)

        assert chosen == naming.account_name(2)
        assert storage.count_calls("create_account") == 1
        created = storage.accounts[chosen]
        assert created.sku == PREMIUM.value
        assert created.tags == {"created-by": "blobdisk"}
        assert naming.container_name in created.containers
        assert pool.get(chosen).default_container_created

    async def test_zero_count_short_circuits(self, pool, storage, naming):
        _seed(storage, naming, 1, STANDARD, 5)
        empty = _seed(storage, naming, 2, STANDARD, 0)
        _seed(storage, naming, 3, STANDARD, 50)

        chosen = await pool.find_or_create_account(STANDARD)

        assert chosen == empty
        # The third account is never listed.
        assert storage.count_calls("list_blobs") == 2

    async def test_skus_are_stratified(self, pool, storage, naming):
        _seed(storage, naming, 1, PREMIUM, 0)
        standard = _seed(storage, naming, 2, STANDARD, 1)

        assert await pool.find_or_create_account(STANDARD) == standard

    async def test_creates_first_account_of_sku(self, pool, storage, naming):
        _seed(storage, naming, 1, PREMIUM, 3)

        chosen = await pool.find_or_create_account(STANDARD)

        assert chosen == naming.account_name(2)
        assert storage.accounts[chosen].sku == STANDARD.value

    async def test_refreshes_pool_lazily(self, pool, storage, naming):
        existing = _seed(storage, naming, 1, STANDARD, 1)
        assert not pool.loaded

        assert await pool.find_or_create_account(STANDARD) == existing
        assert storage.count_calls("list_accounts") == 1

        await pool.find_or_create_account(STANDARD)
        assert storage.count_calls("list_accounts") == 1

    async def test_cached_counts_are_reused(self, pool, storage, naming):
        _seed(storage, naming, 1, STANDARD, 1)

        await pool.find_or_create_account(STANDARD)
        await pool.find_or_create_account(STANDARD)

        assert storage.count_calls("list_blobs") == 1


class TestCapacity:
    @pytest.fixture
    def pool_config(self) -> PoolConfig:
        return PoolConfig(max_accounts=1, max_disks_per_account=10)

    async def test_new_sku_at_max_raises(self, pool, storage, naming):
        _seed(storage, naming, 1, PREMIUM, 1)

        with pytest.raises(CapacityExceededError) as exc_info:
            await pool.find_or_create_account(STANDARD)

        assert exc_info.value.current == 1
        assert exc_info.value.maximum == 1
        assert storage.count_calls("create_account") == 0

    async def test_above_threshold_at_max_uses_candidate(self, pool, storage, naming):
        only = _seed(storage, naming, 1, STANDARD, 8)

        assert await pool.find_or_create_account(STANDARD) == only
        assert storage.count_calls("create_account") == 0

    async def test_all_full_at_max_degrades(self, pool, storage, naming):
        only = _seed(storage, naming, 1, STANDARD, 10)

        assert await pool.find_or_create_account(STANDARD) == only
        assert storage.count_calls("create_account") == 0

    async def test_dedicated_accounts_do_not_count(self, pool, storage, naming):
        await pool.refresh_pool()
        await pool.provision_account(
            naming.dedicated_account_name("disk-a"),
            STANDARD,
            enforce_max_count=False,
        )

        chosen = await pool.find_or_create_account(STANDARD)

        assert chosen == naming.account_name(1)


class TestProvisionAccount:
    async def test_existing_account_not_recreated(self, pool, storage, naming):
        name = _seed(storage, naming, 1, STANDARD, 0)

        await pool.provision_account(name, STANDARD, enforce_max_count=True)

        assert storage.count_calls("create_account") == 0
        assert pool.get(name) is not None
        assert pool.get(name).default_container_created

    async def test_concurrent_same_name_creates_once(self, pool, storage, naming):
        name = naming.account_name(1)

        await asyncio.gather(
            pool.provision_account(name, STANDARD, enforce_max_count=True),
            pool.provision_account(name, STANDARD, enforce_max_count=True),
        )

        assert storage.count_calls("create_account") == 1
        assert [a.name for a in pool.accounts()] == [name]

    async def test_settle_delay(self, storage, naming, pool_config):
        polling = PollingConfig(settle_delay_seconds=25.0)
        pool = AccountPoolManager(storage, naming, pool_config, polling)
        with patch("blobdisk.pool.asyncio.sleep") as sleep:
            await pool.provision_account(naming.account_name(1), STANDARD, enforce_max_count=True)
        sleep.assert_any_await(25.0)

    async def test_create_failure_propagates(self, pool, storage, naming):
        storage.failures["create_account"] = HttpResponseError("quota")
        name = naming.account_name(1)

        with pytest.raises(HttpResponseError):
            await pool.provision_account(name, STANDARD, enforce_max_count=True)

        assert pool.get(name) is None

    async def test_delete_account(self, pool, storage, naming):
        name = _seed(storage, naming, 1, STANDARD, 0)
        await pool.refresh_pool()

        await pool.delete_account(name)

        assert name not in storage.accounts
        assert pool.get(name) is None


class TestEnsureDefaultContainer:
    @pytest.fixture
    def storage(self) -> MockStorageClient:
        return MockStorageClient(ready_after_checks=3)

    async def test_missing_account(self, pool):
        with pytest.raises(AccountNotFoundError):
            await pool.ensure_default_container("pvcmissing001")

    async def test_waits_for_provisioning(self, pool, storage, naming):
        name = naming.account_name(1)
        await pool.provision_account(name, STANDARD, enforce_max_count=True)

        assert storage.accounts[name].provisioning_state == "Succeeded"
        assert pool.get(name).default_container_created

    async def test_cached_flag_short_circuits(self, pool, storage, naming):
        name = naming.account_name(1)
        await pool.provision_account(name, STANDARD, enforce_max_count=True)
        before = storage.count_calls("get_account_state")

        await pool.ensure_default_container(name)

        assert storage.count_calls("get_account_state") == before

    async def test_concurrent_callers_poll_once(self, pool, storage, naming):
        name = _seed(storage, naming, 1, STANDARD, 0)
        storage.accounts[name].pending_checks = 3
        storage.accounts[name].containers.clear()
        await pool.refresh_pool()

        with patch.object(
            pool,
            "_wait_until_provisioned",
            wraps=pool._wait_until_provisioned,
        ) as waiter:
            await asyncio.gather(
                pool.ensure_default_container(name),
                pool.ensure_default_container(name),
            )

        assert waiter.await_count == 1
        assert storage.count_calls("create_container") == 1
        assert pool.get(name).default_container_created

    async def test_provisioning_timeout(self, pool, storage, naming, polling):
        name = _seed(storage, naming, 1, STANDARD, 0)
        storage.accounts[name].pending_checks = polling.backoff_steps + 10
        await pool.refresh_pool()

        with pytest.raises(ProvisioningTimeoutError) as exc_info:
            await pool.ensure_default_container(name)

        assert exc_info.value.attempts == polling.backoff_steps
        assert not pool.is_validating(name)

    async def test_readiness_wait_timeout(self, storage, naming, pool_config):
        polling = PollingConfig(
            settle_delay_seconds=0.0,
            backoff_initial_seconds=0.0,
            readiness_wait_attempts=1,
            readiness_wait_seconds=0.01,
        )
        pool = AccountPoolManager(storage, naming, pool_config, polling)
        name = _seed(storage, naming, 1, STANDARD, 0)
        storage.accounts[name].pending_checks = 5
        await pool.refresh_pool()

        await pool._readiness.lock_for(name).acquire()
        assert pool.is_validating(name)

        with pytest.raises(ReadinessTimeoutError):
            await pool.ensure_default_container(name)

    async def test_timeout_while_validating_is_not_readiness_timeout(
        self,
        pool,
        storage,
        naming,
    ):
        name = _seed(storage, naming, 1, STANDARD, 0)
        storage.accounts[name].pending_checks = 3
        storage.accounts[name].containers.clear()
        await pool.refresh_pool()
        storage.failures["create_container"] = TimeoutError("socket read timed out")

        with pytest.raises(TimeoutError, match="socket read timed out"):
            await pool.ensure_default_container(name)

        assert not pool.is_validating(name)


class TestKeysAndCounts:
    async def test_key_cached(self, pool, storage, naming):
        name = _seed(storage, naming, 1, STANDARD, 0)
        await pool.refresh_pool()

        first = await pool.get_account_key(name)
        second = await pool.get_account_key(name)

        assert first == second == storage.accounts[name].keys[0]
        assert storage.count_calls("list_account_keys") == 1

    async def test_key_for_uncached_account(self, pool, storage):
        storage.add_account("foreign", STANDARD.value)
        assert await pool.get_account_key("foreign") == storage.accounts["foreign"].keys[0]

    async def test_disk_count_lists_container(self, pool, storage, naming):
        name = _seed(storage, naming, 1, STANDARD, 7)
        await pool.refresh_pool()

        assert await pool.disk_count(name) == 7
        assert pool.get(name).disk_count == 7

    async def test_bookkeeping(self, pool, storage, naming):
        name = _seed(storage, naming, 1, STANDARD, 1)
        await pool.refresh_pool()

        pool.record_disk_created(name)
        assert pool.get(name).disk_count == UNKNOWN_DISK_COUNT

        await pool.disk_count(name)
        pool.record_disk_created(name)
        assert pool.get(name).disk_count == 2

        pool.record_disk_deleted(name)
        pool.record_disk_deleted(name)
        pool.record_disk_deleted(name)
        assert pool.get(name).disk_count == 0

        pool.invalidate_disk_count(name)
        assert pool.get(name).disk_count == UNKNOWN_DISK_COUNT
