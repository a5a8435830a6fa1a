"""Shared test fixtures for blobdisk."""

from __future__ import annotations

import pytest

from blobdisk.clients.mock import MockComputeClient, MockStorageClient
from blobdisk.controller import BlobDiskController
from blobdisk.naming import ClusterNaming
from blobdisk.pool import AccountPoolManager
from blobdisk.settings import PollingConfig, PoolConfig


@pytest.fixture
def naming() -> ClusterNaming:
    return ClusterNaming(
        subscription_id="sub-test-123",
        resource_group="rg-blobdisk",
        location="westeurope",
    )


@pytest.fixture
def pool_config() -> PoolConfig:
    return PoolConfig()


@pytest.fixture
def polling() -> PollingConfig:
    """Polling without real waits."""
    return PollingConfig(
        settle_delay_seconds=0.0,
        backoff_initial_seconds=0.0,
        backoff_max_seconds=0.0,
        backoff_steps=5,
        readiness_wait_attempts=2,
        readiness_wait_seconds=0.5,
    )


@pytest.fixture
def storage() -> MockStorageClient:
    return MockStorageClient()


@pytest.fixture
def compute() -> MockComputeClient:
    return MockComputeClient()


@pytest.fixture
def pool(
    storage: MockStorageClient,
    naming: ClusterNaming,
    pool_config: PoolConfig,
    polling: PollingConfig,
) -> AccountPoolManager:
    return AccountPoolManager(storage, naming, pool_config, polling)


@pytest.fixture
def controller(
    pool: AccountPoolManager,
    storage: MockStorageClient,
    compute: MockComputeClient,
    polling: PollingConfig,
) -> BlobDiskController:
    return BlobDiskController(pool, storage, compute, polling)
