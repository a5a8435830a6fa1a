"""Controller configuration.

All values can be overridden via environment variables prefixed with
``BLOBDISK_``.  Nested models use ``__`` as a delimiter, e.g.
``BLOBDISK_AZURE__RESOURCE_GROUP`` or ``BLOBDISK_POOL__MAX_ACCOUNTS``.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AzureConfig(BaseModel):
    """Azure subscription and credentials."""

    subscription_id: str = ""
    tenant_id: str = ""
    client_id: str = ""
    client_secret: str = ""
    resource_group: str = ""
    location: str = "westeurope"
    storage_endpoint_suffix: str = Field(
        default="core.windows.net",
        description="Blob endpoint suffix; sovereign clouds use a different one.",
    )


class PoolConfig(BaseModel):
    """Shared storage-account pool sizing."""

    max_accounts: int = Field(default=100, ge=1)
    max_disks_per_account: int = Field(default=60, ge=1)
    growth_utilization_threshold: float = Field(
        default=0.5,
        gt=0.0,
        le=1.0,
        description="Average utilization above which a new account is added.",
    )
    bootstrap_enabled: bool = True
    bootstrap_account_count: int = Field(default=2, ge=0)


class PollingConfig(BaseModel):
    """Delays and budgets for eventually-consistent remote operations."""

    settle_delay_seconds: float = Field(
        default=25.0,
        ge=0.0,
        description="Pause after creating an account before polling its state.",
    )
    backoff_initial_seconds: float = Field(default=2.0, ge=0.0)
    backoff_factor: float = Field(default=1.5, ge=1.0)
    backoff_max_seconds: float = Field(default=60.0, ge=0.0)
    backoff_steps: int = Field(default=20, ge=1)
    readiness_wait_attempts: int = Field(default=20, ge=1)
    readiness_wait_seconds: float = Field(default=3.0, ge=0.0)


class BlobDiskSettings(BaseSettings):
    """Central configuration for the blob disk controller."""

    model_config = SettingsConfigDict(
        env_prefix="BLOBDISK_",
        env_nested_delimiter="__",
    )

    backend: Literal["azure", "mock"] = "azure"
    process_role: str = Field(
        default="controller",
        description="Only the 'controller' role pre-warms the account pool.",
    )
    log_level: str = "INFO"
    log_json: bool = True

    azure: AzureConfig = Field(default_factory=AzureConfig)
    pool: PoolConfig = Field(default_factory=PoolConfig)
    polling: PollingConfig = Field(default_factory=PollingConfig)
