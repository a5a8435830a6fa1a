"""Azure credential selection shared by the storage and compute clients."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from blobdisk.settings import AzureConfig

logger = logging.getLogger(__name__)

try:
    from azure.identity import ClientSecretCredential, DefaultAzureCredential  # pragma: no cover

    _HAS_IDENTITY = True  # pragma: no cover
except ImportError:
    _HAS_IDENTITY = False


def make_credential(config: AzureConfig) -> Any:
    """Service-principal credential when fully configured, else the default chain."""
    if not _HAS_IDENTITY:
        raise RuntimeError(
            "azure-identity is required for the Azure backend. "
            "Install it with:  pip install azure-identity"
        )

    if config.client_id and config.client_secret and config.tenant_id:
        logger.info(
            "[azure] Using ClientSecretCredential (tenant=%s, client=%s)",
            config.tenant_id,
            config.client_id,
        )
        return ClientSecretCredential(
            tenant_id=config.tenant_id,
            client_id=config.client_id,
            client_secret=config.client_secret,
        )

    logger.info("[azure] Using DefaultAzureCredential")
    return DefaultAzureCredential()
