"""Pre-warm the shared account pool once per controller process."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import threading
from typing import TYPE_CHECKING

from blobdisk.clients.base import SkuName

if TYPE_CHECKING:
    from collections.abc import Callable

    from blobdisk.pool import AccountPoolManager
    from blobdisk.settings import PoolConfig

logger = logging.getLogger(__name__)

_claim_lock = threading.Lock()
_claimed = False


def _claim() -> bool:
    """Claim the one bootstrap run of this process."""
    global _claimed
    with _claim_lock:
        if _claimed:
            return False
        _claimed = True
        return True


def sku_for_account_number(number: int) -> SkuName:
    """Odd-numbered bootstrap accounts are premium, even ones standard."""
    return SkuName.PREMIUM_LRS if number % 2 else SkuName.STANDARD_LRS


class PoolBootstrapper:
    """Creates the initial pooled accounts in the background.

    Runs only in the control-plane process and only when the cluster has
    no pooled account yet.  Failures are logged and never reach callers;
    the pool grows on demand anyway.
    """

    def __init__(
        self,
        pool: AccountPoolManager,
        config: PoolConfig,
        *,
        is_control_plane: Callable[[], bool],
    ) -> None:
        self._pool = pool
        self._config = config
        self._is_control_plane = is_control_plane
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> bool:
        """Refresh the pool and start provisioning tasks if it is empty.

        Returns ``True`` when provisioning tasks were started.
        """
        if not self._config.bootstrap_enabled:
            logger.info("Pool bootstrap disabled")
            return False
        if not self._is_control_plane():
            logger.debug("Not the control-plane process, skipping pool bootstrap")
            return False
        if not _claim():
            logger.debug("Pool bootstrap already ran in this process")
            return False

        try:
            await self._pool.refresh_pool()
        except Exception:
            logger.exception("Pool bootstrap could not list storage accounts")
            return False

        if self._pool.pooled_accounts():
            logger.info("Shared account pool already populated, nothing to bootstrap")
            return False

        naming = self._pool.naming
        for number in range(1, self._config.bootstrap_account_count + 1):
            name = naming.account_name(number)
            task = asyncio.create_task(
                self._provision(name, sku_for_account_number(number)),
                name=f"bootstrap-{name}",
            )
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        logger.info("Pool bootstrap started (%d accounts)", len(self._tasks))
        return True

    async def wait(self) -> None:
        """Wait for all provisioning tasks to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def stop(self) -> None:
        """Cancel outstanding provisioning tasks."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._tasks.clear()
        if tasks:
            logger.info("Pool bootstrap stopped (%d tasks cancelled)", len(tasks))

    async def _provision(self, name: str, sku: SkuName) -> None:
        try:
            await self._pool.provision_account(name, sku, enforce_max_count=True)
        except Exception:
            logger.warning("Bootstrap provisioning of account %s failed", name, exc_info=True)
            return
        logger.info("Bootstrap provisioned account %s (sku=%s)", name, sku.value)
