"""Bounded exponential backoff for polling eventually-consistent state."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from blobdisk.exceptions import PollTimeoutError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterator

    from blobdisk.settings import PollingConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Backoff:
    """Exponential schedule: ``initial * factor**n`` capped at ``max_seconds``.

    ``steps`` is the total number of condition checks made by
    :func:`poll_until`; the schedule yields one delay between each pair.
    """

    initial_seconds: float = 2.0
    factor: float = 1.5
    max_seconds: float = 60.0
    steps: int = 20

    @classmethod
    def from_config(cls, config: PollingConfig) -> Backoff:
        return cls(
            initial_seconds=config.backoff_initial_seconds,
            factor=config.backoff_factor,
            max_seconds=config.backoff_max_seconds,
            steps=config.backoff_steps,
        )

    def delays(self) -> Iterator[float]:
        delay = self.initial_seconds
        for _ in range(self.steps - 1):
            yield min(delay, self.max_seconds)
            delay *= self.factor


async def poll_until(
    condition: Callable[[], Awaitable[bool]],
    backoff: Backoff,
    *,
    description: str,
    timeout_error: type[PollTimeoutError] = PollTimeoutError,
) -> int:
    """Await *condition* until it returns ``True``.

    Exceptions raised by *condition* propagate immediately.  Cancelling the
    awaiting task cancels the loop at its next sleep.

    Returns the number of checks made; raises *timeout_error* once
    ``backoff.steps`` checks have all returned ``False``.
    """
    attempts = 0
    delays = backoff.delays()
    while True:
        attempts += 1
        if await condition():
            return attempts
        delay = next(delays, None)
        if delay is None:
            break
        logger.debug(
            "Waiting %.1fs before re-checking %s (attempt %d)",
            delay,
            description,
            attempts,
        )
        await asyncio.sleep(delay)

    raise timeout_error(
        f"Gave up waiting for {description} after {attempts} attempts",
        attempts=attempts,
        details={"description": description},
    )
