"""
Background token refresher.

Every five minutes (and once right after start) the scheduler sweeps the
store for active links whose access token is about to lapse while the
refresh token is still valid, and refreshes them one at a time through
the lifecycle manager.  A failing link is logged and deactivated; it never
stops the sweep.  With ``deactivate_on_unreachable=False`` a link whose
sportsbook cannot be reached is kept and retried on the next sweep.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional

from connectors.errors import ProviderUnreachable
from connectors.store import CredentialStore
from connectors.token_manager import TokenLifecycleManager

logger = logging.getLogger(__name__)

REFRESH_CHECK_INTERVAL = timedelta(minutes=5)
_STOP_GRACE_SECONDS = 30


@dataclass
class SweepStats:
    """Outcome of one sweep."""

    skipped: bool = False
    checked: int = 0
    refreshed: int = 0
    deactivated: int = 0
    deferred: int = 0
    started_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "skipped": self.skipped,
            "checked": self.checked,
            "refreshed": self.refreshed,
            "deactivated": self.deactivated,
            "deferred": self.deferred,
        }


class TokenRefreshScheduler:
    """Single periodic refresher per process, run as an asyncio task."""

    def __init__(
        self,
        manager: TokenLifecycleManager,
        store: CredentialStore,
        *,
        interval: timedelta = REFRESH_CHECK_INTERVAL,
        is_database_available: Optional[Callable[[], Awaitable[bool]]] = None,
        deactivate_on_unreachable: bool = True,
    ) -> None:
        self.manager = manager
        self.store = store
        self.interval = interval
        self.is_database_available = is_database_available or store.ping
        self.deactivate_on_unreachable = deactivate_on_unreachable
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the loop on the running event loop.  A second call is a no-op."""
        if self.is_running:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run(), name="token-refresh-scheduler")
        logger.info("Token refresh scheduler started (every %ds)", int(self.interval.total_seconds()))

    async def stop(self) -> None:
        """
        Stop the loop.

        An in-flight sweep finishes the link it is refreshing and skips the
        rest; it is cancelled if that takes longer than the grace period.
        """
        if self._task is None:
            return
        task, self._task = self._task, None
        self._stop_event.set()
        try:
            await asyncio.wait_for(asyncio.shield(task), timeout=_STOP_GRACE_SECONDS)
        except asyncio.TimeoutError:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("Token refresh scheduler stopped")

    async def run_once(self) -> SweepStats:
        """One sweep.  Never raises for a single link's failure."""
        stats = SweepStats(started_at=self.manager.clock())

        if not await self.is_database_available():
            logger.info("Database not connected, skipping token refresh")
            stats.skipped = True
            return stats

        async for record in self.store.sweep_refreshable(stats.started_at):
            if self._stop_event is not None and self._stop_event.is_set():
                logger.info("Scheduler stopping, leaving the rest of the sweep for later")
                break
            stats.checked += 1
            owner, sportsbook = record.owner_email, record.sportsbook
            try:
                await self.manager.refresh(owner, sportsbook)
                stats.refreshed += 1
            except ProviderUnreachable:
                if not self.deactivate_on_unreachable:
                    logger.warning(
                        "%s unreachable while refreshing for %s; retrying next sweep",
                        sportsbook.value, owner,
                    )
                    stats.deferred += 1
                    continue
                logger.error("%s unreachable while refreshing for %s", sportsbook.value, owner)
                await self._deactivate(owner, sportsbook, stats)
            except Exception:
                logger.exception("Failed to refresh token for %s (%s)", owner, sportsbook.value)
                await self._deactivate(owner, sportsbook, stats)

        if stats.checked:
            logger.info("Token refresh sweep finished: %s", stats.to_dict())
        return stats

    async def _deactivate(self, owner, sportsbook, stats: SweepStats) -> None:
        try:
            if await self.store.deactivate(owner, sportsbook):
                stats.deactivated += 1
        except Exception:
            logger.exception("Could not deactivate %s link for %s", sportsbook.value, owner)

    async def _run(self) -> None:
        while True:
            try:
                await self.run_once()
            except Exception:
                logger.exception("Error in token refresh sweep")
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval.total_seconds())
                return
            except asyncio.TimeoutError:
                continue
