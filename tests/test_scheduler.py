"""
Tests for the background token refresher.
"""

import asyncio
import uuid
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import text

from connectors.errors import ProviderRejected, ProviderUnreachable
from connectors.models import OAuthCredential
from connectors.providers import Sportsbook
from connectors.scheduler import TokenRefreshScheduler
from tests.conftest import T0, token_pair


async def _link(manager, owner, sportsbook="betwiz"):
    await manager.exchange(owner, "code", "verifier", sportsbook)


@pytest.fixture
def scheduler(manager, store):
    return TokenRefreshScheduler(manager, store)


class TestSweep:
    @pytest.mark.asyncio
    async def test_refreshes_link_inside_window(self, scheduler, manager, store, gateway, clock):
        await _link(manager, "a@example.com")
        clock.now = T0 + timedelta(seconds=3595)

        stats = await scheduler.run_once()

        assert stats.checked == 1
        assert stats.refreshed == 1
        gateway.refresh.assert_awaited_once_with(Sportsbook.BETWIZ, "refresh-1")
        record = await store.find_active("a@example.com", Sportsbook.BETWIZ)
        assert record.access_token_expires_at == T0 + timedelta(seconds=3595 + 3600)

    @pytest.mark.asyncio
    async def test_leaves_fresh_links_alone(self, scheduler, manager, gateway, clock):
        await _link(manager, "a@example.com")
        clock.advance(minutes=30)

        stats = await scheduler.run_once()

        assert stats.checked == 0
        gateway.refresh.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_skips_lapsed_refresh_tokens(self, scheduler, manager, store, gateway, clock):
        await _link(manager, "a@example.com")
        clock.advance(days=91)

        stats = await scheduler.run_once()

        assert stats.checked == 0
        gateway.refresh.assert_not_awaited()
        # left for the owner to reconnect
        assert await store.find_active("a@example.com", Sportsbook.BETWIZ) is not None

    @pytest.mark.asyncio
    async def test_failure_deactivates_and_sweep_continues(self, scheduler, manager, store, gateway, clock):
        await _link(manager, "a@example.com")
        await _link(manager, "b@example.com")
        await _link(manager, "c@example.com")
        clock.advance(minutes=58)

        async def _refresh(sportsbook, refresh_token):
            if gateway.refresh.await_count == 1:
                raise ProviderRejected(400, "invalid_grant")
            return token_pair(access="access-2", refresh="refresh-2")

        gateway.refresh.side_effect = _refresh

        stats = await scheduler.run_once()

        assert stats.checked == 3
        assert stats.refreshed == 2
        assert stats.deactivated == 1
        active = [
            await store.find_active(owner, Sportsbook.BETWIZ)
            for owner in ("a@example.com", "b@example.com", "c@example.com")
        ]
        assert sum(record is None for record in active) == 1

    @pytest.mark.asyncio
    async def test_unreachable_provider_deactivates_by_default(self, scheduler, manager, store, gateway, clock):
        await _link(manager, "a@example.com")
        clock.advance(minutes=58)
        gateway.refresh.side_effect = ProviderUnreachable("down")

        stats = await scheduler.run_once()

        assert stats.deactivated == 1
        assert stats.deferred == 0
        assert await store.find_active("a@example.com", Sportsbook.BETWIZ) is None

    @pytest.mark.asyncio
    async def test_unreachable_provider_can_be_retried_next_sweep(self, manager, store, gateway, clock):
        scheduler = TokenRefreshScheduler(manager, store, deactivate_on_unreachable=False)
        await _link(manager, "a@example.com")
        clock.advance(minutes=58)
        gateway.refresh.side_effect = ProviderUnreachable("down")

        stats = await scheduler.run_once()

        assert stats.deferred == 1
        assert stats.deactivated == 0
        assert await store.find_active("a@example.com", Sportsbook.BETWIZ) is not None

    @pytest.mark.asyncio
    async def test_unknown_sportsbook_row_does_not_halt_sweep(
        self, scheduler, manager, store, session_factory, gateway, clock
    ):
        await _link(manager, "a@example.com")
        # rows written before the sportsbook constraint existed
        async with session_factory() as session:
            await session.execute(text("PRAGMA ignore_check_constraints = ON"))
            session.add(
                OAuthCredential(
                    id=uuid.uuid4(),
                    owner_email="legacy@example.com",
                    sportsbook="bogus",
                    access_token="00:00",
                    refresh_token="00:00",
                    access_token_expires_at=T0,
                    refresh_token_expires_at=T0 + timedelta(days=30),
                    scopes=[],
                    is_active=True,
                    created_at=T0,
                    updated_at=T0,
                )
            )
            await session.commit()
            await session.execute(text("PRAGMA ignore_check_constraints = OFF"))
        clock.advance(minutes=58)

        stats = await scheduler.run_once()

        assert stats.checked == 1
        assert stats.refreshed == 1
        gateway.refresh.assert_awaited_once_with(Sportsbook.BETWIZ, "refresh-1")

    @pytest.mark.asyncio
    async def test_stop_request_ends_sweep_after_current_link(self, scheduler, manager, gateway, clock):
        await _link(manager, "a@example.com")
        await _link(manager, "b@example.com")
        clock.advance(minutes=58)
        scheduler._stop_event = asyncio.Event()

        async def _refresh(sportsbook, refresh_token):
            scheduler._stop_event.set()
            return token_pair(access="access-2", refresh="refresh-2")

        gateway.refresh.side_effect = _refresh

        stats = await scheduler.run_once()

        assert stats.checked == 1
        assert stats.refreshed == 1
        assert gateway.refresh.await_count == 1

    @pytest.mark.asyncio
    async def test_skips_when_database_is_down(self, manager, store, gateway, clock):
        await _link(manager, "a@example.com")
        clock.advance(minutes=58)
        scheduler = TokenRefreshScheduler(
            manager, store, is_database_available=AsyncMock(return_value=False)
        )

        stats = await scheduler.run_once()

        assert stats.skipped is True
        assert stats.checked == 0
        gateway.refresh.assert_not_awaited()


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_is_idempotent_and_sweeps_immediately(self, manager, store):
        swept = asyncio.Event()
        scheduler = TokenRefreshScheduler(manager, store, interval=timedelta(hours=1))

        async def _run_once():
            swept.set()

        scheduler.run_once = _run_once

        scheduler.start()
        task = scheduler._task
        scheduler.start()

        assert scheduler._task is task
        await asyncio.wait_for(swept.wait(), timeout=1)
        assert scheduler.is_running

        await scheduler.stop()

        assert not scheduler.is_running
        assert task.done()

    @pytest.mark.asyncio
    async def test_loop_survives_a_failing_sweep(self, manager, store):
        calls = []
        scheduler = TokenRefreshScheduler(manager, store, interval=timedelta(milliseconds=10))

        async def _run_once():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("db exploded")

        scheduler.run_once = _run_once

        scheduler.start()
        for _ in range(100):
            if len(calls) >= 2:
                break
            await asyncio.sleep(0.01)
        await scheduler.stop()

        assert len(calls) >= 2

    @pytest.mark.asyncio
    async def test_stop_without_start(self, manager, store):
        await TokenRefreshScheduler(manager, store).stop()
