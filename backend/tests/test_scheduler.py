"""
Tests for the periodic branch maintenance cycle.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
import redis

from rest_api.services import scheduler
from rest_api.services.domain import PresetService
from shared.config.constants import OrderStatus, ScheduleType
from shared.utils.exceptions import OperationFailedError
from shared.utils.schemas import PresetCreateRequest


NOON = datetime(2026, 10, 16, 16, 0, tzinfo=timezone.utc)


@pytest.fixture
def wired(monkeypatch, jobs, payments):
    """Route the cycle's queue and gateway to the test doubles."""
    monkeypatch.setattr(scheduler, "get_job_queue", lambda: jobs)
    monkeypatch.setattr(scheduler, "get_payment_gateway", lambda: payments)


@pytest.fixture
def lunch(db_session, jobs, manager, seed_menu):
    return PresetService(db_session, jobs).create_preset(
        manager,
        PresetCreateRequest(
            name="Lunch",
            selected_item_ids=[seed_menu.burger.id],
            schedule_type=ScheduleType.DAILY,
            daily_start_time="11:00",
            daily_end_time="14:00",
            auto_apply=True,
        ),
    )


class TestMaintenanceCycle:

    def test_cycle_applies_presets_and_completes_orders(
        self, db_session, wired, jobs, manager, seed_branch, seed_menu, order_factory
    ):
        preset = PresetService(db_session, jobs).create_preset(
            manager,
            PresetCreateRequest(
                name="Lunch",
                selected_item_ids=[seed_menu.burger.id],
                schedule_type=ScheduleType.DAILY,
                daily_start_time="11:00",
                daily_end_time="14:00",
                auto_apply=True,
            ),
        )
        due = order_factory(
            seed_branch, [(seed_menu.burger, 1)], preparing_started_at=NOON - timedelta(minutes=30)
        )
        fresh = order_factory(
            seed_branch, [(seed_menu.burger, 1)], preparing_started_at=NOON - timedelta(minutes=5)
        )

        result = scheduler.run_maintenance_cycle(now=NOON)

        assert result.branches == 1
        assert result.presets_applied == 1
        assert result.orders_completed == 1
        assert result.failed_branches == []

        db_session.refresh(preset)
        db_session.refresh(due)
        db_session.refresh(fresh)
        assert preset.is_applied is True
        assert due.status == OrderStatus.COMPLETED
        assert fresh.status == OrderStatus.PREPARING

    def test_menu_sync_survives_a_queue_outage(
        self, db_session, wired, redis_client, lunch, seed_branch, seed_menu, order_factory
    ):
        due = order_factory(
            seed_branch, [(seed_menu.burger, 1)], preparing_started_at=NOON - timedelta(minutes=30)
        )
        redis_client.lpush.side_effect = redis.ConnectionError("down")

        first = scheduler.run_maintenance_cycle(now=NOON)

        assert first.presets_applied == 1
        assert first.menu_syncs_queued == 0
        assert first.orders_completed == 1
        assert first.failed_branches == []
        db_session.refresh(lunch)
        db_session.refresh(due)
        assert lunch.is_applied is True
        assert lunch.menu_sync_pending is True
        assert due.status == OrderStatus.COMPLETED

        redis_client.lpush.side_effect = None
        redis_client.lpush.reset_mock()
        second = scheduler.run_maintenance_cycle(now=NOON + timedelta(minutes=1))

        assert second.presets_applied == 0
        assert second.menu_syncs_queued == 1
        redis_client.lpush.assert_called_once()
        key, _ = redis_client.lpush.call_args.args
        assert key == "queue:sync-queue:wait"
        db_session.refresh(lunch)
        assert lunch.menu_sync_pending is False

        third = scheduler.run_maintenance_cycle(now=NOON + timedelta(minutes=2))
        assert third.menu_syncs_queued == 0
        redis_client.lpush.assert_called_once()

    def test_preset_failure_does_not_skip_the_order_sweep(
        self, db_session, wired, monkeypatch, seed_branch, seed_menu, order_factory
    ):
        def broken(self, branch_id, now=None, principal=None):
            raise OperationFailedError("apply scheduled presets", branch_id=branch_id)

        monkeypatch.setattr(PresetService, "check_scheduled_presets", broken)
        due = order_factory(
            seed_branch, [(seed_menu.burger, 1)], preparing_started_at=NOON - timedelta(minutes=30)
        )

        result = scheduler.run_maintenance_cycle(now=NOON)

        assert result.failed_branches == [seed_branch.id]
        assert result.orders_completed == 1
        db_session.refresh(due)
        assert due.status == OrderStatus.COMPLETED

    def test_quiet_cycle(self, db_session, wired, seed_branch):
        result = scheduler.run_maintenance_cycle(now=NOON)

        assert result.branches == 1
        assert result.presets_applied == 0
        assert result.orders_completed == 0


class TestMaintenanceScheduler:

    def test_start_and_stop(self, monkeypatch):
        cycles = []
        monkeypatch.setattr(scheduler, "run_maintenance_cycle", lambda: cycles.append(1))

        async def run():
            loop = scheduler.MaintenanceScheduler(interval_seconds=0.01)
            await loop.start()
            assert loop.running
            await asyncio.sleep(0.05)
            await loop.stop()
            assert not loop.running

        asyncio.run(run())

        assert len(cycles) >= 1
