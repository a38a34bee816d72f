"""
Periodic branch maintenance.

Every cycle, for each active branch:
- applies / un-applies auto-apply menu presets whose schedule window changed
  and queues menu syncs that an earlier apply could not queue
- completes preparing orders whose timer ran out (auto_ready branches)

Runs as a FastAPI background task started from the lifespan. The database
work is synchronous, so each cycle runs in a worker thread.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from sqlalchemy import select

from rest_api.models import Branch
from rest_api.services.domain import OrderService, PresetService
from rest_api.services.jobs import get_job_queue
from rest_api.services.payments import get_payment_gateway
from shared.config.logging import get_logger
from shared.config.settings import settings
from shared.infrastructure.db import get_db_context
from shared.utils.clock import utcnow
from shared.utils.exceptions import AppException

logger = get_logger(__name__)


@dataclass
class CycleResult:
    """Outcome of one maintenance pass."""

    branches: int = 0
    presets_applied: int = 0
    presets_deactivated: int = 0
    menu_syncs_queued: int = 0
    orders_completed: int = 0
    failed_branches: list[int] = field(default_factory=list)


def run_maintenance_cycle(now: Optional[datetime] = None) -> CycleResult:
    """
    Run one pass over all active branches.

    The preset check and the order sweep run in their own transactions: a
    failure in either is logged, marks the branch failed and does not stop
    the other step or the other branches.
    """
    now = now or utcnow()
    result = CycleResult()
    jobs = get_job_queue()
    payments = get_payment_gateway()

    with get_db_context() as db:
        branch_ids = db.scalars(
            select(Branch.id).where(Branch.is_active.is_(True)).order_by(Branch.id)
        ).all()

    for branch_id in branch_ids:
        result.branches += 1
        failed = False

        with get_db_context() as db:
            try:
                presets = PresetService(db, jobs).check_scheduled_presets(branch_id, now=now)
                result.presets_applied += len(presets.applied)
                result.presets_deactivated += len(presets.deactivated)
                result.menu_syncs_queued += len(presets.synced)
            except AppException as e:
                db.rollback()
                failed = True
                logger.error("Scheduled preset check failed", branch_id=branch_id, error=e.detail)

        with get_db_context() as db:
            try:
                orders = OrderService(db, jobs, payments).auto_complete_due_orders(branch_id, now=now)
                result.orders_completed += orders.completed_count
            except AppException as e:
                db.rollback()
                failed = True
                logger.error("Order auto-complete failed", branch_id=branch_id, error=e.detail)

        if failed:
            result.failed_branches.append(branch_id)

    if result.presets_applied or result.presets_deactivated or result.menu_syncs_queued or result.orders_completed:
        logger.info(
            "Maintenance cycle finished",
            branches=result.branches,
            presets_applied=result.presets_applied,
            presets_deactivated=result.presets_deactivated,
            menu_syncs_queued=result.menu_syncs_queued,
            orders_completed=result.orders_completed,
        )
    return result


class MaintenanceScheduler:
    """Runs run_maintenance_cycle on a fixed interval until stopped."""

    def __init__(self, interval_seconds: float):
        self._interval = interval_seconds
        self._running = False
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the scheduler loop."""
        if self._running:
            logger.warning("Maintenance scheduler already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info("Maintenance scheduler started", interval_seconds=self._interval)

    async def stop(self) -> None:
        """Stop the scheduler gracefully."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Maintenance scheduler stopped")

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await asyncio.to_thread(run_maintenance_cycle)
            except Exception as e:
                # Keep the loop alive; the next cycle retries
                logger.error("Maintenance cycle error", error=str(e))
            await asyncio.sleep(self._interval)


_scheduler: MaintenanceScheduler | None = None


async def start_scheduler() -> None:
    """Start the global maintenance scheduler."""
    global _scheduler
    if _scheduler is None:
        _scheduler = MaintenanceScheduler(settings.scheduler_interval_seconds)
    await _scheduler.start()


async def stop_scheduler() -> None:
    """Stop the global maintenance scheduler."""
    global _scheduler
    if _scheduler is not None:
        await _scheduler.stop()
        _scheduler = None
