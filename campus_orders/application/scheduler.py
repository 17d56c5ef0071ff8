"""
Payment-timeout sweep.

Every tick cancels the pending, unpaid orders whose payment window has
closed. Each cancellation is a conditional update, so an order that gets
paid or cancelled meanwhile is simply skipped.
"""

import asyncio
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from campus_orders.domain.exceptions import IllegalTransition
from campus_orders.domain.models import utcnow
from campus_orders.domain.state_machine import plan_transition
from campus_orders.domain.status import Actor, OrderStatus
from campus_orders.infrastructure.notifier import Notifier, order_event
from campus_orders.infrastructure.order_store import OrderStore
from shared.core import HealthStatus, check_result, get_logger, job_context

logger = get_logger(__name__, component="order-sweep")


@dataclass
class SweepSummary:
    started_at: datetime
    finished_at: Optional[datetime] = None
    scanned: int = 0
    cancelled: int = 0
    skipped: int = 0
    failed: int = 0

    def as_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["started_at"] = self.started_at.isoformat()
        data["finished_at"] = self.finished_at.isoformat() if self.finished_at else None
        return data


class ExpiryScheduler:
    JOB_ID = "order-payment-timeout-sweep"

    def __init__(
        self,
        orders: OrderStore,
        notifier: Optional[Notifier] = None,
        interval_seconds: int = 60,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.orders = orders
        self.notifier = notifier
        self.interval_seconds = interval_seconds
        self.clock = clock
        self.scheduler = AsyncIOScheduler(
            timezone='UTC',
            job_defaults={
                'coalesce': True,
                'max_instances': 1,
                'misfire_grace_time': interval_seconds,
            }
        )
        self.last_summary: Optional[SweepSummary] = None
        self.sweeps_run = 0
        self.total_cancelled = 0
        self._in_flight: Optional[asyncio.Task] = None
        self._stopping = False

    @property
    def running(self) -> bool:
        # shutdown() is queued onto the event loop, so the scheduler itself reports running a little longer
        return self.scheduler.running and not self._stopping

    def start(self) -> None:
        """Schedule the periodic sweep; the first tick fires immediately"""
        self._stopping = False
        self.scheduler.add_job(
            self._tick,
            trigger=IntervalTrigger(seconds=self.interval_seconds, timezone='UTC'),
            id=self.JOB_ID,
            name=self.JOB_ID,
            replace_existing=True,
            next_run_time=datetime.now(timezone.utc),
        )
        self.scheduler.start()
        logger.info(f"Payment timeout sweep scheduled every {self.interval_seconds}s")

    async def stop(self, timeout: float = 30.0) -> None:
        """Stop scheduling new ticks, then wait for the one in flight"""
        self._stopping = True
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            # let the queued shutdown run
            await asyncio.sleep(0)

        in_flight = self._in_flight
        if in_flight is not None and not in_flight.done():
            logger.info("Waiting for the running sweep to finish")
            try:
                await asyncio.wait_for(asyncio.shield(in_flight), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning("Sweep still running at shutdown, abandoning it")
        logger.info("Payment timeout sweep stopped")

    async def _tick(self) -> None:
        if self._stopping:
            return
        self._in_flight = asyncio.current_task()
        try:
            with job_context(self.JOB_ID):
                await self.sweep()
        except Exception:
            logger.exception("Payment timeout sweep failed")
        finally:
            self._in_flight = None

    async def sweep(self, now: Optional[datetime] = None) -> SweepSummary:
        """Cancel every expired pending order once; safe to repeat"""
        now = now or self.clock()
        summary = SweepSummary(started_at=now)

        expired = await self.orders.find_expired(now)
        summary.scanned = len(expired)

        for order in expired:
            try:
                transition = plan_transition(order, OrderStatus.CANCELLED, Actor.SYSTEM, now)
                applied = await self.orders.apply(transition)
            except IllegalTransition:
                summary.skipped += 1
                continue
            except Exception:
                summary.failed += 1
                logger.exception(
                    f"Failed to auto-cancel order {order.order_number}",
                    extra={'extra_fields': {'order_id': order.id, 'order_number': order.order_number}},
                )
                continue

            if not applied:
                # paid or cancelled since it was read
                summary.skipped += 1
                continue

            summary.cancelled += 1
            logger.info(
                f"Order auto-cancelled after payment timeout: {order.order_number}",
                extra={'extra_fields': {
                    'order_id': order.id,
                    'order_number': order.order_number,
                    'payment_expire_time': order.payment_expire_time,
                }},
            )
            if self.notifier is not None and self.notifier.enabled:
                cancelled = await self.orders.get(order.id)
                if cancelled is not None:
                    self.notifier.notify("order.cancelled", order_event(cancelled))

        summary.finished_at = self.clock()
        self.last_summary = summary
        self.sweeps_run += 1
        self.total_cancelled += summary.cancelled

        if summary.scanned:
            logger.info(
                f"Payment timeout sweep: {summary.cancelled} cancelled of {summary.scanned} expired",
                extra={'extra_fields': summary.as_dict()},
            )
        return summary

    def health_check(self) -> Dict[str, Any]:
        """Readiness check: WARN when no sweep has finished for three intervals"""
        if not self.running:
            return check_result(HealthStatus.WARN, "scheduler", output="sweep is not running")
        if self.last_summary is None or self.last_summary.finished_at is None:
            return check_result(HealthStatus.PASS, "scheduler", output="waiting for the first sweep")
        age = (self.clock() - self.last_summary.finished_at).total_seconds()
        stale = age > 3 * self.interval_seconds
        return check_result(
            HealthStatus.WARN if stale else HealthStatus.PASS, "scheduler",
            observedValue=f"{age:.0f}", observedUnit="s",
        )

    def stats(self) -> Dict[str, Any]:
        return {
            "order_sweep": {
                "enabled": self.running,
                "interval_seconds": self.interval_seconds,
                "sweeps_run": self.sweeps_run,
                "total_cancelled": self.total_cancelled,
                "last_summary": self.last_summary.as_dict() if self.last_summary else None,
            }
        }
