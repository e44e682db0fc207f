"""
Deadline watchdog

Auto-rejects pending bookings whose response deadline passed and penalizes the
provider. Each expired booking is its own unit of work: one transaction covering
the conditional status change, the rating delta, the timeout counter and both
notifications. A failing record is rolled back and logged; it stays eligible
and is picked up again on the next cycle.

Worst-case detection latency is the response window plus one scan interval.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from sqlalchemy.orm import Session, sessionmaker

from ..config import (
    BOOKING_RESPONSE_WINDOW_MINUTES,
    RESPONSE_TIMEOUT_PENALTY_POINTS,
    WATCHDOG_BATCH_SIZE,
    WATCHDOG_INTERVAL_SECONDS,
)
from ..domain.bookings.repository import BookingRepository
from ..domain.notifications import events
from ..domain.notifications.repository import NotificationRepository
from ..domain.reputation.service import ReputationService
from ..models import Booking, BookingStatus
from ..shared.clock import Clock, utcnow

logger = logging.getLogger(__name__)


@dataclass
class ScanSummary:
    scanned: int = 0
    expired: int = 0
    skipped: int = 0  # answered or expired by someone else between query and update
    failed: int = 0

    def as_dict(self) -> dict:
        return {
            "scanned": self.scanned,
            "expired": self.expired,
            "skipped": self.skipped,
            "failed": self.failed,
        }


class DeadlineWatchdog:
    """Scans for expired pending bookings and drives the auto-rejection path"""

    def __init__(
        self,
        session_factory: sessionmaker,
        clock: Clock = utcnow,
        batch_size: int = WATCHDOG_BATCH_SIZE,
        penalty_points: float = RESPONSE_TIMEOUT_PENALTY_POINTS,
        response_window_minutes: int = BOOKING_RESPONSE_WINDOW_MINUTES,
        repo: Optional[BookingRepository] = None,
    ):
        self.session_factory = session_factory
        self.clock = clock
        self.batch_size = batch_size
        self.penalty_points = penalty_points
        self.response_window_minutes = response_window_minutes
        self.repo = repo or BookingRepository()

    def scan_and_expire(self) -> ScanSummary:
        summary = ScanSummary()
        now = self.clock()

        db: Session = self.session_factory()
        try:
            candidates = [
                booking.id
                for booking in self.repo.find_expired_pending(db, now, self.batch_size)
            ]
        finally:
            db.close()

        summary.scanned = len(candidates)
        for booking_id in candidates:
            try:
                if self._expire_one(booking_id):
                    summary.expired += 1
                else:
                    summary.skipped += 1
            except Exception as e:
                summary.failed += 1
                logger.error(f"❌ Failed to auto-reject booking {booking_id}: {e}")
                continue

        if summary.scanned:
            logger.info(f"⏰ Deadline scan complete: {summary.as_dict()}")
        else:
            logger.debug("⏰ Deadline scan complete: nothing expired")
        return summary

    def _expire_one(self, booking_id: str) -> bool:
        """Auto-reject one booking. Returns False if another actor changed it first."""
        db: Session = self.session_factory()
        try:
            now = self.clock()
            reason = f"Provider did not respond within {self.response_window_minutes} minutes"
            applied = self.repo.transition(
                db,
                booking_id,
                {BookingStatus.PENDING},
                require_not_auto_rejected=True,
                status=BookingStatus.REJECTED.value,
                is_auto_rejected=True,
                cancellation_reason=reason,
                updated_at=now,
            )
            if not applied:
                db.rollback()
                logger.info(f"ℹ️ Booking {booking_id} was answered before the watchdog reached it")
                return False

            booking = db.query(Booking).filter(Booking.id == booking_id).one()

            reputation = ReputationService(db, clock=self.clock, penalty_points=self.penalty_points)
            old_rating, new_rating = reputation.apply_timeout_penalty(booking)

            NotificationRepository.record(
                db,
                events.provider_did_not_respond(
                    booking,
                    booking.provider,
                    self.response_window_minutes,
                    old_rating,
                    new_rating,
                    now,
                ),
            )
            self.repo.commit(db)

            logger.info(
                f"⌛ Booking {booking_id} auto-rejected; provider {booking.provider_id} rating "
                f"{old_rating:g} → {new_rating:g}"
            )
            return True
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()


class WatchdogScheduler:
    """
    Runs ``job`` on a fixed interval in one asyncio task.

    The loop owns its stop event, so ``stop()`` is deterministic. Tests pass a
    ``trigger`` coroutine factory instead of waiting on the real interval; each
    time the trigger returns, one cycle runs. The job is synchronous and runs
    in a worker thread.
    """

    def __init__(
        self,
        job: Callable[[], object],
        interval_seconds: float = WATCHDOG_INTERVAL_SECONDS,
        trigger: Optional[Callable[[], Awaitable[None]]] = None,
    ):
        self.job = job
        self.interval_seconds = interval_seconds
        self.trigger = trigger
        self.cycles = 0
        self._stop_event: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._loop())
        logger.info(f"🐕 Deadline watchdog started (interval {self.interval_seconds}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stop_event.set()
        if not self.trigger:
            await self._task
        else:
            # an injected trigger may never fire again; do not wait on it
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        logger.info("🐕 Deadline watchdog stopped")

    async def _wait_for_tick(self) -> bool:
        """Returns True when a cycle should run, False when stopping"""
        if self.trigger is not None:
            await self.trigger()
            return not self._stop_event.is_set()
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            return False
        except asyncio.TimeoutError:
            return True

    async def run_cycle(self) -> None:
        try:
            await asyncio.to_thread(self.job)
        except Exception as e:
            logger.error(f"❌ Deadline watchdog cycle failed: {e}")
        finally:
            self.cycles += 1

    async def _loop(self) -> None:
        while not self._stop_event.is_set():
            if not await self._wait_for_tick():
                break
            await self.run_cycle()
