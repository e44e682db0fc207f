import asyncio
from datetime import timedelta

import pytest

from bookingflow.domain.reputation.service import ReputationService
from bookingflow.errors import StateConflictFailure
from bookingflow.models import (
    Booking,
    BookingStatus,
    Notification,
    NotificationType,
    ProviderProfile,
)
from bookingflow.services.deadline_watchdog import ScanSummary, WatchdogScheduler


def profile_of(session_factory, provider_id):
    session = session_factory()
    try:
        profile = session.query(ProviderProfile).filter(ProviderProfile.user_id == provider_id).one()
        session.expunge(profile)
        return profile
    finally:
        session.close()


def all_notifications(session_factory):
    session = session_factory()
    try:
        return session.query(Notification).order_by(Notification.id).all()
    finally:
        session.close()


class TestScanAndExpire:
    def test_expired_booking_is_auto_rejected_and_provider_penalized(
        self, make_booking, watchdog, clock, users, fetch, session_factory
    ):
        booking = make_booking()
        clock.advance(minutes=5, seconds=1)

        summary = watchdog.scan_and_expire()

        assert summary.as_dict() == {"scanned": 1, "expired": 1, "skipped": 0, "failed": 0}
        stored = fetch(booking.id)
        assert stored.status == BookingStatus.REJECTED.value
        assert stored.is_auto_rejected is True
        assert stored.cancellation_reason == "Provider did not respond within 5 minutes"
        assert stored.updated_at == clock()

        profile = profile_of(session_factory, users.provider)
        assert profile.rating == 45.0
        assert profile.response_timeout_count == 1

        emitted = [n for n in all_notifications(session_factory) if n.type != "booking_request"]
        assert len(emitted) == 2
        to_requester = next(n for n in emitted if n.user_id == users.requester)
        to_provider = next(n for n in emitted if n.user_id == users.provider)
        assert to_requester.type == NotificationType.BOOKING_REJECTED.value
        assert to_requester.data["autoRejected"] is True
        assert to_requester.data["oldRating"] == 50.0
        assert to_requester.data["newRating"] == 45.0
        assert to_provider.type == NotificationType.REPUTATION_CHANGED.value
        assert to_provider.data["points"] == -5.0
        assert to_provider.data["bookingId"] == booking.id
        assert to_provider.title == "Rating decreased"

    def test_booking_exactly_at_deadline_is_left_alone(self, make_booking, watchdog, clock, fetch):
        booking = make_booking()
        clock.advance(minutes=5)

        assert watchdog.scan_and_expire().scanned == 0
        assert fetch(booking.id).status == BookingStatus.PENDING.value

    def test_answered_bookings_are_not_touched(self, make_booking, service, watchdog, clock, users, fetch):
        confirmed = make_booking()
        rejected = make_booking()
        service.confirm_booking(confirmed.id, users.provider)
        service.reject_or_reschedule(rejected.id, users.provider)
        clock.advance(minutes=10)

        assert watchdog.scan_and_expire().scanned == 0
        assert fetch(confirmed.id).status == BookingStatus.CONFIRMED.value
        assert fetch(rejected.id).is_auto_rejected is False

    def test_rescheduled_booking_still_expires(self, make_booking, service, watchdog, clock, users, fetch):
        booking = make_booking()
        service.reject_or_reschedule(
            booking.id, users.provider, alternative_time=clock() + timedelta(days=1)
        )
        clock.advance(minutes=6)

        assert watchdog.scan_and_expire().expired == 1
        assert fetch(booking.id).is_auto_rejected is True

    def test_second_scan_is_a_no_op(self, make_booking, watchdog, clock, users, session_factory):
        make_booking()
        clock.advance(minutes=6)
        watchdog.scan_and_expire()
        notifications_after_first = len(all_notifications(session_factory))

        clock.advance(minutes=1)
        summary = watchdog.scan_and_expire()

        assert summary.scanned == 0
        assert profile_of(session_factory, users.provider).rating == 45.0
        assert profile_of(session_factory, users.provider).response_timeout_count == 1
        assert len(all_notifications(session_factory)) == notifications_after_first

    def test_penalties_accumulate_per_booking(self, make_booking, watchdog, clock, users, session_factory):
        for _ in range(3):
            make_booking()
        clock.advance(minutes=6)

        assert watchdog.scan_and_expire().expired == 3

        profile = profile_of(session_factory, users.provider)
        assert profile.rating == 35.0
        assert profile.response_timeout_count == 3

    def test_penalty_is_floored_at_zero(self, make_booking, watchdog, clock, users, session_factory):
        session = session_factory()
        session.query(ProviderProfile).filter(ProviderProfile.user_id == users.provider).update(
            {"rating": 2.0}
        )
        session.commit()
        session.close()

        make_booking()
        clock.advance(minutes=6)
        watchdog.scan_and_expire()

        assert profile_of(session_factory, users.provider).rating == 0.0

    def test_batch_size_limits_one_scan(self, make_booking, session_factory, clock):
        from bookingflow.services.deadline_watchdog import DeadlineWatchdog

        for _ in range(3):
            make_booking()
        clock.advance(minutes=6)
        small = DeadlineWatchdog(session_factory, clock=clock, batch_size=2)

        assert small.scan_and_expire().expired == 2
        assert small.scan_and_expire().expired == 1

    def test_failing_record_does_not_stop_the_batch(
        self, make_booking, watchdog, clock, fetch, monkeypatch
    ):
        broken = make_booking()
        healthy = make_booking(scheduled_at=clock() + timedelta(hours=2))
        clock.advance(minutes=6)

        original = ReputationService.apply_timeout_penalty

        def flaky(self, booking):
            if booking.id == broken.id:
                raise RuntimeError("reputation store down")
            return original(self, booking)

        monkeypatch.setattr(ReputationService, "apply_timeout_penalty", flaky)
        summary = watchdog.scan_and_expire()

        assert summary.expired == 1
        assert summary.failed == 1
        assert fetch(healthy.id).is_auto_rejected is True
        # rolled back as a whole, so the next cycle retries it
        stored = fetch(broken.id)
        assert stored.status == BookingStatus.PENDING.value
        assert stored.is_auto_rejected is False

        monkeypatch.setattr(ReputationService, "apply_timeout_penalty", original)
        assert watchdog.scan_and_expire().expired == 1
        assert fetch(broken.id).is_auto_rejected is True


class TestRaceWithProvider:
    def test_watchdog_loses_to_a_confirmation(self, make_booking, service, watchdog, clock, users, fetch, session_factory):
        booking = make_booking()
        clock.advance(minutes=6)
        # The provider answers between the scan query and the conditional update
        service.confirm_booking(booking.id, users.provider)

        assert watchdog._expire_one(booking.id) is False
        assert fetch(booking.id).status == BookingStatus.CONFIRMED.value
        assert profile_of(session_factory, users.provider).rating == 50.0

    def test_confirmation_loses_to_the_watchdog(self, make_booking, session_factory, watchdog, clock, users, fetch):
        from bookingflow.domain.bookings.service import BookingWorkflowService

        booking = make_booking()
        provider_service = BookingWorkflowService(session_factory(), clock=clock)
        # The provider's request has already read the booking as pending
        provider_service.db.query(Booking).filter(Booking.id == booking.id).one()
        clock.advance(minutes=6)

        watchdog.scan_and_expire()

        try:
            with pytest.raises(StateConflictFailure):
                provider_service.confirm_booking(booking.id, users.provider)
        finally:
            provider_service.db.close()
        stored = fetch(booking.id)
        assert stored.status == BookingStatus.REJECTED.value
        assert stored.confirmed_at is None


class TestWatchdogScheduler:
    def test_runs_one_cycle_per_trigger_and_stops(self):
        calls = []

        async def scenario():
            ticks = asyncio.Queue()

            async def trigger():
                await ticks.get()

            scheduler = WatchdogScheduler(lambda: calls.append(1), interval_seconds=60, trigger=trigger)
            scheduler.start()
            assert scheduler.running

            for expected in range(1, 4):
                await ticks.put(None)
                while scheduler.cycles < expected:
                    await asyncio.sleep(0.01)

            await scheduler.stop()
            return scheduler

        scheduler = asyncio.run(asyncio.wait_for(scenario(), timeout=5))
        assert len(calls) == 3
        assert scheduler.cycles == 3
        assert not scheduler.running

    def test_stop_does_not_wait_for_the_interval(self):
        async def scenario():
            scheduler = WatchdogScheduler(lambda: None, interval_seconds=3600)
            scheduler.start()
            await asyncio.sleep(0)
            await asyncio.wait_for(scheduler.stop(), timeout=1)
            return scheduler

        scheduler = asyncio.run(scenario())
        assert scheduler.cycles == 0
        assert not scheduler.running

    def test_failing_cycle_keeps_the_loop_alive(self):
        outcomes = []

        def job():
            outcomes.append(len(outcomes))
            if len(outcomes) == 1:
                raise RuntimeError("store unavailable")
            return ScanSummary()

        async def scenario():
            scheduler = WatchdogScheduler(job, interval_seconds=0.01)
            scheduler.start()
            while scheduler.cycles < 2:
                await asyncio.sleep(0.01)
            await scheduler.stop()

        asyncio.run(asyncio.wait_for(scenario(), timeout=5))
        assert len(outcomes) >= 2

    def test_runs_the_real_scan(self, make_booking, watchdog, clock, fetch):
        booking = make_booking()
        clock.advance(minutes=6)

        async def scenario():
            scheduler = WatchdogScheduler(watchdog.scan_and_expire, interval_seconds=3600)
            await scheduler.run_cycle()

        asyncio.run(scenario())
        assert fetch(booking.id).is_auto_rejected is True
