import asyncio

import pytest
from sqlmodel import Session

from conftest import INSIDE, OUTSIDE, offset_north
from core import config
from core.errors import NotFound, TrackingBacklogFull
from models.location import LocationPayload, LocationSample
from models.shift import ClockOutReason, Shift, ShiftStatus
from models.zone import ZoneRead
from services.tracking import _TIMER_EXPIRED, SessionRegistry, TrackingEventType, TrackingSession

GRACE = 0.1
TICK = 0.02


def sample(loc, **overrides):
    return LocationSample(**{**loc, **overrides})


def event_types(events):
    return [e.type for e in events]


@pytest.fixture
def open_shift(session, zone, state_machine):
    return state_machine.clock_in(session, "worker-1", LocationPayload(**INSIDE), worker_name="Mike Chen")


@pytest.fixture
def make_session(engine, zone, state_machine):
    zones = [ZoneRead.model_validate(zone)]

    def factory(shift_id=None, **kwargs):
        return TrackingSession(
            "worker-1",
            shift_id,
            zones_provider=lambda: zones,
            engine=engine,
            state_machine=state_machine,
            grace_seconds=kwargs.pop("grace_seconds", GRACE),
            tick_seconds=TICK,
            **kwargs,
        )

    return factory


def load_shift(engine, shift_id):
    with Session(engine) as session:
        return session.get(Shift, shift_id)


def test_leaving_the_zone_clocks_the_worker_out(engine, open_shift, make_session):
    async def scenario():
        tracking = make_session(open_shift.id)
        tracking.start()
        tracking.submit(sample(INSIDE))
        tracking.submit(sample(OUTSIDE))
        await tracking.join()
        assert tracking.timer.is_armed

        await asyncio.sleep(GRACE * 3)
        await tracking.join()
        await tracking.stop()
        return tracking

    tracking = asyncio.run(scenario())
    events = tracking.drain_events()
    types = event_types(events)

    assert types[:3] == [
        TrackingEventType.PERIMETER_ENTERED,
        TrackingEventType.PERIMETER_EXITED,
        TrackingEventType.AUTO_CLOCKOUT_ARMED,
    ]
    assert TrackingEventType.AUTO_CLOCKOUT_COUNTDOWN in types
    assert types[-1] == TrackingEventType.AUTO_CLOCKED_OUT
    assert tracking.shift_id is None

    shift = load_shift(engine, open_shift.id)
    assert shift.status == ShiftStatus.CLOCKED_OUT
    assert shift.close_reason == ClockOutReason.AUTO_PERIMETER_EXIT
    assert shift.clock_out_notes == config.AUTO_CLOCKOUT_NOTES
    assert shift.clock_out_location["lat"] == OUTSIDE["lat"]


def test_returning_in_time_cancels_the_countdown(engine, open_shift, make_session):
    async def scenario():
        tracking = make_session(open_shift.id, grace_seconds=0.2)
        tracking.start()
        tracking.submit(sample(INSIDE))
        tracking.submit(sample(OUTSIDE))
        await tracking.join()
        await asyncio.sleep(0.05)

        tracking.submit(sample(INSIDE))
        await tracking.join()
        assert not tracking.timer.is_armed

        await asyncio.sleep(0.3)
        await tracking.join()
        await tracking.stop()
        return tracking

    types = event_types(asyncio.run(scenario()).drain_events())

    assert TrackingEventType.AUTO_CLOCKOUT_CANCELLED in types
    assert TrackingEventType.AUTO_CLOCKED_OUT not in types
    assert load_shift(engine, open_shift.id).status == ShiftStatus.CLOCKED_IN


def test_repeated_outside_samples_do_not_restart_the_clock(engine, open_shift, make_session):
    async def scenario():
        tracking = make_session(open_shift.id)
        tracking.start()
        tracking.submit(sample(OUTSIDE))
        await tracking.join()
        deadline = tracking.timer.deadline

        for i in range(3):
            tracking.submit(sample(OUTSIDE, lat=OUTSIDE["lat"] + i * 0.001))
        await tracking.join()
        assert tracking.timer.deadline == deadline

        await tracking.stop()
        return tracking

    types = event_types(asyncio.run(scenario()).drain_events())
    assert types.count(TrackingEventType.PERIMETER_EXITED) == 1
    assert types.count(TrackingEventType.AUTO_CLOCKOUT_ARMED) == 1


def test_stale_expiry_after_return_is_ignored(engine, open_shift, make_session):
    async def scenario():
        tracking = make_session(open_shift.id, grace_seconds=5)
        tracking.start()
        tracking.submit(sample(OUTSIDE))
        await tracking.join()
        generation = tracking._armed_generation
        assert generation is not None

        tracking.submit(sample(INSIDE))
        # Expiry that fired just before the worker came back
        tracking._inbox.put_nowait((_TIMER_EXPIRED, generation))
        await tracking.join()
        await tracking.stop()
        return tracking

    types = event_types(asyncio.run(scenario()).drain_events())

    assert TrackingEventType.AUTO_CLOCKED_OUT not in types
    assert load_shift(engine, open_shift.id).status == ShiftStatus.CLOCKED_IN


def test_manual_clock_out_cancels_pending_auto_clock_out(engine, session, open_shift, make_session, state_machine):
    async def scenario():
        tracking = make_session(open_shift.id)
        tracking.start()
        tracking.submit(sample(OUTSIDE))
        await tracking.join()
        assert tracking.timer.is_armed

        state_machine.clock_out(session, "worker-1", open_shift.id, LocationPayload(**OUTSIDE))
        tracking.shift_closed(open_shift.id)
        await tracking.join()

        await asyncio.sleep(GRACE * 3)
        await tracking.join()
        await tracking.stop()
        return tracking

    tracking = asyncio.run(scenario())
    events = tracking.drain_events()
    types = event_types(events)

    assert events[-1].type == TrackingEventType.AUTO_CLOCKOUT_CANCELLED
    assert events[-1].message == "Shift closed"
    assert TrackingEventType.AUTO_CLOCKED_OUT not in types
    assert TrackingEventType.AUTO_CLOCKOUT_FAILED not in types
    assert load_shift(engine, open_shift.id).close_reason == ClockOutReason.MANUAL


def test_shift_already_closed_elsewhere_is_not_an_error(engine, session, open_shift, make_session, state_machine):
    async def scenario():
        tracking = make_session(open_shift.id)
        tracking.start()
        tracking.submit(sample(OUTSIDE))
        await tracking.join()

        # Closed without telling the session
        state_machine.clock_out(session, "worker-1", open_shift.id, None)

        await asyncio.sleep(GRACE * 3)
        await tracking.join()
        await tracking.stop()
        return tracking

    tracking = asyncio.run(scenario())
    types = event_types(tracking.drain_events())

    assert TrackingEventType.AUTO_CLOCKED_OUT not in types
    assert TrackingEventType.AUTO_CLOCKOUT_FAILED not in types
    assert load_shift(engine, open_shift.id).close_reason == ClockOutReason.MANUAL
    assert tracking.shift_id is None


def test_leaving_without_a_shift_only_reports_the_exit(make_session):
    async def scenario():
        tracking = make_session()
        tracking.start()
        tracking.submit(sample(INSIDE))
        tracking.submit(sample(OUTSIDE))
        await tracking.join()
        assert not tracking.timer.is_armed
        await tracking.stop()
        return tracking

    assert event_types(asyncio.run(scenario()).drain_events()) == [
        TrackingEventType.PERIMETER_ENTERED,
        TrackingEventType.PERIMETER_EXITED,
    ]


def test_shift_opened_outside_waits_for_the_next_exit(engine, zone, state_machine, make_session):
    async def scenario():
        tracking = make_session()
        tracking.start()
        tracking.submit(sample(OUTSIDE))
        await tracking.join()

        tracking.shift_opened("shift-1")
        await tracking.join()
        assert tracking.shift_id == "shift-1"
        assert not tracking.timer.is_armed
        await tracking.stop()

    asyncio.run(scenario())


def test_low_accuracy_samples_are_flagged(make_session):
    async def scenario():
        tracking = make_session(low_accuracy_threshold_m=50)
        tracking.start()
        tracking.submit(sample(INSIDE, accuracy=120.0))
        await tracking.join()
        await tracking.stop()
        return tracking

    (event,) = asyncio.run(scenario()).drain_events()
    assert event.type == TrackingEventType.PERIMETER_ENTERED
    assert event.low_accuracy is True
    assert event.accuracy == 120.0


def test_listener_receives_every_event(make_session):
    received = []

    async def scenario():
        tracking = make_session(listener=received.append)
        tracking.start()
        tracking.submit(sample(INSIDE))
        tracking.submit(sample(OUTSIDE))
        await tracking.join()
        await tracking.stop()
        return tracking

    tracking = asyncio.run(scenario())
    assert received == tracking.drain_events()
    assert tracking.drain_events() == []


def test_stopped_session_rejects_samples(make_session):
    async def scenario():
        tracking = make_session()
        tracking.start()
        await tracking.stop()
        assert not tracking.is_running
        with pytest.raises(NotFound):
            tracking.submit(sample(INSIDE))
        # Stopping twice is fine
        await tracking.stop()

    asyncio.run(scenario())


def test_registry_binds_open_shift_and_replaces_sessions(engine, zone, open_shift, state_machine):
    async def scenario():
        registry = SessionRegistry(engine=engine, state_machine=state_machine, grace_seconds=GRACE, tick_seconds=TICK)

        first = await registry.start_session("worker-1")
        assert first.shift_id == open_shift.id
        assert [z.id for z in registry.current_zones()] == [zone.id]

        second = await registry.start_session("worker-1")
        assert not first.is_running
        assert registry.get_worker_session("worker-1") is second
        assert len(registry) == 1
        with pytest.raises(NotFound):
            registry.get_session(first.session_id)

        registry.stream_location(second.session_id, sample(INSIDE))
        await second.join()
        assert second.last_known_within is True

        await registry.stop_session(second.session_id)
        assert len(registry) == 0
        with pytest.raises(NotFound):
            await registry.stop_session(second.session_id)

    asyncio.run(scenario())


def test_registry_forwards_shift_notifications(engine, zone, state_machine):
    async def scenario():
        registry = SessionRegistry(engine=engine, state_machine=state_machine, grace_seconds=GRACE, tick_seconds=TICK)
        tracking = await registry.start_session("worker-1")
        assert tracking.shift_id is None

        registry.notify_shift_opened("worker-1", "shift-1")
        await tracking.join()
        assert tracking.shift_id == "shift-1"

        # Another shift id does not unbind the current one
        registry.notify_shift_closed("worker-1", "shift-2")
        await tracking.join()
        assert tracking.shift_id == "shift-1"

        registry.notify_shift_closed("worker-1", "shift-1")
        await tracking.join()
        assert tracking.shift_id is None

        # Workers without a session are ignored
        registry.notify_shift_opened("worker-2", "shift-3")

        await registry.shutdown()
        assert len(registry) == 0

    asyncio.run(scenario())


@pytest.fixture
def shift_at_center(session, zone, state_machine):
    return state_machine.clock_in(session, "worker-1", LocationPayload(**offset_north(0)), worker_name="Mike Chen")


def test_walking_out_and_back_within_half_the_grace_keeps_the_shift(engine, shift_at_center, make_session):
    grace = 0.4

    async def scenario():
        tracking = make_session(shift_at_center.id, grace_seconds=grace)
        tracking.start()
        tracking.submit(sample(offset_north(0)))
        tracking.submit(sample(offset_north(600)))
        await tracking.join()
        assert tracking.timer.is_armed

        await asyncio.sleep(grace / 2)
        tracking.submit(sample(offset_north(300)))
        await tracking.join()
        assert not tracking.timer.is_armed

        await asyncio.sleep(grace)
        await tracking.join()
        await tracking.stop()
        return tracking

    events = asyncio.run(scenario()).drain_events()
    types = event_types(events)

    assert [t for t in types if t != TrackingEventType.AUTO_CLOCKOUT_COUNTDOWN] == [
        TrackingEventType.PERIMETER_ENTERED,
        TrackingEventType.PERIMETER_EXITED,
        TrackingEventType.AUTO_CLOCKOUT_ARMED,
        TrackingEventType.PERIMETER_ENTERED,
        TrackingEventType.AUTO_CLOCKOUT_CANCELLED,
    ]
    assert events[1].distance_meters == pytest.approx(600, abs=5)
    assert load_shift(engine, shift_at_center.id).status == ShiftStatus.CLOCKED_IN


def test_staying_out_past_the_grace_auto_clocks_out(engine, shift_at_center, make_session):
    grace = 0.4

    async def scenario():
        tracking = make_session(shift_at_center.id, grace_seconds=grace)
        tracking.start()
        tracking.submit(sample(offset_north(0)))
        tracking.submit(sample(offset_north(600)))
        await tracking.join()

        await asyncio.sleep(grace / 2)
        tracking.submit(sample(offset_north(650)))
        await asyncio.sleep(grace)
        await tracking.join()
        await tracking.stop()
        return tracking

    types = event_types(asyncio.run(scenario()).drain_events())

    assert TrackingEventType.AUTO_CLOCKOUT_CANCELLED not in types
    assert types.count(TrackingEventType.AUTO_CLOCKED_OUT) == 1

    shift = load_shift(engine, shift_at_center.id)
    assert shift.status == ShiftStatus.CLOCKED_OUT
    assert shift.close_reason == ClockOutReason.AUTO_PERIMETER_EXIT
    assert shift.clock_out_location["lat"] == pytest.approx(offset_north(650)["lat"])


def test_sample_backlog_is_capped(make_session):
    async def scenario():
        tracking = make_session(max_pending_samples=2)
        tracking.submit(sample(INSIDE))
        tracking.submit(sample(INSIDE))

        with pytest.raises(TrackingBacklogFull) as exc:
            tracking.submit(sample(OUTSIDE))
        assert exc.value.status_code == 429
        assert tracking.pending_samples == 2

        # Control messages are not capped
        tracking.shift_opened("shift-1")

        tracking.start()
        await tracking.join()
        assert tracking.pending_samples == 0
        assert tracking.shift_id == "shift-1"

        tracking.submit(sample(OUTSIDE))
        await tracking.join()
        assert tracking.last_known_within is False
        await tracking.stop()

    asyncio.run(scenario())
