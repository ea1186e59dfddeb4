"""
Live location tracking sessions.

Each session is one asyncio task consuming an inbox queue: location samples,
shift opened/closed notices and timer expiries are all processed in arrival
order on that task, so perimeter detection and arming/cancelling the
auto clock-out timer never interleave for a session. Sessions of different
workers share nothing but the read-only zone snapshot.

All public methods must be called from the event loop thread.
"""

import asyncio
import logging
from collections import deque
from datetime import datetime
from enum import Enum
from itertools import count
from typing import Callable, Dict, Iterable, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_serializer
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from core import config
from core.errors import NotClockedIn, NotFound, TrackingBacklogFull, Unauthorized
from db.session import engine as default_engine
from models.location import LocationPayload, LocationSample
from models.shift import ClockOutReason
from models.zone import ZoneRead
from services.auto_clockout import AutoClockoutTimer
from services.perimeter_monitor import PerimeterEvent, PerimeterMonitor
from services.shift_state_machine import ShiftStateMachine, shift_state_machine
from services.zone_service import ZoneService
from utils.datetime_helpers import format_utc_datetime, utc_now

logger = logging.getLogger(__name__)


class TrackingEventType(str, Enum):
    PERIMETER_ENTERED = "perimeter_entered"
    PERIMETER_EXITED = "perimeter_exited"
    AUTO_CLOCKOUT_ARMED = "auto_clockout_armed"
    AUTO_CLOCKOUT_COUNTDOWN = "auto_clockout_countdown"
    AUTO_CLOCKOUT_CANCELLED = "auto_clockout_cancelled"
    AUTO_CLOCKED_OUT = "auto_clocked_out"
    AUTO_CLOCKOUT_FAILED = "auto_clockout_failed"


class TrackingEvent(BaseModel):
    type: TrackingEventType
    session_id: str
    worker_id: str
    shift_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=utc_now)
    within: Optional[bool] = None
    distance_meters: Optional[float] = None
    accuracy: Optional[float] = None
    low_accuracy: bool = False
    seconds_remaining: Optional[float] = None
    message: Optional[str] = None

    @field_serializer("timestamp")
    def serialize_timestamp(self, dt: datetime) -> str:
        return format_utc_datetime(dt)


# Inbox message kinds
_SAMPLE = "sample"
_SHIFT_OPENED = "shift_opened"
_SHIFT_CLOSED = "shift_closed"
_TIMER_EXPIRED = "timer_expired"
_STOP = "stop"


class TrackingSession:

    def __init__(
        self,
        worker_id: str,
        shift_id: Optional[str] = None,
        *,
        zones_provider: Callable[[], Iterable],
        engine=None,
        state_machine: Optional[ShiftStateMachine] = None,
        grace_seconds: float = config.AUTO_CLOCKOUT_GRACE_SECONDS,
        tick_seconds: float = config.AUTO_CLOCKOUT_TICK_SECONDS,
        low_accuracy_threshold_m: Optional[float] = config.LOW_ACCURACY_THRESHOLD_M,
        event_buffer_size: int = config.TRACKING_EVENT_BUFFER_SIZE,
        max_pending_samples: int = config.TRACKING_MAX_PENDING_SAMPLES,
        listener: Optional[Callable[[TrackingEvent], None]] = None,
        session_id: Optional[str] = None,
    ):
        self.session_id = session_id or uuid4().hex
        self.worker_id = worker_id
        self.shift_id = shift_id
        self.grace_seconds = grace_seconds
        self.started_at = utc_now()
        self.last_location: Optional[LocationSample] = None

        self.monitor = PerimeterMonitor(low_accuracy_threshold_m)
        self.timer = AutoClockoutTimer(tick_seconds, name=f"auto-clockout:{self.session_id}")

        self._zones_provider = zones_provider
        self._engine = engine if engine is not None else default_engine
        self._state_machine = state_machine or shift_state_machine
        self._listener = listener
        self._inbox: asyncio.Queue = asyncio.Queue()
        self._events: deque = deque(maxlen=event_buffer_size)
        self.max_pending_samples = max_pending_samples
        self._pending_samples = 0
        self._task: Optional[asyncio.Task] = None
        self._generations = count(1)
        self._armed_generation: Optional[int] = None
        self._closed = False

    # --- Lifecycle ---

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def last_known_within(self) -> Optional[bool]:
        return self.monitor.last_known_within

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(
                self._run(), name=f"tracking:{self.session_id}"
            )

    async def stop(self) -> None:
        if self._closed:
            return
        if self._task is None:
            self._closed = True
            return
        self._inbox.put_nowait((_STOP, None))
        await self._task

    async def join(self) -> None:
        """Wait until every message queued so far has been processed."""
        await self._inbox.join()

    # --- Inbox producers (fire-and-forget) ---

    def _post(self, kind: str, payload=None) -> None:
        if self._closed:
            raise NotFound("Tracking session has been stopped")
        self._inbox.put_nowait((kind, payload))

    @property
    def pending_samples(self) -> int:
        return self._pending_samples

    def submit(self, sample: LocationSample) -> None:
        # Only samples count against the cap; control messages always get through
        if not self._closed and self._pending_samples >= self.max_pending_samples:
            logger.warning(
                f"[TRACKING] Session {self.session_id} dropped a sample: "
                f"{self._pending_samples} already pending"
            )
            raise TrackingBacklogFull()
        self._post(_SAMPLE, sample)
        self._pending_samples += 1

    def shift_opened(self, shift_id: str) -> None:
        self._post(_SHIFT_OPENED, shift_id)

    def shift_closed(self, shift_id: Optional[str] = None) -> None:
        self._post(_SHIFT_CLOSED, shift_id)

    # --- Events ---

    def drain_events(self) -> List[TrackingEvent]:
        events = list(self._events)
        self._events.clear()
        return events

    def _emit(self, event_type: TrackingEventType, **fields) -> TrackingEvent:
        fields.setdefault("shift_id", self.shift_id)
        event = TrackingEvent(
            type=event_type,
            session_id=self.session_id,
            worker_id=self.worker_id,
            **fields,
        )
        self._events.append(event)
        if self._listener is not None:
            self._listener(event)
        return event

    # --- Session task ---

    async def _run(self) -> None:
        logger.info(f"[TRACKING] Session {self.session_id} started for worker {self.worker_id}")
        try:
            while True:
                kind, payload = await self._inbox.get()
                if kind == _SAMPLE:
                    self._pending_samples -= 1
                try:
                    if kind == _STOP:
                        break
                    await self._handle(kind, payload)
                except Exception:
                    logger.exception(f"[TRACKING] Session {self.session_id} failed to handle '{kind}'")
                finally:
                    self._inbox.task_done()
        finally:
            self._closed = True
            self.timer.cancel()
            self._armed_generation = None
            # Release anyone waiting in join()
            while not self._inbox.empty():
                self._inbox.get_nowait()
                self._inbox.task_done()
            self._pending_samples = 0
            logger.info(f"[TRACKING] Session {self.session_id} stopped")

    async def _handle(self, kind: str, payload) -> None:
        if kind == _SAMPLE:
            self._on_sample(payload)
        elif kind == _SHIFT_OPENED:
            self._on_shift_opened(payload)
        elif kind == _SHIFT_CLOSED:
            self._on_shift_closed(payload)
        elif kind == _TIMER_EXPIRED:
            await self._on_timer_expired(payload)

    def _on_sample(self, sample: LocationSample) -> None:
        self.last_location = sample
        transition = self.monitor.observe(sample, self._zones_provider())
        if transition is None:
            return

        exited = transition.event == PerimeterEvent.EXITED
        self._emit(
            TrackingEventType.PERIMETER_EXITED if exited else TrackingEventType.PERIMETER_ENTERED,
            within=transition.within,
            distance_meters=transition.distance_meters,
            accuracy=transition.accuracy,
            low_accuracy=transition.low_accuracy,
        )

        if exited:
            # Leaving without an open shift is informational only
            if self.shift_id is not None:
                self._arm_timer()
        else:
            self._cancel_timer("Returned to work zone")

    def _on_shift_opened(self, shift_id: str) -> None:
        self.shift_id = shift_id

    def _on_shift_closed(self, shift_id: Optional[str]) -> None:
        if shift_id is not None and shift_id != self.shift_id:
            return
        self._cancel_timer("Shift closed")
        self.shift_id = None

    def _arm_timer(self) -> None:
        generation = next(self._generations)
        armed = self.timer.arm(
            self.grace_seconds,
            on_tick=self._on_tick,
            on_expire=lambda: self._inbox.put_nowait((_TIMER_EXPIRED, generation)),
        )
        if not armed:
            return
        self._armed_generation = generation
        self._emit(TrackingEventType.AUTO_CLOCKOUT_ARMED, seconds_remaining=self.grace_seconds)
        logger.info(
            f"[TRACKING] Worker {self.worker_id} left the work zone, "
            f"auto clock-out in {self.grace_seconds}s"
        )

    def _cancel_timer(self, message: str) -> None:
        # Also invalidates an expiry already sitting in the inbox
        if self._armed_generation is None:
            return
        self._armed_generation = None
        self.timer.cancel()
        self._emit(TrackingEventType.AUTO_CLOCKOUT_CANCELLED, message=message)
        logger.info(f"[TRACKING] Auto clock-out cancelled for worker {self.worker_id}: {message}")

    def _on_tick(self, seconds_remaining: float) -> None:
        self._emit(TrackingEventType.AUTO_CLOCKOUT_COUNTDOWN, seconds_remaining=seconds_remaining)

    async def _on_timer_expired(self, generation: int) -> None:
        if generation != self._armed_generation:
            return
        self._armed_generation = None

        shift_id = self.shift_id
        if shift_id is None:
            return
        location = self.last_location.to_payload() if self.last_location else None

        try:
            await asyncio.to_thread(self._auto_clock_out, shift_id, location)
        except (NotClockedIn, NotFound, Unauthorized) as e:
            # Someone else closed the shift first; it is closed either way
            logger.info(f"[TRACKING] Auto clock-out of shift {shift_id} skipped: {e.detail}")
        except SQLAlchemyError as e:
            logger.exception(f"[TRACKING] Auto clock-out of shift {shift_id} failed")
            self._emit(
                TrackingEventType.AUTO_CLOCKOUT_FAILED,
                shift_id=shift_id,
                message=str(e),
            )
            return
        else:
            self._emit(
                TrackingEventType.AUTO_CLOCKED_OUT,
                shift_id=shift_id,
                within=self.last_known_within,
                message=config.AUTO_CLOCKOUT_NOTES,
            )

        if self.shift_id == shift_id:
            self.shift_id = None

    def _auto_clock_out(self, shift_id: str, location: Optional[LocationPayload]) -> None:
        with Session(self._engine) as session:
            self._state_machine.clock_out(
                session,
                self.worker_id,
                shift_id,
                location,
                notes=config.AUTO_CLOCKOUT_NOTES,
                reason=ClockOutReason.AUTO_PERIMETER_EXIT,
            )


class SessionRegistry:
    """Owns every live tracking session, at most one per worker."""

    def __init__(
        self,
        engine=None,
        state_machine: Optional[ShiftStateMachine] = None,
        grace_seconds: float = config.AUTO_CLOCKOUT_GRACE_SECONDS,
        tick_seconds: float = config.AUTO_CLOCKOUT_TICK_SECONDS,
        low_accuracy_threshold_m: Optional[float] = config.LOW_ACCURACY_THRESHOLD_M,
        event_buffer_size: int = config.TRACKING_EVENT_BUFFER_SIZE,
        max_pending_samples: int = config.TRACKING_MAX_PENDING_SAMPLES,
        listener: Optional[Callable[[TrackingEvent], None]] = None,
    ):
        self.engine = engine if engine is not None else default_engine
        self.state_machine = state_machine or shift_state_machine
        self.grace_seconds = grace_seconds
        self.tick_seconds = tick_seconds
        self.low_accuracy_threshold_m = low_accuracy_threshold_m
        self.event_buffer_size = event_buffer_size
        self.max_pending_samples = max_pending_samples
        self.listener = listener

        self._sessions: Dict[str, TrackingSession] = {}
        self._by_worker: Dict[str, str] = {}
        self._zones: Optional[List[ZoneRead]] = None
        self._lock: Optional[asyncio.Lock] = None

    def _get_lock(self) -> asyncio.Lock:
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    # --- Zones snapshot ---

    def current_zones(self) -> List[ZoneRead]:
        return self._zones or []

    def set_zones(self, zones: Iterable) -> None:
        self._zones = [ZoneRead.model_validate(zone) for zone in zones]
        logger.info(f"[TRACKING] Zone snapshot updated ({len(self._zones)} active)")

    def _load_zones(self) -> List[ZoneRead]:
        with Session(self.engine) as session:
            return [ZoneRead.model_validate(z) for z in ZoneService.get_active_zones(session)]

    async def refresh_zones(self) -> None:
        self.set_zones(await asyncio.to_thread(self._load_zones))

    # --- Sessions ---

    def _load_active_shift_id(self, worker_id: str) -> Optional[str]:
        with Session(self.engine) as session:
            shift = self.state_machine.get_active_shift(session, worker_id)
            return shift.id if shift else None

    async def start_session(self, worker_id: str) -> TrackingSession:
        async with self._get_lock():
            if self._zones is None:
                await self.refresh_zones()

            previous_id = self._by_worker.get(worker_id)
            if previous_id is not None:
                await self._stop(previous_id)

            shift_id = await asyncio.to_thread(self._load_active_shift_id, worker_id)
            session = TrackingSession(
                worker_id,
                shift_id,
                zones_provider=self.current_zones,
                engine=self.engine,
                state_machine=self.state_machine,
                grace_seconds=self.grace_seconds,
                tick_seconds=self.tick_seconds,
                low_accuracy_threshold_m=self.low_accuracy_threshold_m,
                event_buffer_size=self.event_buffer_size,
                max_pending_samples=self.max_pending_samples,
                listener=self.listener,
            )
            self._sessions[session.session_id] = session
            self._by_worker[worker_id] = session.session_id
            session.start()
            return session

    def get_session(self, session_id: str) -> TrackingSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise NotFound("Tracking session not found")
        return session

    def get_worker_session(self, worker_id: str) -> Optional[TrackingSession]:
        session_id = self._by_worker.get(worker_id)
        return self._sessions.get(session_id) if session_id else None

    def _live_worker_session(self, worker_id: str) -> Optional[TrackingSession]:
        session = self.get_worker_session(worker_id)
        if session is None or not session.is_running:
            return None
        return session

    def stream_location(self, session_id: str, sample: LocationSample) -> None:
        self.get_session(session_id).submit(sample)

    def notify_shift_opened(self, worker_id: str, shift_id: str) -> None:
        session = self._live_worker_session(worker_id)
        if session is not None:
            session.shift_opened(shift_id)

    def notify_shift_closed(self, worker_id: str, shift_id: str) -> None:
        session = self._live_worker_session(worker_id)
        if session is not None:
            session.shift_closed(shift_id)

    async def _stop(self, session_id: str) -> None:
        session = self._sessions.pop(session_id, None)
        if session is None:
            raise NotFound("Tracking session not found")
        if self._by_worker.get(session.worker_id) == session_id:
            del self._by_worker[session.worker_id]
        await session.stop()

    async def stop_session(self, session_id: str) -> None:
        async with self._get_lock():
            await self._stop(session_id)

    async def shutdown(self) -> None:
        async with self._get_lock():
            for session_id in list(self._sessions):
                await self._stop(session_id)

    def __len__(self) -> int:
        return len(self._sessions)


# App-wide registry
tracking_registry = SessionRegistry()


def get_tracking_registry() -> SessionRegistry:
    return tracking_registry
