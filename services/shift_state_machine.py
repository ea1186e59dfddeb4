"""
Shift state machine: CLOCKED_OUT <-> CLOCKED_IN per worker.

Clock-in is gated by the active zones; clock-out is allowed from anywhere.
Every transition for a worker runs under that worker's lock, and the
clock-out flip is a conditional UPDATE, so when a manual clock-out and an
automatic one race, exactly one of them wins and the other gets NotClockedIn.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from core.errors import AlreadyClockedIn, NotClockedIn, NotFound, OutsidePerimeter, Unauthorized
from models.location import LocationPayload
from models.shift import ClockOutReason, Shift, ShiftStatus
from services.zone_service import ZoneService
from utils.datetime_helpers import utc_now
from utils.geofence import is_within, nearest_distance_meters

logger = logging.getLogger(__name__)


class _WorkerLock:
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = threading.Lock()
        self.users = 0


def _location_json(location) -> Optional[dict]:
    if location is None:
        return None
    return {"lat": location.lat, "lng": location.lng, "accuracy": location.accuracy}


class ShiftStateMachine:

    def __init__(self, zone_service: Optional[ZoneService] = None):
        self.zone_service = zone_service or ZoneService()
        self._locks_guard = threading.Lock()
        self._worker_locks: Dict[str, _WorkerLock] = {}

    @contextmanager
    def worker_lock(self, worker_id: str) -> Iterator[None]:
        """
        Hold the worker's transition lock.

        Entries are reference counted (holders plus waiters) and dropped once
        nobody uses them, so the table only has entries for busy workers.
        """
        with self._locks_guard:
            entry = self._worker_locks.get(worker_id)
            if entry is None:
                entry = self._worker_locks[worker_id] = _WorkerLock()
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._locks_guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._worker_locks[worker_id]

    # --- Queries ---

    def get_shift(self, session: Session, shift_id: str) -> Shift:
        shift = session.get(Shift, shift_id)
        if not shift:
            raise NotFound("Shift not found")
        return shift

    def get_active_shift(self, session: Session, worker_id: str) -> Optional[Shift]:
        return session.exec(
            select(Shift)
            .where(Shift.worker_id == worker_id)
            .where(Shift.status == ShiftStatus.CLOCKED_IN)
        ).first()

    def list_shifts(self, session: Session, worker_id: str) -> List[Shift]:
        return list(
            session.exec(
                select(Shift)
                .where(Shift.worker_id == worker_id)
                .order_by(Shift.created_at.desc())
            ).all()
        )

    def list_active_shifts(self, session: Session) -> List[Shift]:
        return list(
            session.exec(
                select(Shift)
                .where(Shift.status == ShiftStatus.CLOCKED_IN)
                .order_by(Shift.clock_in_time.desc())
            ).all()
        )

    # --- Transitions ---

    def clock_in(
        self,
        session: Session,
        worker_id: str,
        location: LocationPayload,
        notes: Optional[str] = None,
        worker_name: Optional[str] = None,
    ) -> Shift:
        with self.worker_lock(worker_id):

            # 1) Only one open shift per worker, regardless of location
            if self.get_active_shift(session, worker_id):
                raise AlreadyClockedIn()

            # 2) Must be inside at least one active zone
            zones = self.zone_service.get_active_zones(session)
            if not is_within(location, zones):
                distance = nearest_distance_meters(location, zones)
                logger.info(
                    f"[SHIFT] Worker {worker_id} rejected at ({location.lat},{location.lng}), "
                    f"{distance:.0f}m from nearest zone"
                )
                raise OutsidePerimeter()

            now = utc_now()
            shift = Shift(
                worker_id=worker_id,
                worker_name=worker_name,
                status=ShiftStatus.CLOCKED_IN,
                clock_in_time=now,
                clock_in_location=_location_json(location),
                clock_in_notes=notes,
                created_at=now,
                updated_at=now,
            )
            session.add(shift)
            try:
                session.commit()
            except IntegrityError:
                # Another process opened a shift between our check and insert
                session.rollback()
                raise AlreadyClockedIn()
            session.refresh(shift)

        logger.info(f"[SHIFT] Worker {worker_id} clocked in, shift {shift.id}")
        return shift

    def clock_out(
        self,
        session: Session,
        worker_id: str,
        shift_id: str,
        location: Optional[LocationPayload],
        notes: Optional[str] = None,
        reason: ClockOutReason = ClockOutReason.MANUAL,
    ) -> Shift:
        with self.worker_lock(worker_id):
            shift = self.get_shift(session, shift_id)
            if shift.worker_id != worker_id:
                raise Unauthorized("Unauthorized")
            if not shift.is_open:
                raise NotClockedIn()

            now = utc_now()
            result = session.exec(
                update(Shift)
                .where(Shift.id == shift_id)
                .where(Shift.status == ShiftStatus.CLOCKED_IN)
                .values(
                    status=ShiftStatus.CLOCKED_OUT,
                    clock_out_time=now,
                    clock_out_location=_location_json(location),
                    clock_out_notes=notes,
                    close_reason=reason,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                # Closed elsewhere after we read it
                session.rollback()
                raise NotClockedIn()
            session.commit()
            session.refresh(shift)

        logger.info(f"[SHIFT] Worker {worker_id} clocked out of shift {shift_id} ({reason.value})")
        return shift


# Shared instance; the per-worker locks only work if everyone uses the same one
shift_state_machine = ShiftStateMachine()
