"""
Shift analytics for the manager dashboard.

`compute_shift_analytics` is a pure function over shift records, so it can be
called on any list of shifts; `AnalyticsService` loads the records it needs.
Only completed shifts (both timestamps set) count toward hours.
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel
from sqlalchemy import or_
from sqlmodel import Session, select

from core.errors import ShiftGuardError
from models.shift import Shift, ShiftStatus
from utils.datetime_helpers import utc_now
from utils.timezone_helpers import (
    ensure_timezone_aware,
    from_utc_to_local,
    get_default_timezone,
    local_end_of_day,
    local_start_of_day,
    validate_timezone,
)

logger = logging.getLogger(__name__)

TRAILING_DAYS = 7


class DailyClockIn(BaseModel):
    date: str  # YYYY-MM-DD
    count: int


class WorkerWeeklyHours(BaseModel):
    worker_id: str
    staff_name: str
    hours: float


class ShiftAnalytics(BaseModel):
    total_hours_today: float = 0.0
    average_hours_per_day: float = 0.0
    total_staff_clocked_in: int = 0
    daily_clock_ins: List[DailyClockIn] = []
    weekly_hours: List[WorkerWeeklyHours] = []


def shift_hours(clock_in: datetime, clock_out: datetime) -> float:
    return (clock_out - clock_in).total_seconds() / 3600


def compute_shift_analytics(
    shifts: Iterable[Shift],
    now: Optional[datetime] = None,
    tz: str = "UTC",
) -> ShiftAnalytics:
    now = ensure_timezone_aware(now) if now else utc_now()
    local_today = from_utc_to_local(now, tz).date()
    today_start = local_start_of_day(local_today, tz)
    today_end = local_end_of_day(local_today, tz)
    window_start = now - timedelta(days=TRAILING_DAYS)

    total_hours_today = 0.0
    window_hours = 0.0
    total_staff_clocked_in = 0
    clock_ins: List[datetime] = []
    # worker_id -> {"name": ..., "hours": ...}
    staff_hours: Dict[str, dict] = {}

    for shift in shifts:
        if shift.is_open:
            total_staff_clocked_in += 1

        if shift.clock_in_time is None:
            continue
        clock_in = ensure_timezone_aware(shift.clock_in_time)
        clock_ins.append(clock_in)

        # Open shifts count as clock-ins but not toward hours
        if shift.clock_out_time is None:
            continue
        hours = shift_hours(clock_in, ensure_timezone_aware(shift.clock_out_time))

        if today_start <= clock_in <= today_end:
            total_hours_today += hours

        if clock_in >= window_start:
            window_hours += hours
            entry = staff_hours.setdefault(
                shift.worker_id,
                {"name": shift.worker_name or shift.worker_id, "hours": 0.0},
            )
            entry["hours"] += hours

    daily_clock_ins = []
    for offset in range(TRAILING_DAYS - 1, -1, -1):
        day = local_today - timedelta(days=offset)
        day_start = local_start_of_day(day, tz)
        day_end = local_end_of_day(day, tz)
        daily_clock_ins.append(
            DailyClockIn(
                date=day.isoformat(),
                count=sum(1 for t in clock_ins if day_start <= t <= day_end),
            )
        )

    weekly_hours = [
        WorkerWeeklyHours(worker_id=worker_id, staff_name=entry["name"], hours=round(entry["hours"], 2))
        for worker_id, entry in sorted(staff_hours.items(), key=lambda item: item[1]["name"])
    ]

    return ShiftAnalytics(
        total_hours_today=round(total_hours_today, 2),
        # Flat divisor: quiet days pull the average down
        average_hours_per_day=round(window_hours / TRAILING_DAYS, 2),
        total_staff_clocked_in=total_staff_clocked_in,
        daily_clock_ins=daily_clock_ins,
        weekly_hours=weekly_hours,
    )


class AnalyticsService:

    @staticmethod
    def load_shifts(session: Session, since: datetime) -> List[Shift]:
        """Shifts clocked in since `since`, plus every shift still open."""
        return list(
            session.exec(
                select(Shift).where(
                    or_(
                        Shift.clock_in_time >= since,
                        Shift.status == ShiftStatus.CLOCKED_IN,
                    )
                )
            ).all()
        )

    @staticmethod
    def get_shift_analytics(
        session: Session,
        now: Optional[datetime] = None,
        tz: Optional[str] = None,
    ) -> ShiftAnalytics:
        tz = tz or get_default_timezone()
        if not validate_timezone(tz):
            raise ShiftGuardError(f"Invalid timezone '{tz}'")
        now = ensure_timezone_aware(now) if now else utc_now()

        # Earliest instant any metric looks at
        first_day = from_utc_to_local(now, tz).date() - timedelta(days=TRAILING_DAYS - 1)
        since = min(now - timedelta(days=TRAILING_DAYS), local_start_of_day(first_day, tz))

        shifts = AnalyticsService.load_shifts(session, since)
        logger.debug(f"[ANALYTICS] Computing shift analytics over {len(shifts)} shifts")
        return compute_shift_analytics(shifts, now=now, tz=tz)
