# Insert Sample Zone And Shifts For Local Testing
from datetime import timedelta

from sqlmodel import Session, SQLModel, select

from db.session import engine
from models.shift import ClockOutReason, Shift, ShiftStatus
from models.zone import Zone
from utils.datetime_helpers import utc_now

SEED_MANAGER_ID = "manager-sarah-johnson"
SEED_WORKERS = {
    "worker-mike-chen": "Mike Chen",
    "worker-emily-rodriguez": "Emily Rodriguez",
}

# Main Hospital, San Francisco
ZONE_LAT = 37.7749
ZONE_LNG = -122.4194
ZONE_RADIUS_KM = 0.5


def _at(day_offset: int, hour: int):
    day = utc_now() + timedelta(days=day_offset)
    return day.replace(hour=hour, minute=0, second=0, microsecond=0)


def _location():
    return {"lat": ZONE_LAT, "lng": ZONE_LNG, "accuracy": None}


def seed_zone(session: Session) -> None:
    existing = session.exec(
        select(Zone).where(Zone.manager_id == SEED_MANAGER_ID)
    ).first()

    if existing:
        print("Main Hospital zone already exists")
        return

    session.add(
        Zone(
            manager_id=SEED_MANAGER_ID,
            name="Main Hospital",
            center_lat=ZONE_LAT,
            center_lng=ZONE_LNG,
            radius_km=ZONE_RADIUS_KM,
        )
    )
    print("Added Main Hospital zone")


def seed_shifts(session: Session) -> None:
    if session.exec(select(Shift).where(Shift.worker_id.in_(list(SEED_WORKERS)))).first():
        print("Sample shifts already exist")
        return

    mike, emily = list(SEED_WORKERS)

    # Completed shift yesterday, 8am - 4pm
    session.add(
        Shift(
            worker_id=mike,
            worker_name=SEED_WORKERS[mike],
            status=ShiftStatus.CLOCKED_OUT,
            clock_in_time=_at(-1, 8),
            clock_in_location=_location(),
            clock_in_notes="Morning shift",
            clock_out_time=_at(-1, 16),
            clock_out_location=_location(),
            clock_out_notes="Shift completed",
            close_reason=ClockOutReason.MANUAL,
        )
    )

    # Completed shift two days ago, 12pm - 8pm
    session.add(
        Shift(
            worker_id=emily,
            worker_name=SEED_WORKERS[emily],
            status=ShiftStatus.CLOCKED_OUT,
            clock_in_time=_at(-2, 12),
            clock_in_location=_location(),
            clock_in_notes="Afternoon shift",
            clock_out_time=_at(-2, 20),
            clock_out_location=_location(),
            close_reason=ClockOutReason.MANUAL,
        )
    )

    # Open shift that started four hours ago
    session.add(
        Shift(
            worker_id=mike,
            worker_name=SEED_WORKERS[mike],
            status=ShiftStatus.CLOCKED_IN,
            clock_in_time=utc_now() - timedelta(hours=4),
            clock_in_location=_location(),
            clock_in_notes="Current shift",
        )
    )
    print("Added 3 sample shifts")


def seed():
    SQLModel.metadata.create_all(engine)
    with Session(engine) as session:
        seed_zone(session)
        seed_shifts(session)
        session.commit()


if __name__ == "__main__":
    seed()
