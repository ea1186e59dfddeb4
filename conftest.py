import os

# Must be set before db.session is imported anywhere
os.environ.setdefault("DATABASE_URL", "sqlite://")

from types import SimpleNamespace

import pytest
from sqlmodel import Session, SQLModel

import models  # noqa: F401  (registers tables)
from db.session import build_engine
from services.shift_state_machine import ShiftStateMachine
from services.zone_service import ZoneService

# Main Hospital
ZONE_LAT = 37.7749
ZONE_LNG = -122.4194
ZONE_RADIUS_KM = 0.5

INSIDE = {"lat": 37.7750, "lng": -122.4195, "accuracy": 10.0}
# Roughly 1.1 km north of the zone center
OUTSIDE = {"lat": 37.7849, "lng": -122.4194, "accuracy": 10.0}


def zone_namespace(lat=ZONE_LAT, lng=ZONE_LNG, radius_km=ZONE_RADIUS_KM, is_active=True):
    """Lightweight stand-in for a zone row, for the pure geofence logic."""
    return SimpleNamespace(center_lat=lat, center_lng=lng, radius_km=radius_km, is_active=is_active)


def offset_north(meters, lat=ZONE_LAT, lng=ZONE_LNG, accuracy=10.0):
    """A location `meters` due north of the zone center (1 degree of latitude is ~111.195 km)."""
    return {"lat": lat + meters / 111_195.0, "lng": lng, "accuracy": accuracy}


class FakeUserDocument:
    def __init__(self, profiles, uid):
        self.profiles = profiles
        self.uid = uid

    def get(self):
        profile = self.profiles.get(self.uid)
        return SimpleNamespace(exists=profile is not None, to_dict=lambda: dict(profile or {}))

    def update(self, fields):
        if self.uid not in self.profiles:
            raise KeyError(self.uid)
        self.profiles[self.uid].update(fields)


class FakeFirestore:
    """In-memory `users` collection with the document calls the identity layer makes."""

    def __init__(self, profiles):
        self.profiles = profiles

    def collection(self, name):
        assert name == "users"
        return self

    def document(self, uid):
        return FakeUserDocument(self.profiles, uid)


@pytest.fixture
def engine():
    engine = build_engine("sqlite://")
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def file_engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'shifts.db'}")
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def state_machine():
    return ShiftStateMachine()


@pytest.fixture
def zone(session):
    return ZoneService.set_zone(session, "manager-1", "Main Hospital", ZONE_LAT, ZONE_LNG, ZONE_RADIUS_KM)
