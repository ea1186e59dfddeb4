from datetime import datetime
from typing import Annotated, List, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, field_serializer

from core.deps import get_current_user
from core.errors import Unauthorized
from models.location import LocationSample
from services.tracking import SessionRegistry, TrackingEvent, TrackingSession, get_tracking_registry
from utils.datetime_helpers import format_utc_datetime

router = APIRouter()


class TrackingSessionResponse(BaseModel):
    session_id: str
    worker_id: str
    shift_id: Optional[str] = None
    within_zone: Optional[bool] = None
    auto_clockout_armed: bool
    seconds_remaining: float
    started_at: datetime

    @field_serializer("started_at")
    def serialize_started_at(self, dt: datetime) -> str:
        return format_utc_datetime(dt)

    @classmethod
    def from_session(cls, session: TrackingSession) -> "TrackingSessionResponse":
        return cls(
            session_id=session.session_id,
            worker_id=session.worker_id,
            shift_id=session.shift_id,
            within_zone=session.last_known_within,
            auto_clockout_armed=session.timer.is_armed,
            seconds_remaining=round(session.timer.seconds_remaining, 1),
            started_at=session.started_at,
        )


def _owned_session(registry: SessionRegistry, session_id: str, current_user: dict) -> TrackingSession:
    session = registry.get_session(session_id)
    if session.worker_id != current_user["uid"]:
        raise Unauthorized("Tracking session belongs to another worker")
    return session


@router.post("/sessions", response_model=TrackingSessionResponse, status_code=status.HTTP_201_CREATED)
async def start_tracking_session(
    current_user: Annotated[dict, Depends(get_current_user)],
    registry: Annotated[SessionRegistry, Depends(get_tracking_registry)],
):
    """Start live tracking for the caller; replaces any session they already have."""
    session = await registry.start_session(current_user["uid"])
    return TrackingSessionResponse.from_session(session)


@router.post("/sessions/{session_id}/locations", status_code=status.HTTP_202_ACCEPTED)
async def stream_location(
    session_id: str,
    sample: LocationSample,
    current_user: Annotated[dict, Depends(get_current_user)],
    registry: Annotated[SessionRegistry, Depends(get_tracking_registry)],
):
    """
    Queue one location sample; processing happens on the session task.
    429 while the session already holds too many unprocessed samples.
    """
    _owned_session(registry, session_id, current_user)
    registry.stream_location(session_id, sample)
    return {"status": "accepted"}


@router.get("/sessions/{session_id}", response_model=TrackingSessionResponse)
async def get_tracking_session(
    session_id: str,
    current_user: Annotated[dict, Depends(get_current_user)],
    registry: Annotated[SessionRegistry, Depends(get_tracking_registry)],
):
    return TrackingSessionResponse.from_session(_owned_session(registry, session_id, current_user))


@router.get("/sessions/{session_id}/events", response_model=List[TrackingEvent])
async def drain_tracking_events(
    session_id: str,
    current_user: Annotated[dict, Depends(get_current_user)],
    registry: Annotated[SessionRegistry, Depends(get_tracking_registry)],
):
    """Return and clear the events buffered since the last call."""
    return _owned_session(registry, session_id, current_user).drain_events()


@router.delete("/sessions/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def stop_tracking_session(
    session_id: str,
    current_user: Annotated[dict, Depends(get_current_user)],
    registry: Annotated[SessionRegistry, Depends(get_tracking_registry)],
):
    _owned_session(registry, session_id, current_user)
    await registry.stop_session(session_id)
