import asyncio
from typing import Annotated, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlmodel import Session

from core.deps import get_current_user, is_manager, require_manager_role
from core.errors import LocationUnavailable, Unauthorized
from db.session import get_session
from models.location import LocationPayload
from models.shift import ShiftRead
from services.shift_state_machine import shift_state_machine
from services.tracking import SessionRegistry, get_tracking_registry

router = APIRouter()


# --- Pydantic Models for Requests ---

class ClockInRequest(BaseModel):
    location: Optional[LocationPayload] = None
    notes: Optional[str] = Field(default=None, max_length=1000)


class ClockOutRequest(BaseModel):
    shift_id: str = Field(..., min_length=1)
    location: Optional[LocationPayload] = None
    notes: Optional[str] = Field(default=None, max_length=1000)


# --- API Endpoints ---
# The state machine blocks on the worker lock and the database, so it runs
# in a worker thread. Registry notifications stay on the event loop.

@router.post("/clock-in", response_model=ShiftRead)
async def clock_in(
    payload: ClockInRequest,
    session: Annotated[Session, Depends(get_session)],
    current_user: Annotated[dict, Depends(get_current_user)],
    registry: Annotated[SessionRegistry, Depends(get_tracking_registry)],
):
    """
    Open a shift for the current worker.

    Fails with 409 if the worker already has an open shift and with 400 if
    the location is outside every active work zone.
    """
    if payload.location is None:
        raise LocationUnavailable("Location required to clock in.")

    shift = await asyncio.to_thread(
        shift_state_machine.clock_in,
        session,
        current_user["uid"],
        payload.location,
        notes=payload.notes,
        worker_name=current_user.get("name") or None,
    )

    # Bind the shift to the worker's live tracking session, if any
    registry.notify_shift_opened(shift.worker_id, shift.id)
    return shift


@router.post("/clock-out", response_model=ShiftRead)
async def clock_out(
    payload: ClockOutRequest,
    session: Annotated[Session, Depends(get_session)],
    current_user: Annotated[dict, Depends(get_current_user)],
    registry: Annotated[SessionRegistry, Depends(get_tracking_registry)],
):
    """Close one of the current worker's shifts. No location check on clock-out."""
    if payload.location is None:
        raise LocationUnavailable("Location required to clock out.")

    shift = await asyncio.to_thread(
        shift_state_machine.clock_out,
        session,
        current_user["uid"],
        payload.shift_id,
        payload.location,
        notes=payload.notes,
    )

    # Cancels a pending auto clock-out for this shift
    registry.notify_shift_closed(shift.worker_id, shift.id)
    return shift


@router.get("", response_model=List[ShiftRead])
async def list_shifts(
    session: Annotated[Session, Depends(get_session)],
    current_user: Annotated[dict, Depends(get_current_user)],
    user_id: Optional[str] = Query(default=None, description="Worker to list; defaults to the caller"),
):
    """Workers can only view their own shifts; managers can view anyone's."""
    target_user_id = user_id or current_user["uid"]
    if target_user_id != current_user["uid"] and not is_manager(current_user):
        raise Unauthorized("Unauthorized")
    return await asyncio.to_thread(shift_state_machine.list_shifts, session, target_user_id)


@router.get("/me/current", response_model=Optional[ShiftRead])
async def get_my_current_shift(
    session: Annotated[Session, Depends(get_session)],
    current_user: Annotated[dict, Depends(get_current_user)],
):
    return await asyncio.to_thread(shift_state_machine.get_active_shift, session, current_user["uid"])


@router.get("/active", response_model=List[ShiftRead])
async def list_active_shifts(
    session: Annotated[Session, Depends(get_session)],
    manager: Annotated[dict, Depends(require_manager_role)],
):
    return await asyncio.to_thread(shift_state_machine.list_active_shifts, session)
