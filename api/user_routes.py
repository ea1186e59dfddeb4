import asyncio
from typing import Annotated, List, Literal

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlmodel import Session

from core.deps import get_current_user, require_manager_role, update_user_role
from db.session import get_session
from models.shift import ShiftRead
from models.zone import ZoneRead
from services.shift_state_machine import shift_state_machine
from services.zone_service import ZoneService

router = APIRouter()


class UserRead(BaseModel):
    uid: str
    name: str
    email: str
    role: str


# The caller's profile with their shifts and the zones they have set
class UserProfile(UserRead):
    shifts: List[ShiftRead] = []
    zones: List[ZoneRead] = []


class RoleUpdate(BaseModel):
    role: Literal["MANAGER", "CARE_WORKER"]


def _load_profile(session: Session, user: dict) -> UserProfile:
    shifts = shift_state_machine.list_shifts(session, user["uid"])
    zones = ZoneService.get_manager_zones(session, user["uid"])
    return UserProfile(
        **user,
        shifts=[ShiftRead.model_validate(shift) for shift in shifts],
        zones=[ZoneRead.model_validate(zone) for zone in zones],
    )


@router.get("/me", response_model=UserProfile)
async def get_me(
    session: Annotated[Session, Depends(get_session)],
    current_user: Annotated[dict, Depends(get_current_user)],
):
    return await asyncio.to_thread(_load_profile, session, current_user)


@router.put("/{user_id}/role", response_model=UserRead)
async def set_user_role(
    user_id: str,
    role_in: RoleUpdate,
    manager: Annotated[dict, Depends(require_manager_role)],
):
    """
    Change a user's role. The profile lives in Firestore at users/{user_id};
    404 if it doesn't exist.
    """
    return await asyncio.to_thread(update_user_role, user_id, role_in.role)
