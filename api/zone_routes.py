import asyncio
from typing import Annotated, List

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlmodel import Session

from core.deps import get_current_user, require_manager_role
from db.session import get_session
from models.zone import Zone, ZoneRead
from services.tracking import SessionRegistry, get_tracking_registry
from services.zone_service import ZoneService

router = APIRouter()


# Create model: Data needed when saving a NEW zone via POST
class ZoneCreate(BaseModel):
    name: str = Field(..., min_length=1)
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    radius_km: float = Field(gt=0)  # Ensures radius is positive


def _save_zone(session: Session, manager_id: str, zone_in: ZoneCreate) -> tuple[Zone, List[Zone]]:
    zone = ZoneService.set_zone(
        session,
        manager_id,
        zone_in.name,
        zone_in.latitude,
        zone_in.longitude,
        zone_in.radius_km,
    )
    return zone, ZoneService.get_active_zones(session)


@router.post("", response_model=ZoneRead, status_code=status.HTTP_201_CREATED)
async def set_zone(
    zone_in: ZoneCreate,
    session: Annotated[Session, Depends(get_session)],
    manager: Annotated[dict, Depends(require_manager_role)],
    registry: Annotated[SessionRegistry, Depends(get_tracking_registry)],
):
    """
    Save a work zone. The manager's previous zones are deactivated.
    """
    zone, active_zones = await asyncio.to_thread(_save_zone, session, manager["uid"], zone_in)

    # Live sessions evaluate against the new zone set from their next sample
    registry.set_zones(active_zones)
    return zone


@router.get("/active", response_model=List[ZoneRead])
async def get_active_zones(
    session: Annotated[Session, Depends(get_session)],
    current_user: Annotated[dict, Depends(get_current_user)],
):
    return await asyncio.to_thread(ZoneService.get_active_zones, session)
