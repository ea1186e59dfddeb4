from datetime import datetime
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, field_serializer
from sqlmodel import Field, Index, SQLModel

from utils.datetime_helpers import format_utc_datetime, utc_now


# Circular Work Zone Set By A Manager; Only The Latest Set Per Manager Is Active
class Zone(SQLModel, table=True):
    __tablename__ = "zone"

    __table_args__ = (
        Index("ix_zone_manager_id_is_active", "manager_id", "is_active"),
        Index("ix_zone_is_active", "is_active"),
    )

    id: str = Field(default_factory=lambda: uuid4().hex, primary_key=True)
    manager_id: str = Field(description="Manager who owns this zone")
    name: str = Field(description="Human-friendly zone name")
    center_lat: float = Field(description="Latitude of zone center")
    center_lng: float = Field(description="Longitude of zone center")
    radius_km: float = Field(description="Allowed clock-in radius in kilometers")
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


# Read model: detached copy used in responses and by live tracking sessions
class ZoneRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    manager_id: str
    name: str
    center_lat: float
    center_lng: float
    radius_km: float
    is_active: bool
    created_at: Optional[datetime] = None

    @field_serializer("created_at")
    def serialize_created_at(self, dt: Optional[datetime]) -> Optional[str]:
        return format_utc_datetime(dt)
