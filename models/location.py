from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_serializer

from utils.datetime_helpers import format_utc_datetime, utc_now


# Position Stored On A Shift At Clock In / Clock Out
class LocationPayload(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)
    accuracy: Optional[float] = Field(default=None, ge=0, description="Reported accuracy in meters")


# One Reading From A Worker's Live Location Stream (never persisted)
class LocationSample(LocationPayload):
    timestamp: datetime = Field(default_factory=utc_now)

    def to_payload(self) -> LocationPayload:
        return LocationPayload(lat=self.lat, lng=self.lng, accuracy=self.accuracy)

    @field_serializer("timestamp")
    def serialize_timestamp(self, dt: datetime) -> str:
        """Ensure timestamp is formatted as UTC with Z suffix"""
        return format_utc_datetime(dt)
