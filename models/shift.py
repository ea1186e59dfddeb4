from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, field_serializer
from sqlalchemy import JSON, Column, text
from sqlmodel import Field, Index, SQLModel

from models.location import LocationPayload
from utils.datetime_helpers import format_utc_datetime, utc_now


# Enum Limiting Shift Status to Just Two Vals
class ShiftStatus(str, Enum):
    CLOCKED_IN = "CLOCKED_IN"
    CLOCKED_OUT = "CLOCKED_OUT"


# Why A Shift Was Closed
class ClockOutReason(str, Enum):
    MANUAL = "manual"
    AUTO_PERIMETER_EXIT = "auto-perimeter-exit"


OPEN_SHIFT_CONDITION = text("status = 'CLOCKED_IN'")


# Defines a Table "shift": one worker's clocked interval, open or closed
class Shift(SQLModel, table=True):
    __tablename__ = "shift"

    __table_args__ = (
        Index("ix_shift_worker_id", "worker_id"),
        Index("ix_shift_status", "status"),
        Index("ix_shift_clock_in_time", "clock_in_time"),
        Index("ix_shift_worker_id_clock_in_time", "worker_id", "clock_in_time"),
        # A worker can hold at most one open shift
        Index(
            "uq_shift_worker_open",
            "worker_id",
            unique=True,
            postgresql_where=OPEN_SHIFT_CONDITION,
            sqlite_where=OPEN_SHIFT_CONDITION,
        ),
    )

    id: str = Field(default_factory=lambda: uuid4().hex, primary_key=True)
    worker_id: str
    worker_name: Optional[str] = Field(default=None)
    status: ShiftStatus = Field(default=ShiftStatus.CLOCKED_IN)
    clock_in_time: Optional[datetime] = Field(default=None)
    clock_in_location: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    clock_in_notes: Optional[str] = Field(default=None)
    clock_out_time: Optional[datetime] = Field(default=None)
    clock_out_location: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    clock_out_notes: Optional[str] = Field(default=None)
    close_reason: Optional[ClockOutReason] = Field(default=None)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def is_open(self) -> bool:
        return self.status == ShiftStatus.CLOCKED_IN


# Response model for shifts
class ShiftRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    worker_id: str
    worker_name: Optional[str] = None
    status: ShiftStatus
    clock_in_time: Optional[datetime] = None
    clock_in_location: Optional[LocationPayload] = None
    clock_in_notes: Optional[str] = None
    clock_out_time: Optional[datetime] = None
    clock_out_location: Optional[LocationPayload] = None
    clock_out_notes: Optional[str] = None
    close_reason: Optional[ClockOutReason] = None

    @field_serializer("clock_in_time", "clock_out_time")
    def serialize_times(self, dt: Optional[datetime]) -> Optional[str]:
        """Ensure timestamps are formatted as UTC with Z suffix"""
        return format_utc_datetime(dt)
