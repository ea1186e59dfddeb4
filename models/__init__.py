from .location import LocationPayload, LocationSample
from .shift import ClockOutReason, Shift, ShiftRead, ShiftStatus
from .zone import Zone, ZoneRead
