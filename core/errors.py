"""
Typed errors for shift and tracking operations.

Every error is an HTTPException so routers can let them bubble up unchanged,
while services and background tasks can still catch them by type.
"""

from typing import Optional

from fastapi import HTTPException, status


class ShiftGuardError(HTTPException):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Request could not be processed."

    def __init__(self, detail: Optional[str] = None, headers: Optional[dict] = None):
        super().__init__(
            status_code=self.status_code,
            detail=detail or self.default_detail,
            headers=headers,
        )


class Unauthenticated(ShiftGuardError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_detail = "Could not validate credentials"

    def __init__(self, detail: Optional[str] = None):
        super().__init__(detail, headers={"WWW-Authenticate": "Bearer"})


class Unauthorized(ShiftGuardError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = "User doesn't have sufficient privileges for this action"


class AlreadyClockedIn(ShiftGuardError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Already clocked in"


class NotClockedIn(ShiftGuardError):
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Not currently clocked in"


class OutsidePerimeter(ShiftGuardError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = "Location is outside the allowed perimeter"


class NotFound(ShiftGuardError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = "Not found"


class LocationUnavailable(ShiftGuardError):
    status_code = 422
    default_detail = "Location required."


class TrackingBacklogFull(ShiftGuardError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_detail = "Too many pending location samples"
