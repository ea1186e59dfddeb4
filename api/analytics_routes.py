import asyncio
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session

from core.deps import require_manager_role
from db.session import get_session
from services.analytics import AnalyticsService, ShiftAnalytics

router = APIRouter()


@router.get("/shifts", response_model=ShiftAnalytics)
async def get_shift_analytics(
    session: Annotated[Session, Depends(get_session)],
    manager: Annotated[dict, Depends(require_manager_role)],
    tz: Optional[str] = Query(default=None, description="IANA timezone for daily buckets"),
):
    """
    Hours today, 7-day average, live clocked-in count, daily clock-ins and
    per-worker hours for the trailing week.
    """
    return await asyncio.to_thread(AnalyticsService.get_shift_analytics, session, tz=tz)
