import logging
from typing import List

from sqlalchemy import update
from sqlmodel import Session, select

from models.zone import Zone
from utils.datetime_helpers import utc_now

logger = logging.getLogger(__name__)


class ZoneService:

    @staticmethod
    def set_zone(
        session: Session,
        manager_id: str,
        name: str,
        latitude: float,
        longitude: float,
        radius_km: float,
    ) -> Zone:
        """
        Save a new active zone for a manager.

        The manager's previously active zones are deactivated in the same
        commit, so each manager has exactly one active zone set afterwards.
        """
        now = utc_now()

        # Deactivate existing zones for this manager
        session.exec(
            update(Zone)
            .where(Zone.manager_id == manager_id)
            .where(Zone.is_active == True)  # noqa: E712
            .values(is_active=False, updated_at=now)
        )

        zone = Zone(
            manager_id=manager_id,
            name=name,
            center_lat=latitude,
            center_lng=longitude,
            radius_km=radius_km,
            is_active=True,
            created_at=now,
            updated_at=now,
        )
        session.add(zone)
        session.commit()
        session.refresh(zone)

        logger.info(
            f"[ZONE] Manager {manager_id} set zone {zone.id} '{name}' "
            f"({latitude}, {longitude}) r={radius_km}km"
        )
        return zone

    @staticmethod
    def get_active_zones(session: Session) -> List[Zone]:
        return list(
            session.exec(
                select(Zone)
                .where(Zone.is_active == True)  # noqa: E712
                .order_by(Zone.created_at.desc())
            ).all()
        )

    @staticmethod
    def get_manager_zones(session: Session, manager_id: str) -> List[Zone]:
        """Every zone the manager has saved, newest first, including deactivated ones."""
        return list(
            session.exec(
                select(Zone)
                .where(Zone.manager_id == manager_id)
                .order_by(Zone.created_at.desc())
            ).all()
        )
