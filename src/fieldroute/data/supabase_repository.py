"""Supabase-backed depot and waypoint repository."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence

from supabase import Client

from ..errors import NotFoundError, ValidationError
from ..models.domain import Depot, Waypoint
from ..services.geospatial import normalize_time
from .repository import PlanningRepository, with_coordinates

logger = logging.getLogger(__name__)

GARAGES_TABLE = "fleet_garages"
TICKETS_TABLE = "main_tickets"
ESTIMATES_TABLE = "child_ticket_work_estimates"

_TICKET_COLUMNS = """
    id,
    ticket_code,
    site_id,
    main_sites!inner (id, name, latitude, longitude, address_detail),
    main_appointments{inner} (appointment_date, appointment_time_start, appointment_time_end, appointment_type),
    ref_ticket_work_types (code, name)
"""


def _first(value: Any) -> Optional[dict]:
    """Embedded relations come back as an object or a list depending on cardinality."""
    if isinstance(value, list):
        return value[0] if value else None
    return value if isinstance(value, dict) else None


def _clock(value: Optional[str], ticket_code: str) -> Optional[str]:
    if not value:
        return None
    try:
        return normalize_time(value)
    except ValidationError:
        logger.warning(f"Ignoring malformed appointment time '{value}' on ticket {ticket_code}")
        return None


def row_to_waypoint(row: dict, estimates: Dict[str, int]) -> Waypoint:
    site = _first(row.get("main_sites")) or {}
    appointment = _first(row.get("main_appointments")) or {}
    work_type = _first(row.get("ref_ticket_work_types")) or {}
    code = row.get("ticket_code") or row["id"]
    return Waypoint(
        id=row["id"],
        code=row.get("ticket_code"),
        site_id=site.get("id") or row.get("site_id"),
        site_name=site.get("name") or "Unknown site",
        latitude=site.get("latitude"),
        longitude=site.get("longitude"),
        address=site.get("address_detail"),
        appointment_date=appointment.get("appointment_date"),
        appointment_start=_clock(appointment.get("appointment_time_start"), code),
        appointment_end=_clock(appointment.get("appointment_time_end"), code),
        work_type_code=work_type.get("code"),
        work_type_name=work_type.get("name"),
        work_duration_minutes=int(estimates.get(row["id"]) or 0),
    )


class SupabaseRepository(PlanningRepository):
    def __init__(self, client: Client) -> None:
        self.client = client

    def get_depot(self, depot_id: str) -> Depot:
        result = (
            self.client.table(GARAGES_TABLE)
            .select("id, name, latitude, longitude")
            .eq("id", depot_id)
            .eq("is_active", True)
            .limit(1)
            .execute()
        )
        if not result.data:
            raise NotFoundError(f"Depot '{depot_id}' not found")
        row = result.data[0]
        return Depot(id=row["id"], name=row.get("name") or "", latitude=row.get("latitude"), longitude=row.get("longitude"))

    def _work_estimates(self, ticket_ids: Sequence[str]) -> Dict[str, int]:
        if not ticket_ids:
            return {}
        try:
            result = (
                self.client.table(ESTIMATES_TABLE)
                .select("ticket_id, estimated_minutes")
                .in_("ticket_id", list(ticket_ids))
                .execute()
            )
        except Exception as exc:
            logger.error(f"Failed to load work estimates, assuming zero minutes: {exc}")
            return {}
        return {row["ticket_id"]: row.get("estimated_minutes") or 0 for row in result.data or []}

    def _to_waypoints(self, rows: List[dict]) -> List[Waypoint]:
        if not rows:
            return []
        estimates = self._work_estimates([row["id"] for row in rows])
        waypoints = with_coordinates(row_to_waypoint(row, estimates) for row in rows)
        logger.info(f"Loaded {len(waypoints)} waypoints with coordinates from {len(rows)} tickets")
        return waypoints

    def get_waypoints_for_date(self, date: str) -> List[Waypoint]:
        result = (
            self.client.table(TICKETS_TABLE)
            .select(_TICKET_COLUMNS.format(inner="!inner"))
            .eq("main_appointments.appointment_date", date)
            .execute()
        )
        return self._to_waypoints(result.data or [])

    def get_waypoints_by_ids(self, waypoint_ids: Sequence[str]) -> List[Waypoint]:
        if not waypoint_ids:
            return []
        result = (
            self.client.table(TICKETS_TABLE)
            .select(_TICKET_COLUMNS.format(inner=""))
            .in_("id", list(dict.fromkeys(waypoint_ids)))
            .execute()
        )
        rows = {row["id"]: row for row in result.data or []}
        # keep the caller's order, it matters for fixed-order calculation
        return self._to_waypoints([rows[wid] for wid in dict.fromkeys(waypoint_ids) if wid in rows])
