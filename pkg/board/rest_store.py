"""
Project store over a managed backend's REST interface (PostgREST dialect).

Tables:
    projects          (id, user_id, name, status, value, priority, due_date, ...)
    project_statuses  (id, user_id, name, color, sort_order)

Default lanes are stored under backend codes (see status_map); this module
converts at the wire boundary so callers only ever see display names.

Row level security hides rows the caller may not touch. A PATCH that matches
no visible row therefore comes back as an empty list, which is reported as
PERMISSION_DENIED.
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional

import requests

from .errors import ErrorKind, StoreError, kind_for
from .schema import Lane, WorkItem
from .status_map import DEFAULT_LANES, status_from_db, status_to_db
from .store import LANE_FIELD, ProjectStore

logger = logging.getLogger(__name__)


class RestProjectStore(ProjectStore):
    """requests-based client for the projects / project_statuses tables."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        owner_id: str,
        access_token: Optional[str] = None,
        timeout: float = 10,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.owner_id = owner_id
        self.access_token = access_token or api_key
        self.timeout = timeout

    # ── transport ─────────────────────────────────────────────────────────

    def _headers(self) -> Dict[str, str]:
        return {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
            "Prefer": "return=representation",
        }

    def _request(self, method: str, table: str, params: Optional[dict] = None, body: Any = None) -> Any:
        """Send one request; raise StoreError on transport or backend failure."""
        url = f"{self.base_url}/rest/v1/{table}"
        try:
            r = requests.request(
                method,
                url,
                params=params,
                json=body,
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise StoreError(f"{method} {table} failed: {e}", ErrorKind.UNCLASSIFIED)

        if not r.ok:
            try:
                payload = r.json()
            except ValueError:
                payload = {}
            if not isinstance(payload, dict):
                payload = {}
            code = payload.get("code")
            message = payload.get("message") or r.text or r.reason
            raise StoreError(message, kind_for(r.status_code, code), code=code, status=r.status_code)

        if not r.content:
            return None
        return r.json()

    # ── lanes ─────────────────────────────────────────────────────────────

    def _row_to_lane(self, row: Dict[str, Any]) -> Lane:
        lane = Lane.from_dict(row)
        lane.name = status_from_db(lane.name)
        return lane

    def list_lanes(self) -> List[Lane]:
        rows = self._request("GET", "project_statuses", params={
            "select": "*",
            "user_id": f"eq.{self.owner_id}",
            "order": "sort_order.asc",
        })
        return [self._row_to_lane(r) for r in rows or []]

    def get_lane(self, lane_id: str) -> Optional[Lane]:
        rows = self._request("GET", "project_statuses", params={"select": "*", "id": f"eq.{lane_id}"})
        return self._row_to_lane(rows[0]) if rows else None

    def create_lane(self, name: str, color: str = "#6B7280") -> Lane:
        name = (name or "").strip()
        if not name:
            raise StoreError("Status name is required", ErrorKind.VALIDATION_REJECTED, code="23502")
        orders = [l.sort_order for l in self.list_lanes()]
        rows = self._request("POST", "project_statuses", body={
            "user_id": self.owner_id,
            "name": status_to_db(name),
            "color": color,
            "sort_order": max(orders, default=-1) + 1,
        })
        return self._row_to_lane(rows[0])

    def update_lane(self, lane_id: str, name: Optional[str] = None, color: Optional[str] = None) -> Lane:
        """Rename and/or recolor a lane, then move items off the old name."""
        lane = self.get_lane(lane_id)
        if lane is None:
            raise StoreError(f"Status {lane_id} not found", ErrorKind.UNCLASSIFIED, status=404)
        changes: Dict[str, Any] = {}
        if name is not None:
            if not name.strip():
                raise StoreError("Status name is required", ErrorKind.VALIDATION_REJECTED, code="23502")
            changes["name"] = status_to_db(name.strip())
        if color is not None:
            changes["color"] = color
        if not changes:
            return lane
        rows = self._request("PATCH", "project_statuses", params={"id": f"eq.{lane_id}"}, body=changes)
        updated = self._row_to_lane(rows[0]) if rows else lane
        if "name" in changes and updated.name != lane.name:
            try:
                self._request(
                    "PATCH",
                    "projects",
                    params={"user_id": f"eq.{self.owner_id}", "status": f"eq.{status_to_db(lane.name)}"},
                    body={"status": changes["name"]},
                )
            except StoreError:
                logger.error(f"Moving projects off {lane.name!r} failed; restoring status name")
                self._request(
                    "PATCH", "project_statuses",
                    params={"id": f"eq.{lane_id}"},
                    body={"name": status_to_db(lane.name)},
                )
                raise
        return updated

    def delete_lane(self, lane_id: str) -> None:
        lane = self.get_lane(lane_id)
        if lane is None:
            raise StoreError(f"Status {lane_id} not found", ErrorKind.UNCLASSIFIED, status=404)
        assigned = self._request("GET", "projects", params={
            "select": "id",
            "user_id": f"eq.{self.owner_id}",
            "status": f"eq.{status_to_db(lane.name)}",
        })
        if assigned:
            raise StoreError(
                f"Cannot delete status '{lane.name}': {len(assigned)} project(s) still assigned",
                ErrorKind.VALIDATION_REJECTED,
                code="23503",
            )
        self._request("DELETE", "project_statuses", params={"id": f"eq.{lane_id}"})

    def reorder_lanes(self, lane_ids: List[str]) -> List[Lane]:
        known = {l.id for l in self.list_lanes()}
        unknown = [lid for lid in lane_ids if lid not in known]
        if unknown:
            raise StoreError(f"Unknown status ids: {unknown}", ErrorKind.VALIDATION_REJECTED)
        for index, lane_id in enumerate(lane_ids):
            self._request("PATCH", "project_statuses", params={"id": f"eq.{lane_id}"},
                          body={"sort_order": index})
        return self.list_lanes()

    def seed_default_lanes(self) -> List[Lane]:
        lanes = self.list_lanes()
        if lanes:
            return lanes
        self._request("POST", "project_statuses", body=[
            {"user_id": self.owner_id, "name": status_to_db(name), "color": color, "sort_order": i}
            for i, (name, color) in enumerate(DEFAULT_LANES)
        ])
        return self.list_lanes()

    # ── projects ──────────────────────────────────────────────────────────

    def _row_to_item(self, row: Dict[str, Any]) -> WorkItem:
        item = WorkItem.from_dict(row)
        item.lane_name = status_from_db(item.lane_name)
        return item

    def create_record(
        self,
        name: str,
        lane: Optional[str] = None,
        value: float = 0,
        priority: str = "medium",
        due_date: Optional[str] = None,
        description: str = "",
        client_id: str = "",
    ) -> WorkItem:
        if not lane:
            lanes = self.list_lanes()
            if not lanes:
                raise StoreError("No statuses configured", ErrorKind.VALIDATION_REJECTED, code="23503")
            lane = lanes[0].name
        rows = self._request("POST", "projects", body={
            "user_id": self.owner_id,
            "name": name,
            "status": status_to_db(lane),
            "value": value,
            "priority": priority,
            "due_date": due_date,
            "description": description,
            "client_id": client_id or None,
        })
        return self._row_to_item(rows[0])

    def list_records(self) -> List[WorkItem]:
        rows = self._request("GET", "projects", params={
            "select": "*",
            "user_id": f"eq.{self.owner_id}",
            "order": "created_at.asc",
        })
        return [self._row_to_item(r) for r in rows or []]

    def set_record_lane(self, record_id: str, field: str, value: str) -> None:
        if field != LANE_FIELD:
            raise StoreError(f"Field '{field}' cannot be updated", ErrorKind.VALIDATION_REJECTED)
        rows = self._request(
            "PATCH", "projects",
            params={"id": f"eq.{record_id}"},
            body={"status": status_to_db(value)},
        )
        if not rows:
            raise StoreError(
                f"Project {record_id} not found or not permitted",
                ErrorKind.PERMISSION_DENIED,
                code="42501",
            )

    # ── async contract ────────────────────────────────────────────────────

    async def update_record_field(self, record_id: str, field: str, value: str) -> None:
        await asyncio.to_thread(self.set_record_lane, record_id, field, value)

    async def fetch_all_records(self) -> List[WorkItem]:
        return await asyncio.to_thread(self.list_records)

    async def fetch_lanes(self) -> List[Lane]:
        return await asyncio.to_thread(self.list_lanes)
