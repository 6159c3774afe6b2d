"""
Project store backends.

ProjectStore is the contract the reconciler relies on:
    await update_record_field(record_id, "lane", lane_name)
    await fetch_all_records() -> List[WorkItem]
Both raise StoreError on failure.

SqliteProjectStore keeps projects and their statuses (lanes) in SQLite,
scoped per owner. The (owner_id, status) -> project_statuses(owner_id, name)
foreign key rejects unknown lane names, cascades lane renames onto items,
and blocks deleting a lane that still has items.
"""
import asyncio
import logging
import sqlite3
import uuid
from pathlib import Path
from typing import List, Optional, Dict, Any

from .errors import ErrorKind, StoreError
from .schema import Lane, WorkItem, utc_now
from .status_map import DEFAULT_LANES

logger = logging.getLogger(__name__)

LANE_FIELD = "lane"


def _connect(db_path: str) -> sqlite3.Connection:
    """Open a connection with FK enforcement and WAL mode."""
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    conn.execute("PRAGMA journal_mode = WAL")
    return conn


def _translate(exc: sqlite3.Error, action: str) -> StoreError:
    """Map a sqlite3 error onto the store error taxonomy."""
    if isinstance(exc, sqlite3.IntegrityError):
        return StoreError(f"{action} rejected: {exc}", ErrorKind.VALIDATION_REJECTED, code="23503")
    return StoreError(f"{action} failed: {exc}", ErrorKind.UNCLASSIFIED)


class ProjectStore:
    """Persistence contract used by the reconciler."""

    async def update_record_field(self, record_id: str, field: str, value: str) -> None:
        raise NotImplementedError

    async def fetch_all_records(self) -> List[WorkItem]:
        raise NotImplementedError

    async def fetch_lanes(self) -> List[Lane]:
        raise NotImplementedError


class SqliteProjectStore(ProjectStore):
    """SQLite-backed project store for one owner (tenant)."""

    def __init__(self, db_path: str = None, owner_id: str = "local"):
        """Initialize store and create tables if needed."""
        if db_path is None:
            db_path = str(Path.home() / ".local" / "share" / "projectboard" / "board.db")
        self.db_path = db_path
        self.owner_id = owner_id
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _init_schema(self):
        """Create tables if they don't exist."""
        try:
            with _connect(self.db_path) as conn:
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS project_statuses (
                        id TEXT PRIMARY KEY,
                        owner_id TEXT NOT NULL,
                        name TEXT NOT NULL,
                        color TEXT DEFAULT '#6B7280',
                        sort_order INTEGER NOT NULL DEFAULT 0,
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL,
                        UNIQUE (owner_id, name)
                    )
                """)
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS projects (
                        id TEXT PRIMARY KEY,
                        owner_id TEXT NOT NULL,
                        name TEXT NOT NULL,
                        description TEXT DEFAULT '',
                        value REAL DEFAULT 0,
                        priority TEXT DEFAULT 'medium',
                        due_date TEXT,
                        progress INTEGER DEFAULT 0,
                        client_id TEXT DEFAULT '',
                        status TEXT NOT NULL,
                        created_at TEXT NOT NULL,
                        updated_at TEXT NOT NULL,
                        FOREIGN KEY (owner_id, status)
                            REFERENCES project_statuses(owner_id, name)
                            ON UPDATE CASCADE ON DELETE RESTRICT
                    )
                """)
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS lane_history (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        record_id TEXT NOT NULL,
                        from_lane TEXT,
                        to_lane TEXT NOT NULL,
                        owner_id TEXT NOT NULL,
                        timestamp TEXT NOT NULL,
                        FOREIGN KEY (record_id) REFERENCES projects(id) ON DELETE CASCADE
                    )
                """)
                conn.execute("CREATE INDEX IF NOT EXISTS idx_projects_owner ON projects(owner_id, status)")
                conn.execute("CREATE INDEX IF NOT EXISTS idx_statuses_owner ON project_statuses(owner_id, sort_order)")
                conn.execute("CREATE INDEX IF NOT EXISTS idx_history_record ON lane_history(record_id)")
                conn.commit()
        except sqlite3.Error as e:
            raise _translate(e, "Creating schema")

    # ── lanes ─────────────────────────────────────────────────────────────

    def list_lanes(self) -> List[Lane]:
        """This owner's lanes, by sort order."""
        try:
            with _connect(self.db_path) as conn:
                rows = conn.execute(
                    "SELECT * FROM project_statuses WHERE owner_id = ? ORDER BY sort_order ASC",
                    (self.owner_id,)
                ).fetchall()
        except sqlite3.Error as e:
            raise _translate(e, "Listing statuses")
        return [Lane.from_dict(dict(r)) for r in rows]

    def get_lane(self, lane_id: str) -> Optional[Lane]:
        try:
            with _connect(self.db_path) as conn:
                row = conn.execute(
                    "SELECT * FROM project_statuses WHERE id = ? AND owner_id = ?",
                    (lane_id, self.owner_id)
                ).fetchone()
        except sqlite3.Error as e:
            raise _translate(e, f"Reading status {lane_id}")
        return Lane.from_dict(dict(row)) if row else None

    def create_lane(self, name: str, color: str = "#6B7280") -> Lane:
        """Append a lane after the current last one."""
        name = (name or "").strip()
        if not name:
            raise StoreError("Status name is required", ErrorKind.VALIDATION_REJECTED, code="23502")
        now = utc_now()
        lane_id = str(uuid.uuid4())
        try:
            with _connect(self.db_path) as conn:
                max_order = conn.execute(
                    "SELECT MAX(sort_order) FROM project_statuses WHERE owner_id = ?",
                    (self.owner_id,)
                ).fetchone()[0]
                sort_order = 0 if max_order is None else max_order + 1
                conn.execute(
                    "INSERT INTO project_statuses (id, owner_id, name, color, sort_order, created_at, updated_at) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?)",
                    (lane_id, self.owner_id, name, color, sort_order, now, now)
                )
                conn.commit()
        except sqlite3.Error as e:
            raise _translate(e, f"Creating status '{name}'")
        logger.info(f"Created status {name!r} (order {sort_order})")
        return Lane(id=lane_id, name=name, color=color, sort_order=sort_order, owner_id=self.owner_id)

    def update_lane(self, lane_id: str, name: Optional[str] = None, color: Optional[str] = None) -> Lane:
        """Rename and/or recolor a lane. Items follow a rename."""
        lane = self.get_lane(lane_id)
        if lane is None:
            raise StoreError(f"Status {lane_id} not found", ErrorKind.UNCLASSIFIED, status=404)
        if name is not None:
            name = name.strip()
            if not name:
                raise StoreError("Status name is required", ErrorKind.VALIDATION_REJECTED, code="23502")
            lane.name = name
        if color is not None:
            lane.color = color
        try:
            with _connect(self.db_path) as conn:
                conn.execute(
                    "UPDATE project_statuses SET name = ?, color = ?, updated_at = ? WHERE id = ?",
                    (lane.name, lane.color, utc_now(), lane_id)
                )
                conn.commit()
        except sqlite3.Error as e:
            raise _translate(e, f"Updating status {lane_id}")
        return lane

    def delete_lane(self, lane_id: str) -> None:
        """Delete a lane. Rejected while any project is still assigned to it."""
        lane = self.get_lane(lane_id)
        if lane is None:
            raise StoreError(f"Status {lane_id} not found", ErrorKind.UNCLASSIFIED, status=404)
        try:
            with _connect(self.db_path) as conn:
                count = conn.execute(
                    "SELECT COUNT(*) FROM projects WHERE owner_id = ? AND status = ?",
                    (self.owner_id, lane.name)
                ).fetchone()[0]
                if count:
                    raise StoreError(
                        f"Cannot delete status '{lane.name}': {count} project(s) still assigned",
                        ErrorKind.VALIDATION_REJECTED,
                        code="23503",
                    )
                conn.execute("DELETE FROM project_statuses WHERE id = ?", (lane_id,))
                conn.commit()
        except sqlite3.Error as e:
            raise _translate(e, f"Deleting status '{lane.name}'")
        logger.info(f"Deleted status {lane.name!r}")

    def reorder_lanes(self, lane_ids: List[str]) -> List[Lane]:
        """Rewrite sort_order to 0..n-1 following lane_ids."""
        known = {l.id for l in self.list_lanes()}
        unknown = [lid for lid in lane_ids if lid not in known]
        if unknown:
            raise StoreError(f"Unknown status ids: {unknown}", ErrorKind.VALIDATION_REJECTED)
        try:
            with _connect(self.db_path) as conn:
                now = utc_now()
                for index, lane_id in enumerate(lane_ids):
                    conn.execute(
                        "UPDATE project_statuses SET sort_order = ?, updated_at = ? WHERE id = ?",
                        (index, now, lane_id)
                    )
                conn.commit()
        except sqlite3.Error as e:
            raise _translate(e, "Reordering statuses")
        return self.list_lanes()

    def seed_default_lanes(self) -> List[Lane]:
        """Create the default lanes for an owner that has none."""
        lanes = self.list_lanes()
        if lanes:
            return lanes
        for name, color in DEFAULT_LANES:
            self.create_lane(name, color)
        return self.list_lanes()

    # ── projects ──────────────────────────────────────────────────────────

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
        """Create a project. Lands in the first lane unless one is given."""
        if not lane:
            lanes = self.list_lanes()
            if not lanes:
                raise StoreError("No statuses configured", ErrorKind.VALIDATION_REJECTED, code="23503")
            lane = lanes[0].name
        item = WorkItem(
            id=str(uuid.uuid4()),
            name=name,
            lane_name=lane,
            description=description,
            value=value,
            priority=priority,
            due_date=due_date,
            client_id=client_id,
            owner_id=self.owner_id,
        )
        try:
            with _connect(self.db_path) as conn:
                conn.execute("""
                    INSERT INTO projects
                    (id, owner_id, name, description, value, priority, due_date,
                     progress, client_id, status, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    item.id, item.owner_id, item.name, item.description, item.value,
                    item.priority, item.due_date, item.progress, item.client_id,
                    item.lane_name, item.created_at, item.updated_at,
                ))
                conn.execute(
                    "INSERT INTO lane_history (record_id, from_lane, to_lane, owner_id, timestamp) VALUES (?,?,?,?,?)",
                    (item.id, None, item.lane_name, self.owner_id, item.created_at)
                )
                conn.commit()
        except sqlite3.Error as e:
            raise _translate(e, f"Creating project '{name}'")
        return item

    def get_record(self, record_id: str) -> Optional[WorkItem]:
        """Retrieve a project by id (any owner)."""
        try:
            with _connect(self.db_path) as conn:
                row = conn.execute("SELECT * FROM projects WHERE id = ?", (record_id,)).fetchone()
        except sqlite3.Error as e:
            raise _translate(e, f"Reading project {record_id}")
        return self._row_to_item(row) if row else None

    def list_records(self) -> List[WorkItem]:
        """This owner's projects, oldest first."""
        try:
            with _connect(self.db_path) as conn:
                rows = conn.execute(
                    "SELECT * FROM projects WHERE owner_id = ? ORDER BY created_at ASC",
                    (self.owner_id,)
                ).fetchall()
        except sqlite3.Error as e:
            raise _translate(e, "Listing projects")
        return [self._row_to_item(r) for r in rows]

    def set_record_lane(self, record_id: str, field: str, value: str) -> None:
        """Set the stored lane of one project. Idempotent."""
        if field != LANE_FIELD:
            raise StoreError(f"Field '{field}' cannot be updated", ErrorKind.VALIDATION_REJECTED)
        try:
            with _connect(self.db_path) as conn:
                row = conn.execute(
                    "SELECT owner_id, status FROM projects WHERE id = ?", (record_id,)
                ).fetchone()
        except sqlite3.Error as e:
            raise _translate(e, f"Reading project {record_id}")
        if row is None:
            raise StoreError(f"Project {record_id} not found", ErrorKind.UNCLASSIFIED, status=404)
        if row["owner_id"] != self.owner_id:
            raise StoreError(
                f"Project {record_id} belongs to another owner",
                ErrorKind.PERMISSION_DENIED,
                code="42501",
            )
        if row["status"] == value:
            return
        now = utc_now()
        try:
            with _connect(self.db_path) as conn:
                conn.execute(
                    "UPDATE projects SET status = ?, updated_at = ? WHERE id = ?",
                    (value, now, record_id)
                )
                conn.execute(
                    "INSERT INTO lane_history (record_id, from_lane, to_lane, owner_id, timestamp) VALUES (?,?,?,?,?)",
                    (record_id, row["status"], value, self.owner_id, now)
                )
                conn.commit()
        except sqlite3.Error as e:
            raise _translate(e, f"Moving project {record_id} to '{value}'")

    def lane_history(self, record_id: str) -> List[Dict[str, Any]]:
        """Lane changes of a project, oldest first."""
        try:
            with _connect(self.db_path) as conn:
                rows = conn.execute(
                    "SELECT from_lane, to_lane, timestamp FROM lane_history WHERE record_id = ? ORDER BY id ASC",
                    (record_id,)
                ).fetchall()
        except sqlite3.Error as e:
            raise _translate(e, f"Reading history of {record_id}")
        return [dict(r) for r in rows]

    # ── async contract ────────────────────────────────────────────────────

    async def update_record_field(self, record_id: str, field: str, value: str) -> None:
        await asyncio.to_thread(self.set_record_lane, record_id, field, value)

    async def fetch_all_records(self) -> List[WorkItem]:
        return await asyncio.to_thread(self.list_records)

    async def fetch_lanes(self) -> List[Lane]:
        return await asyncio.to_thread(self.list_lanes)

    def _row_to_item(self, row: sqlite3.Row) -> WorkItem:
        """Convert a database row to a WorkItem."""
        return WorkItem.from_dict(dict(row))
