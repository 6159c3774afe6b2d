"""
Board schema: work items, lanes, drag gestures and transitions.

Work items join to lanes by lane NAME, not lane id:
  WorkItem.lane_name == Lane.name

An item whose lane_name matches no lane is an orphan. It is not an error,
it simply does not render in any column.
"""
from enum import Enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Dict, Any


def utc_now() -> str:
    """ISO-8601 UTC timestamp."""
    return datetime.now(timezone.utc).isoformat()


class TransitionPhase(Enum):
    """Lifecycle of one in-flight lane transition."""
    IDLE = "idle"
    OPTIMISTIC_APPLIED = "optimistic_applied"   # Local move done, remote call pending
    CONFIRMED = "confirmed"                     # Store accepted the move
    ROLLED_BACK = "rolled_back"                 # Store rejected, local move undone
    STALE = "stale"                             # Superseded by a newer move of the same item


@dataclass
class Lane:
    """A board column (a project status)."""

    id: str
    name: str                      # Display label AND join key for items
    color: str = "#6B7280"
    sort_order: int = 0
    owner_id: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "color": self.color,
            "sort_order": self.sort_order,
            "owner_id": self.owner_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Lane":
        return cls(
            id=str(data.get("id", "")),
            name=data.get("name", ""),
            color=data.get("color") or "#6B7280",
            sort_order=int(data.get("sort_order") or 0),
            owner_id=data.get("owner_id") or data.get("user_id") or "",
        )


@dataclass
class WorkItem:
    """A single project card on the board."""

    # Identifiers
    id: str
    name: str

    # Lane assignment (denormalized: matches Lane.name)
    lane_name: str = ""

    # Payload, irrelevant to reconciliation
    description: str = ""
    value: float = 0
    priority: str = "medium"       # "low", "medium", "high"
    due_date: Optional[str] = None
    progress: int = 0
    client_id: str = ""

    # Metadata
    owner_id: str = ""
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "lane": self.lane_name,
            "description": self.description,
            "value": self.value,
            "priority": self.priority,
            "due_date": self.due_date,
            "progress": self.progress,
            "client_id": self.client_id,
            "owner_id": self.owner_id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WorkItem":
        """Deserialize from dict. Accepts both 'lane' and backend 'status' keys."""
        lane = data.get("lane")
        if lane is None:
            lane = data.get("status", "")
        return cls(
            id=str(data.get("id", "")),
            name=data.get("name", ""),
            lane_name=lane or "",
            description=data.get("description") or "",
            value=data.get("value") or 0,
            priority=data.get("priority") or "medium",
            due_date=data.get("due_date"),
            progress=int(data.get("progress") or 0),
            client_id=data.get("client_id") or "",
            owner_id=data.get("owner_id") or data.get("user_id") or "",
            created_at=data.get("created_at") or utc_now(),
            updated_at=data.get("updated_at") or utc_now(),
        )


@dataclass
class DragGesture:
    """Raw drag-end event from the board UI."""

    item_id: Optional[str] = None
    source_lane: Optional[str] = None
    dest_lane: Optional[str] = None
    destination_valid: bool = False  # False when dropped outside any lane

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DragGesture":
        dest = data.get("dest_lane")
        return cls(
            item_id=data.get("item_id"),
            source_lane=data.get("source_lane"),
            dest_lane=dest,
            destination_valid=bool(data.get("destination_valid", bool(dest))),
        )


@dataclass(frozen=True)
class Transition:
    """A validated request to move one item between two lanes."""

    item: WorkItem
    source_lane: str
    dest_lane: str

    @property
    def item_id(self) -> str:
        return self.item.id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "item_id": self.item.id,
            "source_lane": self.source_lane,
            "dest_lane": self.dest_lane,
        }
