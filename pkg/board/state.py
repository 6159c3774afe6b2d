"""
In-memory board state.

BoardState is the single owner of the items and lanes shown on a board.
Lane membership is only ever changed through set_item_lane(), which is what
the reconciler calls for both the optimistic move and the rollback.
"""
import logging
from dataclasses import replace as clone
from typing import Callable, Dict, Iterable, List, Optional

from .schema import Lane, WorkItem

logger = logging.getLogger(__name__)


class BoardState:
    """Items + ordered lanes, with change subscribers."""

    def __init__(self, items: Iterable[WorkItem] = (), lanes: Iterable[Lane] = ()):
        self._items: List[WorkItem] = list(items)
        self._lanes: List[Lane] = sorted(lanes, key=lambda l: l.sort_order)
        self.subscribers: Dict[str, list] = {}  # event_type -> list of callbacks

    # ── subscribers ───────────────────────────────────────────────────────

    def subscribe(self, event_type: str, callback: Callable) -> None:
        """Register a callback for "item_moved" or "board_replaced"."""
        self.subscribers.setdefault(event_type, []).append(callback)

    def _emit(self, event_type: str, **kwargs) -> None:
        for callback in self.subscribers.get(event_type, []):
            try:
                callback(**kwargs)
            except Exception as e:
                logger.error(f"Error in {event_type} callback: {e}")

    # ── reads ─────────────────────────────────────────────────────────────

    @property
    def lanes(self) -> List[Lane]:
        return list(self._lanes)

    @property
    def items(self) -> List[WorkItem]:
        return list(self._items)

    def snapshot(self) -> Dict[str, list]:
        """Detached copies of the current items and lanes."""
        return {
            "items": [clone(i) for i in self._items],
            "lanes": [clone(l) for l in self._lanes],
        }

    def find_item(self, item_id: Optional[str]) -> Optional[WorkItem]:
        if not item_id:
            return None
        for item in self._items:
            if item.id == item_id:
                return item
        return None

    def find_lane(self, name: Optional[str]) -> Optional[Lane]:
        """Name join between items and lanes. First match wins on duplicates."""
        if not name:
            return None
        for lane in self._lanes:
            if lane.name == name:
                return lane
        return None

    def default_lane(self) -> Optional[Lane]:
        """Lane new items land in: the first one by sort order."""
        return self._lanes[0] if self._lanes else None

    def items_by_lane(self) -> Dict[str, List[WorkItem]]:
        """Rendered columns, keyed by lane name in sort order. Orphans are left out."""
        columns: Dict[str, List[WorkItem]] = {}
        for lane in self._lanes:
            columns.setdefault(lane.name, [])
        for item in self._items:
            lane = self.find_lane(item.lane_name)
            if lane is not None:
                columns[lane.name].append(item)
        return columns

    def orphans(self) -> List[WorkItem]:
        """Items whose lane name matches no lane."""
        return [i for i in self._items if self.find_lane(i.lane_name) is None]

    # ── mutations ─────────────────────────────────────────────────────────

    def set_item_lane(self, item_id: str, lane_name: str) -> bool:
        """Move an item to a lane by name and notify subscribers."""
        item = self.find_item(item_id)
        if item is None:
            return False
        previous = item.lane_name
        item.lane_name = lane_name
        self._emit("item_moved", item_id=item_id, lane_name=lane_name, previous=previous)
        return True

    def add_item(self, item: WorkItem) -> None:
        if not item.lane_name:
            lane = self.default_lane()
            item.lane_name = lane.name if lane else ""
        self._items.append(item)
        self._emit("item_moved", item_id=item.id, lane_name=item.lane_name, previous=None)

    def replace(self, items: Iterable[WorkItem], lanes: Optional[Iterable[Lane]] = None) -> None:
        """Swap in authoritative data from the store."""
        self._items = list(items)
        if lanes is not None:
            self._lanes = sorted(lanes, key=lambda l: l.sort_order)
        self._emit("board_replaced", count=len(self._items))
