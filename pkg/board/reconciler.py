"""
Reconciler: optimistic lane moves confirmed (or undone) by the project store.

Per transition:
    IDLE -> OPTIMISTIC_APPLIED -> CONFIRMED   (store accepted)
                               -> ROLLED_BACK (store rejected; no retry)
                               -> STALE       (a newer move of the same item
                                               was issued meanwhile)

Outcomes reach the user through the NotificationLog. apply_transition()
also returns a TransitionResult so callers and tests can inspect it without
a UI. Store exceptions never escape.
"""
import asyncio
import itertools
import logging
from dataclasses import dataclass
from typing import Dict, Optional, Set, Tuple, Any

from .coordinator import compute_transition
from .errors import StoreError, classify_error, user_message
from .notifications import Notification, NotificationLog
from .schema import DragGesture, Transition, TransitionPhase
from .state import BoardState

logger = logging.getLogger(__name__)

DEFAULT_REFETCH_DELAY = 0.5  # seconds after a confirmed move


@dataclass
class TransitionResult:
    """Final state of one applied transition."""
    transition: Transition
    phase: TransitionPhase
    error: Optional[StoreError] = None
    notification: Optional[Notification] = None

    @property
    def ok(self) -> bool:
        return self.phase == TransitionPhase.CONFIRMED

    def to_dict(self) -> Dict[str, Any]:
        return {
            **self.transition.to_dict(),
            "phase": self.phase.value,
            "error": self.error.to_dict() if self.error else None,
            "notification": self.notification.to_dict() if self.notification else None,
        }


class Reconciler:
    """Applies transitions to a BoardState against a project store."""

    def __init__(
        self,
        board: BoardState,
        store,
        notifications: Optional[NotificationLog] = None,
        refetch_delay: Optional[float] = DEFAULT_REFETCH_DELAY,
        discard_stale: bool = True,
    ):
        """
        Args:
            board: board to mutate
            store: object with async update_record_field() / fetch_all_records()
            notifications: where success/failure toasts go
            refetch_delay: seconds before re-reading the store after a
                confirmed move; None disables the re-fetch
            discard_stale: ignore remote results superseded by a newer move
                of the same item instead of rolling back / notifying; a
                rejected move then restores the lane the store last accepted
        """
        self.board = board
        self.store = store
        self.notifications = notifications if notifications is not None else NotificationLog()
        self.refetch_delay = refetch_delay
        self.discard_stale = discard_stale
        self._tokens = itertools.count(1)
        self._inflight: Dict[str, Tuple[int, str]] = {}  # item_id -> (token, dest lane)
        self._outstanding: Dict[str, int] = {}       # item_id -> unresolved moves
        self._settled: Dict[str, str] = {}           # item_id -> lane the store last accepted
        self._refetches: Set[asyncio.Task] = set()

    async def handle_drop(self, gesture: DragGesture) -> Optional[TransitionResult]:
        """Drag-end entry point. None when the gesture is a no-op."""
        transition = compute_transition(self.board, gesture)
        if transition is None:
            return None
        return await self.apply_transition(transition)

    async def apply_transition(self, transition: Transition) -> TransitionResult:
        item_id = transition.item_id
        token = next(self._tokens)
        if item_id not in self._outstanding:
            self._settled[item_id] = transition.source_lane
        self._outstanding[item_id] = self._outstanding.get(item_id, 0) + 1
        self._inflight[item_id] = (token, transition.dest_lane)

        # Optimistic move, before any I/O
        self.board.set_item_lane(item_id, transition.dest_lane)

        error = None
        try:
            await self.store.update_record_field(item_id, "lane", transition.dest_lane)
        except Exception as exc:
            error = classify_error(exc)

        self._outstanding[item_id] -= 1
        last_outstanding = self._outstanding[item_id] == 0
        if last_outstanding:
            del self._outstanding[item_id]
        if error is None:
            self._settled[item_id] = transition.dest_lane
        settled = self._settled[item_id]
        if last_outstanding:
            del self._settled[item_id]

        if self._inflight.get(item_id, (None,))[0] != token:
            if self.discard_stale:
                logger.info(
                    f"Discarding stale result for {item_id} "
                    f"({transition.source_lane} -> {transition.dest_lane})"
                )
                item = self.board.find_item(item_id)
                if last_outstanding and item is not None and item.lane_name != settled:
                    # Nothing newer is pending: show the lane the store last accepted
                    logger.warning(f"Resyncing {item_id} to {settled!r} after overlapping moves")
                    self.board.set_item_lane(item_id, settled)
                return TransitionResult(transition, TransitionPhase.STALE, error=error)
        else:
            del self._inflight[item_id]

        if error is not None:
            restore = settled if self.discard_stale else transition.source_lane
            self.board.set_item_lane(item_id, restore)
            logger.warning(
                f"Move of {item_id} to {transition.dest_lane!r} rolled back: "
                f"{error.kind.value}: {error.message}"
            )
            note = self.notifications.error(
                user_message(error, transition.dest_lane), error.kind, item_id=item_id
            )
            return TransitionResult(transition, TransitionPhase.ROLLED_BACK, error=error, notification=note)

        logger.info(f"Moved {item_id} {transition.source_lane!r} -> {transition.dest_lane!r}")
        note = self.notifications.success(
            f"{transition.item.name} moved to {transition.dest_lane}", item_id=item_id
        )
        self._schedule_refetch()
        return TransitionResult(transition, TransitionPhase.CONFIRMED, notification=note)

    # ── authoritative re-fetch ────────────────────────────────────────────

    def _schedule_refetch(self) -> None:
        if self.refetch_delay is None:
            return
        task = asyncio.ensure_future(self._refetch_later(self.refetch_delay))
        self._refetches.add(task)
        task.add_done_callback(self._refetches.discard)

    async def _refetch_later(self, delay: float) -> None:
        await asyncio.sleep(delay)
        try:
            records = await self.store.fetch_all_records()
        except Exception as e:
            logger.error(f"Board re-fetch failed: {e}")
            return
        self.board.replace(records)
        # Keep optimistic lanes of moves still waiting on the store
        for item_id, (_, dest_lane) in list(self._inflight.items()):
            self.board.set_item_lane(item_id, dest_lane)

    async def drain(self) -> None:
        """Wait for scheduled re-fetches to finish."""
        while True:
            pending = [t for t in self._refetches if not t.done()]
            if not pending:
                return
            await asyncio.gather(*pending)

    @property
    def in_flight(self) -> Dict[str, str]:
        """item_id -> destination lane for moves awaiting the store."""
        return {item_id: dest for item_id, (_, dest) in self._inflight.items()}
