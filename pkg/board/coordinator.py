"""
Drag coordinator: turns a drag-end gesture into a Transition, or nothing.

Only lane membership is tracked. A drop back into the same lane (a reorder)
is ignored, as is a drop outside any lane.
"""
import logging
from typing import Optional

from .schema import DragGesture, Transition
from .state import BoardState

logger = logging.getLogger(__name__)


def compute_transition(board: BoardState, gesture: DragGesture) -> Optional[Transition]:
    """
    Validate a drag gesture against the current board.

    Returns None (no transition) when:
        - the drop landed outside any lane
        - source and destination lanes are the same
        - the item id is unknown (logged)
        - the item already sits in the destination lane
        - the destination lane name is unknown (logged)

    The transition's source is the item's lane on the board, whatever lane
    the gesture reports. Never mutates the board.
    """
    if not gesture.destination_valid or not gesture.dest_lane:
        return None

    if gesture.source_lane == gesture.dest_lane:
        return None

    item = board.find_item(gesture.item_id)
    if item is None:
        logger.warning(f"Drop ignored: item {gesture.item_id!r} not on board")
        return None

    if gesture.source_lane and gesture.source_lane != item.lane_name:
        logger.info(
            f"Drag of {item.id} reports source {gesture.source_lane!r}, "
            f"board has {item.lane_name!r}"
        )
    if item.lane_name == gesture.dest_lane:
        return None

    lane = board.find_lane(gesture.dest_lane)
    if lane is None:
        logger.warning(f"Drop ignored: lane {gesture.dest_lane!r} not on board")
        return None

    return Transition(
        item=item,
        source_lane=item.lane_name,
        dest_lane=lane.name,
    )
