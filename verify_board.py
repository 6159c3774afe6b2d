#!/usr/bin/env python3
"""
Quick verification that the board works end-to-end against a throwaway SQLite store.
"""
import asyncio
import logging
import sys
import tempfile
from pathlib import Path

from pkg.board.notifications import NotificationLog
from pkg.board.reconciler import Reconciler
from pkg.board.schema import DragGesture, Lane
from pkg.board.state import BoardState
from pkg.board.store import SqliteProjectStore


async def run_checks(store: SqliteProjectStore) -> bool:
    # Create lanes
    print("\n[1/5] Creating lanes...")
    for name in ("Planning", "InProgress", "Done"):
        store.create_lane(name)
    print(f"✅ Lanes: {[l.name for l in store.list_lanes()]}")

    # Create project in the first lane
    print("\n[2/5] Creating project...")
    item = store.create_record("Website redesign", value=1200)
    print(f"✅ Project {item.id[:8]} in lane {item.lane_name!r}")

    board = BoardState(store.list_records(), store.list_lanes())
    notes = NotificationLog()
    reconciler = Reconciler(board, store, notes, refetch_delay=0.05)

    # Accepted move
    print("\n[3/5] Dragging Planning -> InProgress...")
    result = await reconciler.handle_drop(
        DragGesture(item.id, "Planning", "InProgress", destination_valid=True)
    )
    await reconciler.drain()
    print(f"   → Phase: {result.phase.value}")
    print(f"   → Toast: {result.notification.message}")
    if board.find_item(item.id).lane_name != "InProgress":
        print("❌ Move was not kept")
        return False

    # Rejected move (lane missing from the store)
    print("\n[4/5] Dragging to a lane the store does not know...")
    board.replace(board.items, board.lanes + [Lane(id="x", name="Ghost", sort_order=99)])
    result = await reconciler.handle_drop(
        DragGesture(item.id, "InProgress", "Ghost", destination_valid=True)
    )
    print(f"   → Phase: {result.phase.value}")
    print(f"   → Toast: {result.notification.message}")
    if board.find_item(item.id).lane_name != "InProgress":
        print("❌ Rollback failed")
        return False

    # No-op drop
    print("\n[5/5] Dropping onto the same lane...")
    result = await reconciler.handle_drop(
        DragGesture(item.id, "InProgress", "InProgress", destination_valid=True)
    )
    print(f"   → Result: {result}")

    print(f"\nLane history: {[h['to_lane'] for h in store.lane_history(item.id)]}")
    return result is None


def main():
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [board] %(levelname)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    print("=" * 60)
    print("Project Board Verification")
    print("=" * 60)

    with tempfile.TemporaryDirectory() as tmp:
        store = SqliteProjectStore(str(Path(tmp) / "board.db"), owner_id="verify")
        ok = asyncio.run(run_checks(store))

    print("\n" + "=" * 60)
    print("✅ ALL CHECKS PASSED" if ok else "❌ CHECKS FAILED")
    print("=" * 60)
    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    main()
