"""
Tests for the reconciler: optimistic move, confirm, rollback, error
classification, re-fetch and stale-result handling.
"""
import asyncio
import logging

import pytest

from pkg.board.errors import ErrorKind, StoreError
from pkg.board.notifications import NotificationLog
from pkg.board.reconciler import Reconciler
from pkg.board.schema import DragGesture, Transition, TransitionPhase, WorkItem
from pkg.board.state import BoardState

from conftest import FakeStore, make_lanes, run


def move(board, item_id, source, dest):
    return Transition(item=board.find_item(item_id), source_lane=source, dest_lane=dest)


@pytest.fixture
def notes():
    return NotificationLog()


@pytest.fixture
def reconciler(board, store, notes):
    return Reconciler(board, store, notes, refetch_delay=None)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Confirm path
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestConfirm:

    def test_accepted_move_keeps_destination(self, board, store, notes, reconciler):
        result = run(reconciler.apply_transition(move(board, "p1", "Planning", "InProgress")))

        assert result.phase == TransitionPhase.CONFIRMED
        assert result.ok
        assert board.find_item("p1").lane_name == "InProgress"
        assert store.calls == [("p1", "lane", "InProgress")]
        assert len(notes) == 1
        assert notes.entries[0].level == "success"
        assert "InProgress" in notes.entries[0].message

    def test_success_message(self, board, notes, reconciler):
        run(reconciler.apply_transition(move(board, "p1", "Planning", "Done")))
        assert notes.entries[0].message == "Website moved to Done"

    def test_move_is_applied_before_store_answers(self, board, store, reconciler):
        async def scenario():
            gate = asyncio.Event()
            store.gates["InProgress"] = gate
            task = asyncio.ensure_future(
                reconciler.apply_transition(move(board, "p1", "Planning", "InProgress"))
            )
            await asyncio.sleep(0)
            assert board.find_item("p1").lane_name == "InProgress"
            assert reconciler.in_flight == {"p1": "InProgress"}
            gate.set()
            return await task

        result = run(scenario())
        assert result.phase == TransitionPhase.CONFIRMED
        assert reconciler.in_flight == {}

    def test_result_to_dict(self, board, reconciler):
        data = run(reconciler.apply_transition(move(board, "p1", "Planning", "Done"))).to_dict()
        assert data["item_id"] == "p1"
        assert data["phase"] == "confirmed"
        assert data["error"] is None
        assert data["notification"]["level"] == "success"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Rollback path
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestRollback:

    def test_validation_rejection_restores_source(self, board, store, notes, reconciler):
        store.error = StoreError("check constraint", ErrorKind.VALIDATION_REJECTED, code="23514")
        result = run(reconciler.apply_transition(move(board, "p1", "Planning", "InProgress")))

        assert result.phase == TransitionPhase.ROLLED_BACK
        assert result.error.kind == ErrorKind.VALIDATION_REJECTED
        assert board.find_item("p1").lane_name == "Planning"
        assert len(notes) == 1
        assert notes.entries[0].level == "error"
        assert notes.entries[0].kind == ErrorKind.VALIDATION_REJECTED
        assert notes.entries[0].message == "Status 'InProgress' is not valid for this item."

    def test_permission_denied_message(self, board, store, notes, reconciler):
        store.error = StoreError("rls", ErrorKind.PERMISSION_DENIED, code="42501")
        run(reconciler.apply_transition(move(board, "p1", "Planning", "Done")))
        assert board.find_item("p1").lane_name == "Planning"
        assert notes.entries[0].message == "You do not have permission to update this item."

    def test_foreign_exception_is_unclassified(self, board, store, notes, reconciler):
        store.error = ConnectionError("network unreachable")
        result = run(reconciler.apply_transition(move(board, "p1", "Planning", "Done")))
        assert result.error.kind == ErrorKind.UNCLASSIFIED
        assert board.find_item("p1").lane_name == "Planning"
        assert notes.entries[0].message == "Failed to update status, please try again."

    def test_subscribers_see_move_then_rollback(self, board, store, reconciler):
        seen = []
        board.subscribe("item_moved", lambda **kw: seen.append(kw["lane_name"]))
        store.error = StoreError("boom")
        run(reconciler.apply_transition(move(board, "p1", "Planning", "Done")))
        assert seen == ["Done", "Planning"]

    def test_no_retry(self, board, store, reconciler):
        store.error = StoreError("boom")
        run(reconciler.apply_transition(move(board, "p1", "Planning", "Done")))
        assert len(store.calls) == 1

    def test_rollback_logged(self, board, store, reconciler, caplog):
        store.error = StoreError("denied", ErrorKind.PERMISSION_DENIED)
        with caplog.at_level(logging.WARNING, logger="pkg.board.reconciler"):
            run(reconciler.apply_transition(move(board, "p1", "Planning", "Done")))
        assert "rolled back" in caplog.text


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Drop handling (coordinator + reconciler)
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestHandleDrop:

    def test_same_lane_issues_nothing(self, board, store, notes, reconciler):
        assert run(reconciler.handle_drop(DragGesture("p1", "Planning", "Planning", True))) is None
        assert store.calls == []
        assert len(notes) == 0
        assert board.find_item("p1").lane_name == "Planning"

    def test_unknown_item_issues_nothing(self, store, notes, reconciler):
        assert run(reconciler.handle_drop(DragGesture("ghost", "Planning", "InProgress", True))) is None
        assert store.calls == []
        assert len(notes) == 0

    def test_outside_drop_issues_nothing(self, store, notes, reconciler):
        assert run(reconciler.handle_drop(DragGesture("p1", "Planning", "InProgress", False))) is None
        assert store.calls == []
        assert len(notes) == 0

    def test_valid_drop(self, board, reconciler):
        result = run(reconciler.handle_drop(DragGesture("p1", "Planning", "InProgress", True)))
        assert result.phase == TransitionPhase.CONFIRMED
        assert board.find_item("p1").lane_name == "InProgress"

    def test_rejected_drop_restores_board_lane_not_reported_source(self, board, store, notes, reconciler):
        store.error = StoreError("check constraint", ErrorKind.VALIDATION_REJECTED)
        result = run(reconciler.handle_drop(DragGesture("p1", "Done", "InProgress", True)))
        assert result.phase == TransitionPhase.ROLLED_BACK
        assert board.find_item("p1").lane_name == "Planning"

    def test_drop_into_current_lane_with_wrong_source_issues_nothing(self, store, notes, reconciler):
        assert run(reconciler.handle_drop(DragGesture("p1", "Done", "Planning", True))) is None
        assert store.calls == []
        assert len(notes) == 0


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Re-fetch after confirm
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestRefetch:

    def test_refetch_pulls_server_state(self, board, store, notes):
        rec = Reconciler(board, store, notes, refetch_delay=0)
        store.records[0].name = "Website (server name)"

        async def scenario():
            await rec.apply_transition(move(board, "p1", "Planning", "Done"))
            await rec.drain()

        run(scenario())
        assert store.fetches == 1
        item = board.find_item("p1")
        assert item.name == "Website (server name)"
        assert item.lane_name == "Done"

    def test_no_refetch_after_failure(self, board, store, notes):
        rec = Reconciler(board, store, notes, refetch_delay=0)
        store.error = StoreError("boom")

        async def scenario():
            await rec.apply_transition(move(board, "p1", "Planning", "Done"))
            await rec.drain()

        run(scenario())
        assert store.fetches == 0

    def test_refetch_failure_is_logged_only(self, board, store, notes, caplog):
        rec = Reconciler(board, store, notes, refetch_delay=0)
        store.fetch_error = RuntimeError("backend down")

        async def scenario():
            await rec.apply_transition(move(board, "p1", "Planning", "Done"))
            await rec.drain()

        with caplog.at_level(logging.ERROR, logger="pkg.board.reconciler"):
            run(scenario())
        assert "re-fetch failed" in caplog.text
        assert board.find_item("p1").lane_name == "Done"
        assert len(notes) == 1

    def test_refetch_keeps_pending_optimistic_moves(self, lanes, notes):
        items = [WorkItem(id="p1", name="A", lane_name="Planning"),
                 WorkItem(id="p2", name="B", lane_name="Planning")]
        board = BoardState([WorkItem(id=i.id, name=i.name, lane_name=i.lane_name) for i in items], lanes)
        store = FakeStore(items)
        rec = Reconciler(board, store, notes, refetch_delay=0)

        async def scenario():
            gate = asyncio.Event()
            store.gates["Done"] = gate
            pending = asyncio.ensure_future(rec.apply_transition(move(board, "p2", "Planning", "Done")))
            await asyncio.sleep(0)
            await rec.apply_transition(move(board, "p1", "Planning", "InProgress"))
            await rec.drain()
            assert board.find_item("p2").lane_name == "Done"
            gate.set()
            await pending
            await rec.drain()

        run(scenario())
        assert board.find_item("p1").lane_name == "InProgress"
        assert board.find_item("p2").lane_name == "Done"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Overlapping moves of the same item
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


async def _overlapping_moves(board, store, rec):
    """p1 -> InProgress (held, then rejected) overtaken by p1 -> Done (accepted)."""
    gate = asyncio.Event()
    store.gates["InProgress"] = gate
    store.errors["InProgress"] = StoreError("late failure")
    first = asyncio.ensure_future(rec.apply_transition(move(board, "p1", "Planning", "InProgress")))
    await asyncio.sleep(0)
    second = await rec.apply_transition(move(board, "p1", "InProgress", "Done"))
    gate.set()
    return await first, second


class TestStaleResults:

    def test_superseded_result_is_discarded(self, board, store, notes):
        rec = Reconciler(board, store, notes, refetch_delay=None, discard_stale=True)
        first, second = run(_overlapping_moves(board, store, rec))

        assert second.phase == TransitionPhase.CONFIRMED
        assert first.phase == TransitionPhase.STALE
        assert first.notification is None
        assert board.find_item("p1").lane_name == "Done"
        assert [n.level for n in notes.entries] == ["success"]
        assert rec.in_flight == {}

    def test_without_guard_late_rollback_wins(self, board, store, notes):
        rec = Reconciler(board, store, notes, refetch_delay=None, discard_stale=False)
        first, second = run(_overlapping_moves(board, store, rec))

        assert second.phase == TransitionPhase.CONFIRMED
        assert first.phase == TransitionPhase.ROLLED_BACK
        assert board.find_item("p1").lane_name == "Planning"
        assert [n.level for n in notes.entries] == ["success", "error"]

    def test_both_overlapping_moves_rejected_restores_accepted_lane(self, board, store, notes):
        rec = Reconciler(board, store, notes, refetch_delay=None, discard_stale=True)

        async def scenario():
            gate = asyncio.Event()
            store.gates["InProgress"] = gate
            store.errors["InProgress"] = StoreError("late failure")
            store.errors["Done"] = StoreError("denied", ErrorKind.PERMISSION_DENIED)
            first = asyncio.ensure_future(rec.apply_transition(move(board, "p1", "Planning", "InProgress")))
            await asyncio.sleep(0)
            second = await rec.apply_transition(move(board, "p1", "InProgress", "Done"))
            gate.set()
            return await first, second

        first, second = run(scenario())
        assert first.phase == TransitionPhase.STALE
        assert second.phase == TransitionPhase.ROLLED_BACK
        assert board.find_item("p1").lane_name == "Planning"
        assert store.records[0].lane_name == "Planning"
        assert rec.in_flight == {}

    def test_late_accepted_move_after_rollback_resyncs_board(self, board, store, notes):
        rec = Reconciler(board, store, notes, refetch_delay=None, discard_stale=True)

        async def scenario():
            gate = asyncio.Event()
            store.gates["InProgress"] = gate
            store.errors["Done"] = StoreError("denied", ErrorKind.PERMISSION_DENIED)
            first = asyncio.ensure_future(rec.apply_transition(move(board, "p1", "Planning", "InProgress")))
            await asyncio.sleep(0)
            second = await rec.apply_transition(move(board, "p1", "InProgress", "Done"))
            gate.set()
            return await first, second

        first, second = run(scenario())
        assert second.phase == TransitionPhase.ROLLED_BACK
        assert first.phase == TransitionPhase.STALE
        assert store.records[0].lane_name == "InProgress"
        assert board.find_item("p1").lane_name == "InProgress"

    def test_independent_items_do_not_interfere(self, lanes, notes):
        items = [WorkItem(id="p1", name="A", lane_name="Planning"),
                 WorkItem(id="p2", name="B", lane_name="Planning")]
        board = BoardState(items, lanes)
        store = FakeStore()
        store.errors["Done"] = StoreError("nope", ErrorKind.VALIDATION_REJECTED)
        rec = Reconciler(board, store, notes, refetch_delay=None)

        async def scenario():
            return await asyncio.gather(
                rec.apply_transition(move(board, "p1", "Planning", "InProgress")),
                rec.apply_transition(move(board, "p2", "Planning", "Done")),
            )

        r1, r2 = run(scenario())
        assert r1.phase == TransitionPhase.CONFIRMED
        assert r2.phase == TransitionPhase.ROLLED_BACK
        assert board.find_item("p1").lane_name == "InProgress"
        assert board.find_item("p2").lane_name == "Planning"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Notification log
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestNotificationLog:

    def test_listeners_receive_notifications(self, board, store, notes, reconciler):
        received = []
        notes.listen(received.append)
        run(reconciler.apply_transition(move(board, "p1", "Planning", "Done")))
        assert [n.message for n in received] == ["Website moved to Done"]

    def test_bounded(self):
        log = NotificationLog(maxlen=2)
        for i in range(5):
            log.success(f"msg {i}")
        assert [n.message for n in log.entries] == ["msg 3", "msg 4"]
