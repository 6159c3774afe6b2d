"""Shared test fixtures for the project board tests."""

import asyncio
import sys
from pathlib import Path

import pytest

# Ensure the repo root (board_server, pkg/) is importable
sys.path.insert(0, str(Path(__file__).parent.parent))

from pkg.board.schema import Lane, WorkItem
from pkg.board.state import BoardState


class FakeStore:
    """In-memory project store with scriptable failures."""

    def __init__(self, records=None, error=None):
        self.records = list(records or [])
        self.error = error            # raised by update_record_field when set
        self.errors = {}              # value -> exception, overrides self.error
        self.fetch_error = None
        self.calls = []               # (record_id, field, value)
        self.fetches = 0
        self.gates = {}               # value -> asyncio.Event holding the call

    async def update_record_field(self, record_id, field, value):
        self.calls.append((record_id, field, value))
        gate = self.gates.get(value)
        if gate is not None:
            await gate.wait()
        error = self.errors.get(value, self.error)
        if error is not None:
            raise error
        for record in self.records:
            if record.id == record_id:
                record.lane_name = value

    async def fetch_all_records(self):
        self.fetches += 1
        if self.fetch_error is not None:
            raise self.fetch_error
        return [WorkItem(id=r.id, name=r.name, lane_name=r.lane_name) for r in self.records]


def make_lanes(*names):
    return [Lane(id=f"lane-{i}", name=n, sort_order=i) for i, n in enumerate(names)]


@pytest.fixture
def lanes():
    return make_lanes("Planning", "InProgress", "Done")


@pytest.fixture
def board(lanes):
    return BoardState([WorkItem(id="p1", name="Website", lane_name="Planning")], lanes)


@pytest.fixture
def store():
    return FakeStore([WorkItem(id="p1", name="Website", lane_name="Planning")])


def run(coro):
    return asyncio.run(coro)
