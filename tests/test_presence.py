import dataclasses

import pytest

from callrelay.core.presence import PresenceTable


@pytest.fixture
def table():
    clock = {"now": 1_700_000_000_000}
    t = PresenceTable(now=lambda: clock["now"])
    t._clock = clock  # stash for tests to advance time
    return t


def test_upsert_marks_online(table):
    assert table.upsert_online("alice", "c1") is None
    entry = table.get("alice")
    assert entry.online is True
    assert entry.connection_id == "c1"
    assert entry.updated_ms == 1_700_000_000_000


def test_last_register_wins(table):
    table.upsert_online("alice", "c1")
    previous = table.upsert_online("alice", "c2")
    assert previous.connection_id == "c1"
    assert table.get("alice").connection_id == "c2"
    assert len(table) == 1


def test_clear_if_current_flips_offline(table):
    table.upsert_online("alice", "c1")
    table._clock["now"] += 500
    assert table.clear_if_current("alice", "c1") is True
    entry = table.get("alice")
    assert entry.online is False
    assert entry.connection_id is None
    assert entry.updated_ms == 1_700_000_000_500


def test_stale_clear_keeps_newer_registration(table):
    """A close of the superseded connection must not wipe the newer one."""
    table.upsert_online("alice", "c1")
    table.upsert_online("alice", "c2")
    assert table.clear_if_current("alice", "c1") is False
    entry = table.get("alice")
    assert entry.online is True
    assert entry.connection_id == "c2"


def test_clear_unknown_or_offline_user_is_no_op(table):
    assert table.clear_if_current("ghost", "c1") is False
    table.upsert_online("alice", "c1")
    table.clear_if_current("alice", "c1")
    assert table.clear_if_current("alice", "c1") is False


def test_online_users_sorted_and_filtered(table):
    table.upsert_online("carol", "c3")
    table.upsert_online("alice", "c1")
    table.upsert_online("bob", "c2")
    table.clear_if_current("bob", "c2")
    assert table.online_users() == ["alice", "carol"]


def test_upsert_requires_user_id(table):
    with pytest.raises(ValueError):
        table.upsert_online("", "c1")


def test_entries_are_immutable_snapshots(table):
    table.upsert_online("alice", "c1")
    snapshot = table.get("alice")
    table.clear_if_current("alice", "c1")
    assert snapshot.online is True
    with pytest.raises(dataclasses.FrozenInstanceError):
        snapshot.online = False
