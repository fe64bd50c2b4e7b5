import pytest

from raftkit.raftlog import InMemoryRaftLog, LogEntry


def test_simple_append_sequence():
    raft_log = InMemoryRaftLog(LogEntry(0, ""))
    entry1_ok = LogEntry(1, "set x foo")
    entry2_ok = LogEntry(1, "set foo bar")
    entry3_ok = LogEntry(1, "set a 1")
    assert raft_log.append_entries(entry1_ok.term, 0, 0, 0, [entry1_ok], 0)
    assert raft_log.append_entries(entry2_ok.term, 0, 1, 1, [entry2_ok], 0)
    assert raft_log.append_entries(entry3_ok.term, 0, 2, 1, [entry3_ok], 0)
    assert len(raft_log.entries) == 4

    entry1_bad = LogEntry(0, "set foo bar")
    assert not raft_log.append_entries(entry1_bad.term, 0, 0, 0, [entry1_bad], 0)
    entry1_good = LogEntry(1, "set foo bar")
    assert raft_log.append_entries(1, 0, 3, 1, [entry1_good], 0)

    log_in_future = LogEntry(3, "set foo bar")
    assert not raft_log.append_entries(log_in_future.term, 0, 6, 3, [log_in_future], 0)

    replay_1 = LogEntry(2, "set foo bar")
    assert raft_log.append_entries(replay_1.term, 0, 4, 1, [replay_1], 0)
    replay_2 = LogEntry(3, "set foo bar")
    assert raft_log.append_entries(replay_2.term, 0, 5, 2, [replay_2], 0)

    assert raft_log.append_entries(log_in_future.term, 0, 6, 3, [log_in_future], 0)
    assert len(raft_log) == 8

    truncate_log = LogEntry(3, "set foo bar")
    assert raft_log.append_entries(truncate_log.term, 0, 3, 1, [truncate_log], 0)
    assert len(raft_log.entries) == 4
    assert raft_log.entries == [LogEntry(0, ""), entry1_ok, entry2_ok, truncate_log]


def _filled_log():
    raft_log = InMemoryRaftLog(LogEntry(0, ""))
    for idx, command in enumerate(["set x foo", "set foo bar", "set a 1"]):
        prev_term = 0 if idx == 0 else 1
        assert raft_log.append_entries(1, 0, idx, prev_term, [LogEntry(1, command)], 0)
    return raft_log


def test_append_updates_term_leader_and_tail():
    raft_log = InMemoryRaftLog(LogEntry(0, ""))
    assert raft_log.append_entries(2, 7, 0, 0, [LogEntry(2, "set a 1")], 0)
    assert raft_log.term == 2
    assert raft_log.leader_id == 7
    assert raft_log.prev_log_idx == len(raft_log) - 1
    assert raft_log.prev_log_term == 2


def test_existing_entry_in_same_term_is_accepted_unchanged():
    raft_log = _filled_log()
    before = raft_log.entries
    assert raft_log.append_entries(1, 0, 1, 1, [LogEntry(1, "set x foo")], 0)
    assert raft_log.entries == before


def test_mismatched_prev_term_is_refused():
    raft_log = _filled_log()
    before = raft_log.entries
    assert not raft_log.append_entries(1, 0, 2, 5, [LogEntry(1, "get a")], 0)
    assert raft_log.entries == before


def test_negative_prev_index_is_refused():
    raft_log = _filled_log()
    assert not raft_log.append_entries(1, 0, -1, 1, [LogEntry(1, "get a")], 0)
    assert len(raft_log) == 4


def test_truncate_keeps_prefix():
    raft_log = _filled_log()
    first_two = raft_log.entries[:2]
    raft_log.truncate(2)
    assert raft_log.entries == first_two
    raft_log.truncate(-3)
    assert raft_log.entries == []


def test_entry_at_and_bounds():
    raft_log = _filled_log()
    assert raft_log.entry_at(0) == LogEntry(0, "")
    assert raft_log.entry_at(3) == LogEntry(1, "set a 1")
    with pytest.raises(IndexError):
        raft_log.entry_at(4)
    with pytest.raises(IndexError):
        raft_log.entry_at(-1)


def test_empty_log():
    raft_log = InMemoryRaftLog()
    assert len(raft_log) == 0
    assert raft_log.prev_log_idx == -1
    with pytest.raises(IndexError):
        raft_log.prev_log_term
    assert not raft_log.append_entries(1, 0, 0, 0, [LogEntry(1, "x")], 0)


def test_commit_and_restore_leave_log_unchanged():
    raft_log = _filled_log()
    before = raft_log.entries
    raft_log.commit()
    raft_log.restore()
    assert raft_log.entries == before


def test_entries_returns_a_copy():
    raft_log = _filled_log()
    raft_log.entries.clear()
    assert len(raft_log) == 4