from ingestion.tracker import ValidSetTracker


def test_tracker_starts_empty():
    tracker = ValidSetTracker()

    assert tracker.is_empty
    assert len(tracker) == 0


def test_ids_are_stored_as_strings():
    tracker = ValidSetTracker([1001, "1002"])

    assert "1001" in tracker
    assert 1002 in tracker
    assert len(tracker) == 2


def test_blank_ids_are_ignored():
    tracker = ValidSetTracker()
    tracker.add("")
    tracker.add(None)

    assert tracker.is_empty


def test_snapshot_is_frozen():
    tracker = ValidSetTracker(["a"])
    snapshot = tracker.snapshot()
    tracker.add("b")

    assert snapshot == frozenset({"a"})
    assert set(tracker) == {"a", "b"}


def test_trackers_are_independent():
    first = ValidSetTracker(["a"])
    second = ValidSetTracker()

    assert "a" not in second
    assert not first.is_empty
