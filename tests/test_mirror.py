import random

import pytest

from tracking.mirror import MetricSnapshot, WatermarkMirror
from tracking.repository import WatchedTableNotFound


def test_unhydrated_table_raises():
    with pytest.raises(WatchedTableNotFound):
        WatermarkMirror().get("form_submits")


def test_advance_rejects_regression():
    mirror = WatermarkMirror()
    mirror.hydrate("form_submits", 10)

    assert mirror.advance("form_submits", 9) is False
    assert mirror.get("form_submits") == 10
    assert mirror.advance("form_submits", 10) is True
    assert mirror.advance("form_submits", 11) is True
    assert mirror.get("form_submits") == 11


@pytest.mark.parametrize("seed", range(5))
def test_advance_sequence_is_monotonic(seed):
    rng = random.Random(seed)
    mirror = WatermarkMirror()
    mirror.hydrate("t", 0)

    seen = [0]
    for _ in range(200):
        mirror.advance("t", rng.randint(0, 500))
        seen.append(mirror.get("t"))

    assert seen == sorted(seen)


def test_reset_can_move_backwards_and_clears_attempts():
    mirror = WatermarkMirror()
    mirror.hydrate("t", 10)
    mirror.record_failure("t", 11)
    mirror.record_failure("other", 1)

    mirror.reset("t", 2)

    assert mirror.get("t") == 2
    assert mirror.failed_attempts("t", 11) == 0
    assert mirror.failed_attempts("other", 1) == 1


def test_reset_can_keep_attempts():
    mirror = WatermarkMirror()
    mirror.hydrate("t", 10)
    mirror.record_failure("t", 11)

    mirror.reset("t", 40, keep_attempts=True)

    assert mirror.get("t") == 40
    assert mirror.failed_attempts("t", 11) == 1


def test_prune_attempts_drops_rows_at_or_below_the_watermark():
    mirror = WatermarkMirror()
    for row_id in (3, 7, 8):
        mirror.record_failure("t", row_id)
    mirror.record_failure("other", 3)

    mirror.prune_attempts("t", up_to=7)

    assert [mirror.failed_attempts("t", i) for i in (3, 7, 8)] == [0, 0, 1]
    assert mirror.failed_attempts("other", 3) == 1


def test_retain_attempts_keeps_only_listed_rows():
    mirror = WatermarkMirror()
    for row_id in (1, 2, 3):
        mirror.record_failure("blog_posts", row_id)
    mirror.record_failure("other", 2)

    mirror.retain_attempts("blog_posts", [2])

    assert [mirror.failed_attempts("blog_posts", i) for i in (1, 2, 3)] == [0, 1, 0]
    assert mirror.failed_attempts("other", 2) == 1


def test_failure_counters():
    mirror = WatermarkMirror()
    assert mirror.record_failure("t", 5) == 1
    assert mirror.record_failure("t", 5) == 2
    mirror.clear_attempts("t", 5)
    assert mirror.failed_attempts("t", 5) == 0


def test_snapshot_membership_and_retain():
    snapshot = MetricSnapshot()
    snapshot.record(1, 0)
    snapshot.record(2, None)
    snapshot.record(3, 5)

    assert 2 in snapshot
    assert snapshot.get(2) is None
    assert snapshot.get(9, "missing") == "missing"
    with pytest.raises(KeyError):
        snapshot.get(9)

    snapshot.retain([1, 3])
    assert snapshot.as_dict() == {1: 0, 3: 5}

    snapshot.clear()
    assert len(snapshot) == 0
