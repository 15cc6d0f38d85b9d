from __future__ import annotations

from app.services.seen import SeenIdHistory


def test_push_inserts_most_recent_first() -> None:
    history = SeenIdHistory(5)
    for video_id in ("a", "b", "c"):
        history.push(video_id)

    assert history.snapshot() == ["c", "b", "a"]


def test_push_of_known_id_keeps_position() -> None:
    history = SeenIdHistory(5, ["b", "a"])
    history.push("a")

    assert history.snapshot() == ["b", "a"]


def test_history_is_capped_by_dropping_oldest() -> None:
    history = SeenIdHistory(3)
    for video_id in ("a", "b", "c", "d"):
        history.push(video_id)

    assert history.snapshot() == ["d", "c", "b"]
    assert "a" not in history
    assert len(history) == 3


def test_initial_ids_are_deduplicated_and_trimmed() -> None:
    history = SeenIdHistory(2, ["x", "x", "y", "z"])
    assert history.snapshot() == ["x", "y"]


def test_resize_trims_tail_and_zero_disables_history() -> None:
    history = SeenIdHistory(5, ["a", "b", "c"])
    history.resize(1)
    assert history.snapshot() == ["a"]

    history.resize(0)
    history.push("d")
    assert len(history) == 0
    assert history.contains("d") is False


def test_pushing_twice_equals_pushing_once() -> None:
    once = SeenIdHistory(10, ["a", "b"])
    twice = SeenIdHistory(10, ["a", "b"])
    once.push("c")
    twice.push("c")
    twice.push("c")

    assert once.snapshot() == twice.snapshot() == ["c", "a", "b"]


def test_size_never_exceeds_cap_for_long_sequences() -> None:
    history = SeenIdHistory(7)
    for index in range(200):
        history.push(f"id-{index % 23}")
        assert len(history) <= 7
    assert len(set(history)) == len(history)
