from pathlib import Path

from gastown import feed


def test_events_append_in_order_and_limit_returns_newest(tmp_path: Path) -> None:
    feed.log_event(tmp_path, feed.EVENT_SLING, "mayor", {"bead": "gp-1"})
    feed.log_event(tmp_path, feed.EVENT_SPAWN, "gastown/witness")
    feed.log_event(tmp_path, feed.EVENT_HOOK, "mayor", {"bead": "gp-2"})

    events = feed.read_events(tmp_path)

    assert [event.type for event in events] == ["sling", "spawn", "hook"]
    assert events[1].payload == {}
    assert [event.type for event in feed.read_events(tmp_path, limit=2)] == ["spawn", "hook"]
    assert feed.read_events(tmp_path, limit=0) == []


def test_unreadable_lines_are_skipped(tmp_path: Path) -> None:
    feed.log_event(tmp_path, feed.EVENT_SLING, "mayor")
    with (tmp_path / ".events.jsonl").open("a", encoding="utf-8") as fh:
        fh.write("garbage\n{\"type\": \"sling\"}\n\n")
    feed.log_event(tmp_path, feed.EVENT_MERGED, "gastown/refinery")

    assert [event.type for event in feed.read_events(tmp_path)] == ["sling", "merged"]


def test_failed_write_returns_none(tmp_path: Path) -> None:
    blocker = tmp_path / "file"
    blocker.write_text("", encoding="utf-8")

    assert feed.log_event(blocker, feed.EVENT_SLING, "mayor") is None


def test_missing_feed_reads_empty(tmp_path: Path) -> None:
    assert feed.read_events(tmp_path) == []
