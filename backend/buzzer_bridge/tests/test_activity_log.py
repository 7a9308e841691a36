from __future__ import annotations

from pathlib import Path

from backend.buzzer_bridge.services.activity_log import JsonLinesActivityLog


def test_recent_returns_newest_first(tmp_path: Path) -> None:
    log = JsonLinesActivityLog(tmp_path / "nested" / "activity.jsonl")
    for index in range(5):
        log.append({"event_type": "osc_sent", "index": index})

    assert [record["index"] for record in log.recent(3)] == [4, 3, 2]


def test_recent_on_missing_file_is_empty(tmp_path: Path) -> None:
    assert JsonLinesActivityLog(tmp_path / "missing.jsonl").recent() == []


def test_corrupt_lines_are_skipped(tmp_path: Path) -> None:
    path = tmp_path / "activity.jsonl"
    log = JsonLinesActivityLog(path)
    log.append({"index": 1})
    with path.open("a", encoding="utf-8") as handle:
        handle.write("{truncated\n")
    log.append({"index": 2})

    assert [record["index"] for record in log.recent()] == [2, 1]


def test_default_path_comes_from_environment(tmp_path: Path) -> None:
    log = JsonLinesActivityLog()
    assert log.path == (tmp_path / "activity.jsonl").resolve()
