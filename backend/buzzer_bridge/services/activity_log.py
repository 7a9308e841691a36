"""Append-only activity log stored as JSON Lines."""
from __future__ import annotations

import json
import os
import threading
from collections import deque
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Protocol

_LOG_ENV_VAR = "BRIDGE_ACTIVITY_LOG_PATH"
_DEFAULT_LOG_PATH = Path.home() / ".cache" / "osc-buzzer" / "activity.jsonl"


class ActivityLog(Protocol):
    def append(self, record: Mapping[str, Any]) -> None:
        ...

    def recent(self, limit: int = 100) -> List[Dict[str, Any]]:
        ...


def _resolve_path(path: Optional[os.PathLike[str] | str] = None) -> Path:
    if path is not None:
        return Path(path).expanduser().resolve()

    env_override = os.getenv(_LOG_ENV_VAR)
    if env_override:
        return Path(env_override).expanduser().resolve()

    return _DEFAULT_LOG_PATH


class JsonLinesActivityLog:
    """One JSON object per line; writes raise ``OSError`` to the caller."""

    def __init__(self, path: Optional[os.PathLike[str] | str] = None) -> None:
        self._path = _resolve_path(path)
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def append(self, record: Mapping[str, Any]) -> None:
        line = json.dumps(dict(record), default=str)
        with self._lock:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("a", encoding="utf-8") as handle:
                handle.write(line + "\n")

    def recent(self, limit: int = 100) -> List[Dict[str, Any]]:
        """Return up to ``limit`` records, newest first."""

        limit = max(1, limit)
        tail: "deque[str]" = deque(maxlen=limit)
        try:
            with self._lock, self._path.open("r", encoding="utf-8") as handle:
                for line in handle:
                    if line.strip():
                        tail.append(line)
        except FileNotFoundError:
            return []

        records: List[Dict[str, Any]] = []
        for line in reversed(tail):
            try:
                payload = json.loads(line)
            except json.JSONDecodeError:
                continue
            if isinstance(payload, dict):
                records.append(payload)
        return records


__all__ = ["ActivityLog", "JsonLinesActivityLog"]
