"""JSONL audit trail for confidence-gated operations."""

from __future__ import annotations

import json
import threading
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Optional


@dataclass
class EventLog:
    """Writes JSONL events and keeps per-type counters.

    With no ``jsonl_path`` only the counters are kept.
    """

    jsonl_path: Optional[Path] = None
    counters: dict[str, int] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def emit(self, event_type: str, payload: dict) -> None:
        record = {
            "timestamp": datetime.now(UTC).isoformat(),
            "event_type": event_type,
            "payload": payload,
        }
        with self._lock:
            self.counters[event_type] = self.counters.get(event_type, 0) + 1
            if self.jsonl_path is None:
                return
            self.jsonl_path.parent.mkdir(parents=True, exist_ok=True)
            with self.jsonl_path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(record, ensure_ascii=True, default=str) + "\n")

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return dict(sorted(self.counters.items()))
