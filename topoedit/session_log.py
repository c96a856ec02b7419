from __future__ import annotations

from collections import Counter, deque
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List
import json


@dataclass
class SessionEvent:
    ts: str
    kind: str
    data: Dict[str, Any]


class SessionLogger:
    """Bounded record of what happened in an editor session.

    Taps, menu commands, host messages, saves and lock transitions land here.
    Once ``max_events`` is reached the oldest entries fall off and are counted
    in ``dropped``. The dump is meant to be attached to bug reports.
    """

    SCHEMA = "topo-editor-session-log/v1"

    def __init__(self, max_events: int = 5000):
        self.max_events = max_events
        self.events: Deque[SessionEvent] = deque(maxlen=max_events)
        self.dropped = 0

    def add(self, kind: str, **data: Any) -> None:
        if len(self.events) == self.max_events:
            self.dropped += 1
        stamp = datetime.now(timezone.utc).isoformat()
        self.events.append(SessionEvent(ts=stamp, kind=str(kind), data=dict(data)))

    def of_kind(self, kind: str) -> List[SessionEvent]:
        return [e for e in self.events if e.kind == kind]

    def counts(self) -> Dict[str, int]:
        return dict(Counter(e.kind for e in self.events))

    def clear(self) -> None:
        self.events.clear()
        self.dropped = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "schema": self.SCHEMA,
            "eventCount": len(self.events),
            "dropped": self.dropped,
            "counts": self.counts(),
            "events": [asdict(e) for e in self.events],
        }

    def save_json(self, path: str) -> None:
        # event payloads may carry enums or ids that are not plain JSON
        with open(path, "w", encoding="utf-8") as fh:
            json.dump(self.to_dict(), fh, indent=2, ensure_ascii=False, default=str)
