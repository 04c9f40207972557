"""
events.py

Domain event channel. Services publish `EngineEvent`s (prediction produced,
plan completed, ...) into a bounded ring buffer; dashboards read the latest
slice or poll with a cursor (`since`). Delivery beyond this process is not
the engine's concern.
"""
from __future__ import annotations

import threading
from collections import deque
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from homegrid.models.domain import EngineEvent, EventKind


class EventBus:
    def __init__(self, maxlen: int = 600):
        self._buf: deque = deque(maxlen=maxlen)
        self._seq = 0
        self._lock = threading.Lock()

    def publish(
        self,
        kind: EventKind,
        message: str,
        device_id: Optional[int] = None,
        plan_id: Optional[str] = None,
        **payload: Any,
    ) -> Dict[str, Any]:
        event = EngineEvent(
            ts=datetime.now().isoformat(),
            kind=kind,
            message=message,
            device_id=device_id,
            plan_id=plan_id,
            payload=payload,
        ).model_dump(mode="json")
        with self._lock:
            self._seq += 1
            event["seq"] = self._seq
            self._buf.append(event)
        return event

    def latest(self, limit: int = 60, kind: Optional[EventKind] = None) -> List[Dict[str, Any]]:
        with self._lock:
            events = list(self._buf)
        if kind is not None:
            events = [e for e in events if e["kind"] == kind.value]
        return events[-limit:]

    def since(self, seq: int) -> Tuple[int, List[Dict[str, Any]]]:
        """Events newer than cursor `seq`, and the new cursor."""
        with self._lock:
            events = [e for e in self._buf if e["seq"] > seq]
            return self._seq, events
