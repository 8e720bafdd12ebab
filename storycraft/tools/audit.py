from __future__ import annotations

from typing import Any, Dict, List

from storycraft.state.models import AuditEvent, now_iso


def make_event(event: str, details: Dict[str, Any] | None = None) -> AuditEvent:
    return {
        "ts": now_iso(),
        "event": event,
        "details": details or {},
    }


def record(log: List[AuditEvent], event: str, details: Dict[str, Any] | None = None) -> AuditEvent:
    item = make_event(event, details)
    log.append(item)
    return item
