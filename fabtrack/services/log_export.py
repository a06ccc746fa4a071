from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any


def render_log_entries(payload: Any) -> list[str]:
    """Text blocks for the log viewer, one per list element."""
    if payload is None:
        return []
    if isinstance(payload, list):
        return [_render_entry(item) for item in payload]
    return [_render_entry(payload)]


def _render_entry(entry: Any) -> str:
    if isinstance(entry, (dict, list)):
        return json.dumps(entry, indent=2, ensure_ascii=False, default=str)
    return str(entry)


def export_filename(now: datetime | None = None) -> str:
    moment = now or datetime.now(timezone.utc)
    stamp = moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
    return f"logs-{stamp}.json"


def export_body(payload: Any) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False, default=str)
