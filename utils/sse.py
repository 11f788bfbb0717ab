"""Server-Sent Events helpers."""

from __future__ import annotations

import json
import queue
from typing import Any


def format_sse(data: dict[str, Any] | str, event: str | None = None) -> str:
    """Format a payload as a single SSE frame."""
    if isinstance(data, dict):
        data = json.dumps(data)
    msg = f"data: {data}\n\n"
    if event:
        msg = f"event: {event}\n{msg}"
    return msg


def clear_queue(q: queue.Queue) -> int:
    """Drain a queue without blocking, returning the number of items removed."""
    count = 0
    while True:
        try:
            q.get_nowait()
            count += 1
        except queue.Empty:
            break
    return count
