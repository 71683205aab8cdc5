"""
Structured JSON logging for conversation turns.

Logs one minimal, flat record per inbound turn, separate from operational logs.
"""
from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Optional

# Dedicated logger for trace events (separate from operational logs)
_trace_logger: Optional[logging.Logger] = None


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        # record.msg is already a dict for trace records
        if isinstance(record.msg, dict):
            return json.dumps(record.msg, default=str, ensure_ascii=False)
        return super().format(record)


def _get_trace_logger() -> logging.Logger:
    """Get or create the trace logger with JSON formatting."""
    global _trace_logger
    if _trace_logger is not None:
        return _trace_logger

    _trace_logger = logging.getLogger("leadbot.trace")
    _trace_logger.setLevel(logging.INFO)
    _trace_logger.propagate = False

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(logging.INFO)
    handler.setFormatter(JsonFormatter())
    _trace_logger.addHandler(handler)

    return _trace_logger


def log_turn(
    *,
    contact_id: str,
    route: str,
    duration_ms: int,
    pending_before: Optional[str] = None,
    pending_after: Optional[str] = None,
    filled: Optional[list[str]] = None,
    prefilled: bool = False,
    repair_attempted: bool = False,
    audio: bool = False,
    notified: Optional[bool] = None,
) -> None:
    """
    Log a single structured record for a conversation turn.

    Args:
        contact_id: Provider contact identity
        route: Outcome of the turn (e.g. "collecting", "closed", "ack_closed")
        duration_ms: Wall time for the whole turn
        pending_before / pending_after: Pending slot around the turn
        filled: Slot names that went from empty to filled this turn
        prefilled: Whether the heuristic pre-fill filled a slot
        repair_attempted: Whether the JSON repair call was issued
        audio: Whether the input came from a transcribed voice note
        notified: Whether the admin notification was attempted this turn
    """
    logger = _get_trace_logger()

    record: dict[str, Any] = {
        "type": "turn",
        "ts": datetime.now(timezone.utc).isoformat(),
        "contact_id": contact_id,
        "route": route,
        "duration_ms": duration_ms,
    }

    # Optional fields (only include if present)
    if pending_before is not None:
        record["pending_before"] = pending_before
    if pending_after is not None:
        record["pending_after"] = pending_after
    if filled:
        record["filled"] = filled
    if prefilled:
        record["prefilled"] = True
    if repair_attempted:
        record["repair_attempted"] = True
    if audio:
        record["audio"] = True
    if notified is not None:
        record["notified"] = notified

    logger.info(record)
