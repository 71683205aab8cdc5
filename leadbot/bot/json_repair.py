"""
Best-effort parsing of the oracle's JSON output.

Order, first success wins:
  1. the raw text as a JSON object
  2. fences stripped, first "{" to last "}"
  3. one repair call to the oracle, parsed with 1 and 2
No further retries: a turn costs at most two oracle calls.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Any, Optional, Protocol
import json
import logging
import re

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```json|```", re.IGNORECASE)


class Repairer(Protocol):
    async def repair(self, raw: str, hint: str) -> Optional[str]: ...


@dataclass
class RepairOutcome:
    parsed: Optional[dict[str, Any]]
    repair_attempted: bool
    raw: str
    repair_raw: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.parsed is not None


def _loads_object(text: str) -> Optional[dict[str, Any]]:
    try:
        obj = json.loads(text)
    except (json.JSONDecodeError, TypeError, ValueError, RecursionError):
        return None
    return obj if isinstance(obj, dict) else None


def extract_first_json_object(raw: Optional[str]) -> str:
    s = (raw or "").strip()
    if not s:
        return ""
    no_fences = _FENCE_RE.sub("", s).strip()
    first = no_fences.find("{")
    last = no_fences.rfind("}")
    if first == -1 or last == -1 or last <= first:
        return ""
    return no_fences[first:last + 1]


def safe_parse_model_json(raw: Optional[str]) -> Optional[dict[str, Any]]:
    s = (raw or "").strip()
    if not s:
        return None

    parsed = _loads_object(s)
    if parsed is not None:
        return parsed

    candidate = extract_first_json_object(s)
    if candidate:
        return _loads_object(candidate)
    return None


async def parse_with_repair(raw: Optional[str], oracle: Repairer, hint: str) -> RepairOutcome:
    raw = raw or ""
    parsed = safe_parse_model_json(raw)
    if parsed is not None:
        return RepairOutcome(parsed=parsed, repair_attempted=False, raw=raw)

    logger.warning(json.dumps({"event": "oracle_json_parse_fail", "raw": raw[:500]}, ensure_ascii=False))

    try:
        repair_raw = await oracle.repair(raw, hint)
    except Exception as e:
        logger.error("oracle repair call failed: %s", e)
        repair_raw = None

    parsed = safe_parse_model_json(repair_raw)
    if parsed is None:
        logger.warning(json.dumps({
            "event": "oracle_json_repair_fail",
            "repair_raw": (repair_raw or "")[:500],
        }, ensure_ascii=False))

    return RepairOutcome(parsed=parsed, repair_attempted=True, raw=raw, repair_raw=repair_raw)
