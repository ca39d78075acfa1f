"""
Tolerant result repair.

Model output is supposed to be a JSON object, but chunks get truncated at the
output token limit and some responses arrive wrapped in prose or markdown
fences. repair_transactions() recovers as many complete transaction objects
as possible and never raises.
"""

import json
import logging
import re
from typing import Any

logger = logging.getLogger(__name__)

_FENCE = re.compile(r"```(?:json)?", re.IGNORECASE)

# Keys under which a transaction list may be wrapped
_ENVELOPE_PATHS = (
    ("transactions",),
    ("movimenti",),
    ("data", "transactions"),
    ("result", "transactions"),
)


def unwrap_payload(payload: Any) -> list:
    """Return the transaction list from a bare array or a known envelope."""
    if isinstance(payload, list):
        return payload
    if not isinstance(payload, dict):
        return []
    for path in _ENVELOPE_PATHS:
        node: Any = payload
        for key in path:
            node = node.get(key) if isinstance(node, dict) else None
        if isinstance(node, list):
            return node
    return []


def _try_parse(text: str) -> list | None:
    try:
        return unwrap_payload(json.loads(text))
    except (json.JSONDecodeError, ValueError):
        return None


def repair_transactions(text: str) -> list:
    """
    Recover a transaction list from raw model output.

    Tried in order, first success wins:
    1. whole text (code fences removed)
    2. outermost [...] span
    3. outermost {...} span
    4. everything up to the last complete object ("},") closed with "]"

    Args:
        text: Raw model output

    Returns:
        List of candidate dicts (possibly empty)
    """
    cleaned = _FENCE.sub("", text or "").strip()
    if not cleaned:
        return []

    parsed = _try_parse(cleaned)
    if parsed is not None:
        return parsed

    array_start = cleaned.find("[")
    array_end = cleaned.rfind("]")
    if array_start >= 0 and array_end > array_start:
        parsed = _try_parse(cleaned[array_start : array_end + 1])
        if parsed is not None:
            return parsed

    obj_start = cleaned.find("{")
    obj_end = cleaned.rfind("}")
    if obj_start >= 0 and obj_end > obj_start:
        parsed = _try_parse(cleaned[obj_start : obj_end + 1])
        if parsed is not None:
            return parsed

    # Truncated output: keep the complete objects before the cut
    last_complete = cleaned.rfind("},")
    if last_complete > 0:
        candidate = cleaned[: last_complete + 1] + "]"
        parsed = _try_parse(candidate)
        if parsed is None:
            # Truncated inside an envelope object: close it as well
            parsed = _try_parse(candidate + "}")
        if parsed is not None:
            logger.debug("Recovered %d items from truncated output", len(parsed))
            return parsed

    logger.debug("Could not repair model output (%d chars)", len(cleaned))
    return []
