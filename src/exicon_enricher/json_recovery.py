"""Recover tool-call arguments from malformed or truncated JSON.

When a completion stops at the token limit the `arguments` string ends in the
middle of a result object. The repair first cuts the text back to the end
of the last complete result object, closes whatever is still open, and tries
again. Other balanced positions are tried only after that, and never one that
would leave a half-written result in place. Only a bounded number of cut
points is tried, and a repair is only accepted when it yields at least one
result object.

Example:
    >>> parse_tool_arguments('{"results": [{"external_id": "a"}, {"ext', "length")
    {'results': [{'external_id': 'a'}]}
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Final

logger = logging.getLogger(__name__)

MAX_REPAIR_ATTEMPTS: Final[int] = 8

_CLOSERS: Final[dict[str, str]] = {"{": "}", "[": "]"}

# Open brackets while inside the top-level `results` array
_RESULTS_STACK: Final[list[str]] = ["{", "["]


@dataclass(frozen=True)
class CutPoint:
    """A position just after a closed value, and the text needed to close the rest.

    `result_boundary` marks the close of an object directly inside `results`;
    `inside_result` marks a close nested in a result object that is still open
    at that position, so cutting there would keep a partial result.
    """

    end: int
    closers: str
    result_boundary: bool = False
    inside_result: bool = False


def _loads_object(text: str) -> dict[str, Any] | None:
    try:
        value = json.loads(text)
    except json.JSONDecodeError:
        return None
    return value if isinstance(value, dict) else None


def _has_results(value: dict[str, Any] | None) -> bool:
    if value is None:
        return False
    results = value.get("results")
    return isinstance(results, list) and any(isinstance(r, dict) for r in results)


def scan_cut_points(text: str) -> list[CutPoint]:
    """List every position where a `}` or `]` closed a value outside a string.

    Each cut point carries the closing brackets that would balance the text
    truncated at that position.
    """
    stack: list[str] = []
    points: list[CutPoint] = []
    in_string = False
    escaped = False

    for i, ch in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue

        if ch == '"':
            in_string = True
        elif ch in _CLOSERS:
            stack.append(ch)
        elif ch in "}]":
            if not stack or _CLOSERS[stack[-1]] != ch:
                # Mismatched bracket; nothing after this point is trustworthy
                break
            stack.pop()
            if stack:
                closers = "".join(_CLOSERS[opener] for opener in reversed(stack))
                points.append(
                    CutPoint(
                        end=i + 1,
                        closers=closers,
                        result_boundary=ch == "}" and stack == _RESULTS_STACK,
                        inside_result=stack[:3] == [*_RESULTS_STACK, "{"],
                    )
                )

    return points


def repair_truncated(text: str, max_attempts: int = MAX_REPAIR_ATTEMPTS) -> dict[str, Any] | None:
    """Close a truncated JSON object at the latest cut point that parses.

    Cut points after a complete result object are tried first, latest first.
    The remaining balanced positions follow, skipping any that fall inside a
    result object that never closed.

    Returns:
        The repaired object, or None when no candidate yields any result
    """
    points = scan_cut_points(text)
    boundaries = [p for p in reversed(points) if p.result_boundary]
    fallback = [p for p in reversed(points) if not (p.result_boundary or p.inside_result)]
    for attempt, point in enumerate(boundaries + fallback, 1):
        if attempt > max_attempts:
            break
        candidate = text[: point.end] + point.closers
        repaired = _loads_object(candidate)
        if _has_results(repaired):
            logger.info(
                f"Repaired truncated arguments after {attempt} attempt(s): "
                f"kept {point.end}/{len(text)} characters"
            )
            return repaired
    return None


def salvage_results(text: str) -> dict[str, Any] | None:
    """Collect every complete object found directly inside the `results` array."""
    key = text.find('"results"')
    if key == -1:
        return None
    start = text.find("[", key)
    if start == -1:
        return None

    objects: list[dict[str, Any]] = []
    depth = 0
    obj_start = -1
    in_string = False
    escaped = False

    for i in range(start + 1, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue

        if ch == '"':
            in_string = True
        elif ch == "{":
            if depth == 0:
                obj_start = i
            depth += 1
        elif ch == "}" and depth > 0:
            depth -= 1
            if depth == 0:
                obj = _loads_object(text[obj_start : i + 1])
                if obj is not None:
                    objects.append(obj)
        elif ch == "]" and depth == 0:
            break

    if not objects:
        return None
    logger.info(f"Salvaged {len(objects)} complete result object(s) from malformed arguments")
    return {"results": objects}


def parse_tool_arguments(raw: str | None, finish_reason: str | None = None) -> dict[str, Any] | None:
    """Parse a tool call's argument string, repairing it when possible.

    Args:
        raw: The `arguments` string of the tool call
        finish_reason: The completion's finish reason; "length" enables truncation repair

    Returns:
        The parsed object, or None when nothing usable could be recovered
    """
    if not raw or not raw.strip():
        return None

    parsed = _loads_object(raw)
    if parsed is not None:
        return parsed

    if finish_reason == "length":
        logger.warning(f"Arguments truncated at {len(raw)} characters; attempting repair")
        repaired = repair_truncated(raw)
        if repaired is not None:
            return repaired

    salvaged = salvage_results(raw)
    if salvaged is not None:
        return salvaged

    logger.error(f"Could not recover tool arguments (finish_reason={finish_reason}): {raw[:200]!r}")
    return None
