"""Dotted-path evaluation, value coercion and ${...} expansion over data records."""
from __future__ import annotations

import json
import math
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, FrozenSet, List, Optional

from .errors import EmptyPathError

_VARIABLE_RE = re.compile(r"\$\{([^}]+)\}")
_INT_LITERAL_RE = re.compile(r"^[+-]?\d+$")

TRUE_STRINGS = frozenset({"true", "yes", "1"})
FALSE_STRINGS = frozenset({"false", "no", "0"})


@dataclass(frozen=True)
class PathResult:
    value: Any
    success: bool
    error: Optional[str] = None


def split_path(path: str) -> List[str]:
    segments = [segment for segment in path.split(".") if segment]
    if not segments:
        raise EmptyPathError(f"empty variable path: {path!r}")
    return segments


def evaluate_path(
    path: str,
    record: Any,
    *,
    safe_navigation: bool = True,
    default: Any = None,
) -> PathResult:
    """Resolve ``path`` (e.g. ``users.0.name``) against ``record``.

    Missing data never raises: with safe navigation the ``default`` comes back
    as a successful result, without it a failed result names the segment.
    """
    current = record
    for segment in split_path(path):
        if current is None:
            if safe_navigation:
                return PathResult(default, True)
            return PathResult(None, False, f"cannot read '{segment}' of None")
        if isinstance(current, Mapping):
            if segment not in current:
                if safe_navigation:
                    return PathResult(default, True)
                return PathResult(None, False, f"property '{segment}' not found")
            current = current[segment]
            continue
        if _is_sequence(current):
            index = _sequence_index(segment, len(current))
            if index is None:
                if safe_navigation:
                    return PathResult(default, True)
                return PathResult(
                    None, False, f"index '{segment}' not found in sequence of length {len(current)}"
                )
            current = current[index]
            continue
        if safe_navigation:
            return PathResult(default, True)
        return PathResult(
            None, False, f"cannot read '{segment}' of {type(current).__name__} value"
        )
    return PathResult(current, True)


def _is_sequence(value: Any) -> bool:
    return isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray))


def _sequence_index(segment: str, length: int) -> Optional[int]:
    if not segment.isdigit():
        return None
    index = int(segment)
    if index >= length:
        return None
    return index


def stringify(value: Any, _seen: FrozenSet[int] = frozenset()) -> str:
    """Text form of ``value``. A container met again inside itself renders as ``""``."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if value.is_integer():
            return str(int(value))
        return repr(value)
    if isinstance(value, str):
        return value
    if (isinstance(value, Mapping) or _is_sequence(value)) and id(value) in _seen:
        return ""
    if isinstance(value, Mapping):
        return json.dumps(_plain(value, _seen), separators=(",", ":"), default=str)
    if _is_sequence(value):
        seen = _seen | {id(value)}
        return ",".join(stringify(item, seen) for item in value)
    return str(value)


def _plain(value: Any, seen: FrozenSet[int]) -> Any:
    if not isinstance(value, Mapping) and not _is_sequence(value):
        return value
    if id(value) in seen:
        return ""
    seen = seen | {id(value)}
    if isinstance(value, Mapping):
        return {key: _plain(item, seen) for key, item in value.items()}
    return [_plain(item, seen) for item in value]


def to_number(value: Any) -> float:
    if isinstance(value, bool):
        return 1 if value else 0
    if isinstance(value, (int, float)):
        if isinstance(value, float) and math.isnan(value):
            return 0
        return value
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return 0
        if _INT_LITERAL_RE.match(text):
            return int(text)
        try:
            number = float(text)
        except ValueError:
            return 0
        return 0 if math.isnan(number) else number
    return 0


def to_boolean(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in TRUE_STRINGS:
            return True
        if lowered in FALSE_STRINGS:
            return False
        return bool(value)
    if isinstance(value, (int, float)):
        return value != 0 and not math.isnan(value)
    return bool(value)


def coerce(value: Any, target_type: str) -> Any:
    if value is None:
        return None
    if target_type == "string":
        return stringify(value)
    if target_type == "number":
        return to_number(value)
    if target_type == "boolean":
        return to_boolean(value)
    raise ValueError(f"unsupported coercion target: {target_type!r}")


def has_expression(text: Any) -> bool:
    return isinstance(text, str) and _VARIABLE_RE.search(text) is not None


def variable_paths(text: str) -> List[str]:
    return [match.group(1).strip() for match in _VARIABLE_RE.finditer(text)]


def expand_expression(
    template: str,
    record: Any,
    *,
    safe_navigation: bool = True,
    default: Any = None,
) -> str:
    def _substitute(match: "re.Match[str]") -> str:
        result = evaluate_path(
            match.group(1).strip(), record, safe_navigation=safe_navigation, default=default
        )
        if not result.success:
            return ""
        return stringify(result.value)

    return _VARIABLE_RE.sub(_substitute, template)


def expand_expression_value(
    template: Any,
    record: Any,
    *,
    safe_navigation: bool = True,
    default: Any = None,
) -> Any:
    """Like :func:`expand_expression`, but a lone ``${path}`` keeps its raw type."""
    if not isinstance(template, str):
        return template
    match = _VARIABLE_RE.fullmatch(template)
    if match:
        result = evaluate_path(
            match.group(1).strip(), record, safe_navigation=safe_navigation, default=default
        )
        return result.value if result.success else None
    return expand_expression(template, record, safe_navigation=safe_navigation, default=default)


__all__ = [
    "PathResult",
    "coerce",
    "evaluate_path",
    "expand_expression",
    "expand_expression_value",
    "has_expression",
    "split_path",
    "stringify",
    "to_boolean",
    "to_number",
    "variable_paths",
]
