"""Style mappings (category, scale, threshold) and their resolution to style values."""
from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Any, ClassVar, Dict, Iterable, Mapping, Optional, Sequence, Tuple, Union

from .errors import (
    EmptyPathError,
    EmptyThresholdsError,
    InvalidMappingError,
    MappingKindMismatchError,
)
from .values import split_path, stringify, to_number

HEX_COLOR_RE = re.compile(r"^#[0-9A-Fa-f]{6}$")

DEFAULT_COLORS: Tuple[str, ...] = (
    "#3b82f6",
    "#22c55e",
    "#f97316",
    "#a855f7",
    "#ef4444",
    "#14b8a6",
    "#eab308",
    "#ec4899",
    "#6366f1",
    "#84cc16",
)
DEFAULT_FALLBACK_COLOR = "#9ca3af"


@dataclass(frozen=True)
class Palette:
    """Colors handed out to categories in order, plus the unmatched-value color."""

    colors: Tuple[str, ...] = DEFAULT_COLORS
    fallback: str = DEFAULT_FALLBACK_COLOR

    def __post_init__(self) -> None:
        object.__setattr__(self, "colors", tuple(self.colors))
        if not self.colors:
            raise InvalidMappingError("palette requires at least one color")

    def color_for(self, index: int) -> str:
        return self.colors[index % len(self.colors)]


DEFAULT_PALETTE = Palette()


def _check_target(kind: str, property: str, field_path: str) -> None:
    if not property:
        raise InvalidMappingError(f"{kind} mapping requires a target property")
    try:
        split_path(field_path or "")
    except EmptyPathError as exc:
        raise InvalidMappingError(
            f'{kind} mapping for "{property}" requires a non-empty field path'
        ) from exc


@dataclass(frozen=True)
class CategoryMapping:
    property: str
    field: str
    categories: Mapping[str, str]
    fallback: Optional[str] = None
    omit_unmatched: bool = False

    kind: ClassVar[str] = "category"

    def __post_init__(self) -> None:
        _check_target(self.kind, self.property, self.field)
        table: Dict[str, str] = {}
        for key, style in dict(self.categories).items():
            table[stringify(key)] = style
        object.__setattr__(self, "categories", table)

    @classmethod
    def from_values(
        cls,
        property: str,
        field: str,
        values: Iterable[Any],
        *,
        palette: Palette = DEFAULT_PALETTE,
        fallback: Optional[str] = None,
    ) -> "CategoryMapping":
        table: Dict[str, str] = {}
        for value in values:
            if value is None:
                continue
            key = stringify(value)
            if key not in table:
                table[key] = palette.color_for(len(table))
        return cls(property, field, table, fallback=fallback)


@dataclass(frozen=True)
class ScaleMapping:
    property: str
    field: str
    domain: Tuple[float, float]
    range: Tuple[Any, Any]

    kind: ClassVar[str] = "scale"

    def __post_init__(self) -> None:
        _check_target(self.kind, self.property, self.field)
        domain = _pair_or_none(self.domain)
        value_range = _pair_or_none(self.range)
        if domain is None or value_range is None:
            raise InvalidMappingError(
                f'scale mapping for "{self.property}" needs a [min, max] domain and a two-element range'
            )
        try:
            lo, hi = (_strict_number(bound) for bound in domain)
        except ValueError as exc:
            raise InvalidMappingError(
                f'scale mapping for "{self.property}" has a non-numeric domain: {list(domain)!r}'
            ) from exc
        if lo > hi:
            raise InvalidMappingError(
                f'scale mapping for "{self.property}" has domain min {lo} greater than max {hi}'
            )
        if not self._is_color_range(value_range) and not self._is_numeric_range(value_range):
            raise InvalidMappingError(
                f'scale mapping for "{self.property}" range must be two numbers or two #rrggbb colors, '
                f"got {list(value_range)!r}"
            )
        object.__setattr__(self, "domain", (lo, hi))
        object.__setattr__(self, "range", value_range)

    @staticmethod
    def _is_color_range(value_range: Sequence[Any]) -> bool:
        return all(is_hex_color(bound) for bound in value_range)

    @staticmethod
    def _is_numeric_range(value_range: Sequence[Any]) -> bool:
        try:
            for bound in value_range:
                _strict_number(bound)
        except ValueError:
            return False
        return True

    @property
    def is_color(self) -> bool:
        return self._is_color_range(self.range)

    @property
    def numeric_range(self) -> Tuple[float, float]:
        lo, hi = self.range
        return _strict_number(lo), _strict_number(hi)

    def position(self, value: Any) -> float:
        lo, hi = self.domain
        clamped = min(max(to_number(value), lo), hi)
        if hi == lo:
            return 0.0
        return (clamped - lo) / (hi - lo)


@dataclass(frozen=True)
class Threshold:
    value: float
    style: str


@dataclass(frozen=True)
class ThresholdMapping:
    property: str
    field: str
    thresholds: Tuple[Threshold, ...]

    kind: ClassVar[str] = "threshold"

    def __post_init__(self) -> None:
        _check_target(self.kind, self.property, self.field)
        if not _is_list_like(self.thresholds):
            raise InvalidMappingError(
                f'threshold mapping for "{self.property}" needs a list of breakpoints, '
                f"got {type(self.thresholds).__name__}"
            )
        breakpoints = []
        for item in self.thresholds:
            if isinstance(item, Threshold):
                value, style = item.value, item.style
            elif isinstance(item, Mapping):
                value, style = item.get("value"), item.get("style")
            elif _is_list_like(item) and len(item) == 2:
                value, style = item
            else:
                raise InvalidMappingError(
                    f'threshold mapping for "{self.property}" expects value/style pairs, got {item!r}'
                )
            if not isinstance(style, str) or not style:
                raise InvalidMappingError(
                    f'threshold mapping for "{self.property}" breakpoint {value!r} needs a style string'
                )
            try:
                number = _strict_number(value)
            except ValueError as exc:
                raise InvalidMappingError(
                    f'threshold mapping for "{self.property}" has a non-numeric breakpoint: {value!r}'
                ) from exc
            breakpoints.append(Threshold(number, style))
        if not breakpoints:
            raise EmptyThresholdsError(
                f'threshold mapping for "{self.property}" requires at least one breakpoint'
            )
        object.__setattr__(self, "thresholds", tuple(breakpoints))

    def descending(self) -> Tuple[Threshold, ...]:
        return tuple(sorted(self.thresholds, key=lambda item: item.value, reverse=True))


StyleMapping = Union[CategoryMapping, ScaleMapping, ThresholdMapping]


def _is_list_like(value: Any) -> bool:
    return isinstance(value, Sequence) and not isinstance(value, (str, bytes))


def _pair_or_none(value: Any) -> Optional[Tuple[Any, Any]]:
    if not _is_list_like(value) or len(value) != 2:
        return None
    return tuple(value)


def _strict_number(value: Any) -> float:
    if isinstance(value, bool):
        raise ValueError(f"not a number: {value!r}")
    if isinstance(value, (int, float)):
        number = value
    else:
        number = float(str(value).strip())
    if isinstance(number, float) and (math.isnan(number) or math.isinf(number)):
        raise ValueError(f"not a finite number: {value!r}")
    return number


def _kind_of(mapping: Any) -> str:
    return getattr(mapping, "kind", type(mapping).__name__)


def resolve(mapping: StyleMapping, value: Any, *, palette: Palette = DEFAULT_PALETTE) -> Any:
    if isinstance(mapping, CategoryMapping):
        return resolve_category(mapping, value, palette=palette)
    if isinstance(mapping, ScaleMapping):
        return resolve_scale(mapping, value)
    if isinstance(mapping, ThresholdMapping):
        return resolve_threshold(mapping, value)
    raise MappingKindMismatchError(f"unsupported style mapping: {_kind_of(mapping)}")


def resolve_category(
    mapping: CategoryMapping, value: Any, *, palette: Palette = DEFAULT_PALETTE
) -> Optional[str]:
    if not isinstance(mapping, CategoryMapping):
        raise MappingKindMismatchError(
            f"category resolution requested for a {_kind_of(mapping)} mapping"
        )
    if value is None:
        return None
    key = stringify(value)
    if key in mapping.categories:
        return mapping.categories[key]
    if mapping.omit_unmatched:
        return None
    if mapping.fallback is not None:
        return mapping.fallback
    return palette.fallback


def resolve_scale(mapping: ScaleMapping, value: Any) -> Any:
    if not isinstance(mapping, ScaleMapping):
        raise MappingKindMismatchError(
            f"scale resolution requested for a {_kind_of(mapping)} mapping"
        )
    if value is None:
        return None
    t = mapping.position(value)
    if mapping.is_color:
        return interpolate_color(mapping.range[0], mapping.range[1], t)
    lo, hi = mapping.numeric_range
    return lo + t * (hi - lo)


def resolve_threshold(mapping: ThresholdMapping, value: Any) -> Optional[str]:
    if not isinstance(mapping, ThresholdMapping):
        raise MappingKindMismatchError(
            f"threshold resolution requested for a {_kind_of(mapping)} mapping"
        )
    if value is None:
        return None
    number = to_number(value)
    ordered = mapping.descending()
    for cut in ordered:
        if cut.value <= number:
            return cut.style
    return ordered[-1].style


def is_hex_color(value: Any) -> bool:
    return isinstance(value, str) and HEX_COLOR_RE.match(value) is not None


def parse_hex_color(value: str) -> Tuple[int, int, int]:
    if not is_hex_color(value):
        raise InvalidMappingError(f"not a #rrggbb color: {value!r}")
    return int(value[1:3], 16), int(value[3:5], 16), int(value[5:7], 16)


def interpolate_color(start: str, end: str, t: float) -> str:
    # Channel-wise linear RGB; endpoints come back verbatim.
    if t <= 0:
        return start
    if t >= 1:
        return end
    channels = []
    for a, b in zip(parse_hex_color(start), parse_hex_color(end)):
        channel = math.floor(a + (b - a) * t + 0.5)
        channels.append(min(255, max(0, channel)))
    return "#" + "".join(f"{channel:02x}" for channel in channels)


def format_style_number(value: float) -> str:
    text = f"{value:.2f}".rstrip("0").rstrip(".")
    return "0" if text in ("-0", "") else text


__all__ = [
    "CategoryMapping",
    "DEFAULT_PALETTE",
    "Palette",
    "ScaleMapping",
    "StyleMapping",
    "Threshold",
    "ThresholdMapping",
    "format_style_number",
    "interpolate_color",
    "is_hex_color",
    "parse_hex_color",
    "resolve",
    "resolve_category",
    "resolve_scale",
    "resolve_threshold",
]
