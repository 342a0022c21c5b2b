"""Legend synthesis from style mappings and SVG serialization of legends."""
from __future__ import annotations

import logging
import math
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Tuple

from .errors import LegendConfigError, MappingKindMismatchError
from .mappings import (
    CategoryMapping,
    ScaleMapping,
    StyleMapping,
    ThresholdMapping,
    format_style_number,
    is_hex_color,
    resolve_scale,
)
from .measure import text_width

logger = logging.getLogger(__name__)

LEGEND_POSITIONS: Tuple[str, ...] = (
    "top-left",
    "top-right",
    "bottom-left",
    "bottom-right",
    "top-center",
    "bottom-center",
    "left-center",
    "right-center",
)
# Corners first, then edge centers.
AUTO_POSITION_ORDER: Tuple[str, ...] = (
    "bottom-right",
    "bottom-left",
    "top-right",
    "top-left",
    "bottom-center",
    "top-center",
    "right-center",
    "left-center",
)
DEFAULT_POSITION = "bottom-right"

ENTRY_HEIGHT = 20.0
TITLE_HEIGHT = 20.0
SWATCH_SIZE = 15.0
SWATCH_SPACING = 5.0
SCALE_BAR_MIN_WIDTH = 120.0

COLOR_PROPERTIES = frozenset({"fill", "stroke", "color", "background", "backgroundColor", "textColor"})
OPACITY_PROPERTIES = frozenset({"opacity", "fillOpacity", "fill-opacity", "strokeOpacity", "stroke-opacity"})
STROKE_WIDTH_PROPERTIES = frozenset({"strokeWidth", "stroke-width", "lineWidth"})


@dataclass(frozen=True)
class LegendConfig:
    position: Optional[str] = None
    title: Optional[str] = None
    width: Optional[float] = None
    height: Optional[float] = None
    steps: int = 5
    padding: float = 10.0
    font_size: float = 12.0
    show_border: bool = True
    background_color: str = "white"
    canvas_width: float = 1000.0
    canvas_height: float = 800.0
    margin: float = 20.0

    def __post_init__(self) -> None:
        if self.position is not None and self.position not in LEGEND_POSITIONS:
            raise LegendConfigError(
                f"unknown legend position {self.position!r}; expected one of {', '.join(LEGEND_POSITIONS)}"
            )
        if isinstance(self.steps, bool) or not isinstance(self.steps, int):
            raise LegendConfigError(f"legend steps must be an integer, got {self.steps!r}")
        if self.steps < 2:
            raise LegendConfigError(f"legend steps must be at least 2, got {self.steps}")
        for name in ("width", "height", "padding", "font_size", "canvas_width", "canvas_height", "margin"):
            value = getattr(self, name)
            if value is None and name in ("width", "height"):
                continue
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise LegendConfigError(f"legend {name} must be a number, got {value!r}")
            if name in ("width", "height") and value <= 0:
                raise LegendConfigError(f"legend {name} must be > 0, got {value}")


@dataclass(frozen=True)
class LegendEntry:
    label: str
    style: str
    value: Any = None


@dataclass(frozen=True)
class Bounds:
    x: float
    y: float
    width: float
    height: float


@dataclass(frozen=True)
class Legend:
    type: str
    title: str
    entries: Tuple[LegendEntry, ...]
    position: str
    bounds: Bounds
    property: str
    field: str


@dataclass(frozen=True)
class LegendRequest:
    """A ``legend for <property>:<field>`` declaration."""

    property: str
    field: str
    config: Optional[LegendConfig] = None


def synthesize(
    mapping: StyleMapping,
    config: Optional[LegendConfig] = None,
    *,
    position: Optional[str] = None,
) -> Legend:
    config = config or LegendConfig()
    if isinstance(mapping, ScaleMapping):
        legend_type, entries = "scale", _scale_entries(mapping, config.steps)
    elif isinstance(mapping, CategoryMapping):
        legend_type, entries = "category", _category_entries(mapping)
    elif isinstance(mapping, ThresholdMapping):
        legend_type, entries = "category", _threshold_entries(mapping)
    else:
        raise MappingKindMismatchError(f"cannot build a legend for {type(mapping).__name__}")

    title = config.title or f"{mapping.field} ({mapping.property})"
    placement = config.position or position or DEFAULT_POSITION
    if placement not in LEGEND_POSITIONS:
        raise LegendConfigError(f"unknown legend position {placement!r}")
    width, height = _legend_size(legend_type, title, entries, config)
    bounds = _anchor_bounds(placement, width, height, config)
    logger.debug(
        "legend %r: %d entries at %s (%s x %s)", title, len(entries), placement, width, height
    )
    return Legend(
        type=legend_type,
        title=title,
        entries=tuple(entries),
        position=placement,
        bounds=bounds,
        property=mapping.property,
        field=mapping.field,
    )


def synthesize_all(
    mappings: Sequence[StyleMapping], config: Optional[LegendConfig] = None
) -> List[Legend]:
    return [
        synthesize(mapping, config, position=AUTO_POSITION_ORDER[idx % len(AUTO_POSITION_ORDER)])
        for idx, mapping in enumerate(mappings)
    ]


def synthesize_requested(
    mappings: Sequence[StyleMapping], requests: Sequence[LegendRequest]
) -> List[Legend]:
    legends: List[Legend] = []
    for idx, request in enumerate(requests):
        mapping = find_mapping(mappings, request.property, request.field)
        if mapping is None:
            raise LegendConfigError(
                f"legend for {request.property}:{request.field} matches no style mapping"
            )
        legends.append(
            synthesize(
                mapping,
                request.config,
                position=AUTO_POSITION_ORDER[idx % len(AUTO_POSITION_ORDER)],
            )
        )
    return legends


def find_mapping(
    mappings: Sequence[StyleMapping], property: str, field: str
) -> Optional[StyleMapping]:
    for mapping in mappings:
        if mapping.property == property and mapping.field == field:
            return mapping
    return None


def _scale_entries(mapping: ScaleMapping, steps: int) -> List[LegendEntry]:
    lo, hi = mapping.domain
    entries: List[LegendEntry] = []
    for idx in range(steps):
        if idx == steps - 1:
            value = hi
        else:
            ratio = idx / (steps - 1)
            # 12 significant digits drops float noise such as 0.30000000000000004.
            value = float(f"{lo * (1 - ratio) + hi * ratio:.12g}")
        value = _tidy_number(value)
        style = resolve_scale(mapping, value)
        if not mapping.is_color:
            style = format_style_number(style)
        entries.append(LegendEntry(label=format_label(value), style=style, value=value))
    return entries


def _category_entries(mapping: CategoryMapping) -> List[LegendEntry]:
    return [
        LegendEntry(label=key, style=style, value=key)
        for key, style in mapping.categories.items()
    ]


def _threshold_entries(mapping: ThresholdMapping) -> List[LegendEntry]:
    ordered = mapping.descending()
    entries: List[LegendEntry] = []
    for idx, cut in enumerate(ordered):
        value = _tidy_number(cut.value)
        if idx == 0:
            label = f"≥ {format_label(value)}"
        else:
            label = f"{format_label(value)} - {format_label(_tidy_number(ordered[idx - 1].value))}"
        entries.append(LegendEntry(label=label, style=cut.style, value=value))
    return entries


def _tidy_number(value: float) -> Any:
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def format_label(value: Any) -> str:
    """Shortest text that reads back as ``value``; integers carry no decimals."""
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if value.is_integer():
            return str(int(value))
        return repr(value)
    return str(value)


def _legend_size(
    legend_type: str, title: str, entries: Sequence[LegendEntry], config: LegendConfig
) -> Tuple[float, float]:
    label_width = max((text_width(entry.label, config.font_size) for entry in entries), default=0.0)
    title_width = text_width(title, config.font_size + 2)
    if legend_type == "scale":
        content_width = max(SCALE_BAR_MIN_WIDTH, label_width)
        row_height = SWATCH_SIZE + config.font_size + 8
    else:
        content_width = SWATCH_SIZE + SWATCH_SPACING + label_width
        row_height = ENTRY_HEIGHT
    width = math.ceil(max(content_width, title_width) + 2 * config.padding)
    height = math.ceil(2 * config.padding + TITLE_HEIGHT + len(entries) * row_height)
    if config.width is not None:
        width = config.width
    if config.height is not None:
        height = config.height
    return max(width, 1), max(height, 1)


def _anchor_bounds(position: str, width: float, height: float, config: LegendConfig) -> Bounds:
    margin = config.margin
    left = margin
    right = config.canvas_width - width - margin
    center_x = (config.canvas_width - width) / 2
    top = margin
    bottom = config.canvas_height - height - margin
    center_y = (config.canvas_height - height) / 2
    origins = {
        "top-left": (left, top),
        "top-right": (right, top),
        "bottom-left": (left, bottom),
        "bottom-right": (right, bottom),
        "top-center": (center_x, top),
        "bottom-center": (center_x, bottom),
        "left-center": (left, center_y),
        "right-center": (right, center_y),
    }
    x, y = origins[position]
    return Bounds(x=max(0, x), y=max(0, y), width=width, height=height)


_TEXT_CONTENT_RE = re.compile(r">([^<]+)<")


def _fmt(value: float) -> str:
    if math.isclose(value, round(value)):
        return str(int(round(value)))
    return f"{value:.3f}".rstrip("0").rstrip(".")


def _swatch(
    parent: ET.Element, property: str, style: Any, x: float, y: float, width: float, height: float
) -> None:
    style = str(style)
    geometry = {"x": _fmt(x), "y": _fmt(y), "width": _fmt(width), "height": _fmt(height)}
    outline = {"stroke": "black", "stroke-width": "0.5"}
    if is_hex_color(style) or property in COLOR_PROPERTIES:
        ET.SubElement(parent, "rect", {**geometry, "fill": style, **outline})
    elif property in OPACITY_PROPERTIES:
        ET.SubElement(parent, "rect", {**geometry, "fill": "gray", "opacity": style, **outline})
    elif property in STROKE_WIDTH_PROPERTIES:
        mid = _fmt(y + height / 2)
        ET.SubElement(
            parent,
            "line",
            {"x1": _fmt(x), "y1": mid, "x2": _fmt(x + width), "y2": mid, "stroke": "black", "stroke-width": style},
        )
    else:
        ET.SubElement(parent, "rect", {**geometry, "fill": "gray", **outline})


def _legend_element(legend: Legend, config: Optional[LegendConfig]) -> ET.Element:
    config = config or LegendConfig()
    bounds = legend.bounds
    padding = config.padding
    font_size = config.font_size
    title_height = TITLE_HEIGHT if legend.title else 0.0

    group = ET.Element(
        "g",
        {
            "class": f"legend legend-{legend.type}",
            "transform": f"translate({_fmt(bounds.x)} {_fmt(bounds.y)})",
        },
    )
    panel = {
        "x": "0",
        "y": "0",
        "width": _fmt(bounds.width),
        "height": _fmt(bounds.height),
        "fill": str(config.background_color),
    }
    if config.show_border:
        panel.update({"stroke": "black", "stroke-width": "1"})
    panel["rx"] = "3"
    ET.SubElement(group, "rect", panel)

    if legend.title:
        title = ET.SubElement(
            group,
            "text",
            {
                "x": _fmt(bounds.width / 2),
                "y": _fmt(padding + font_size),
                "font-size": _fmt(font_size + 2),
                "font-weight": "bold",
                "text-anchor": "middle",
            },
        )
        title.text = legend.title

    if legend.type == "scale":
        row_height = SWATCH_SIZE + font_size + 8
        bar_width = max(bounds.width - 2 * padding, 1)
        for idx, entry in enumerate(legend.entries):
            bar_y = padding + title_height + idx * row_height + 2
            _swatch(group, legend.property, entry.style, padding, bar_y, bar_width, SWATCH_SIZE)
            label = ET.SubElement(
                group,
                "text",
                {"x": _fmt(padding), "y": _fmt(bar_y + SWATCH_SIZE + font_size), "font-size": _fmt(font_size)},
            )
            label.text = entry.label
    else:
        for idx, entry in enumerate(legend.entries):
            swatch_y = padding + title_height + idx * ENTRY_HEIGHT
            _swatch(group, legend.property, entry.style, padding, swatch_y, SWATCH_SIZE, SWATCH_SIZE)
            label = ET.SubElement(
                group,
                "text",
                {
                    "x": _fmt(padding + SWATCH_SIZE + SWATCH_SPACING),
                    "y": _fmt(swatch_y + SWATCH_SIZE - 2),
                    "font-size": _fmt(font_size),
                },
            )
            label.text = entry.label
    return group


def _serialize(element: ET.Element) -> str:
    ET.indent(element, space="  ")
    svg_text = ET.tostring(element, encoding="unicode")
    # ElementTree leaves ' unescaped everywhere and " unescaped in text content.
    svg_text = _TEXT_CONTENT_RE.sub(
        lambda match: ">" + match.group(1).replace('"', "&quot;") + "<", svg_text
    )
    return svg_text.replace("'", "&apos;")


def render_legend_svg(legend: Legend, config: Optional[LegendConfig] = None) -> str:
    return _serialize(_legend_element(legend, config))


def render_legends_svg(
    legends: Sequence[Legend],
    config: Optional[LegendConfig] = None,
    *,
    configs: Optional[Sequence[Optional[LegendConfig]]] = None,
) -> str:
    if configs is None:
        configs = [config] * len(legends)
    wrapper = ET.Element("g", {"class": "legends"})
    for legend, cfg in zip(legends, configs):
        wrapper.append(_legend_element(legend, cfg))
    return _serialize(wrapper)


__all__ = [
    "AUTO_POSITION_ORDER",
    "Bounds",
    "LEGEND_POSITIONS",
    "Legend",
    "LegendConfig",
    "LegendEntry",
    "LegendRequest",
    "find_mapping",
    "format_label",
    "render_legend_svg",
    "render_legends_svg",
    "synthesize",
    "synthesize_all",
    "synthesize_requested",
]
