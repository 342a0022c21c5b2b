"""Build engine objects from parsed (dict/JSON) declarations and dump results back."""
from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from .errors import DocumentError
from .legend import Legend, LegendConfig, LegendRequest, synthesize_all, synthesize_requested
from .mappings import CategoryMapping, ScaleMapping, StyleMapping, ThresholdMapping
from .templates import (
    Conditional,
    Diagnostic,
    EdgeBlueprint,
    Element,
    ExpandOptions,
    Loop,
    NodeBlueprint,
    Statement,
    Template,
    TemplateCall,
    expand_all,
)

_LEGEND_KEYS = {
    "position": "position",
    "title": "title",
    "width": "width",
    "height": "height",
    "steps": "steps",
    "padding": "padding",
    "fontSize": "font_size",
    "showBorder": "show_border",
    "backgroundColor": "background_color",
    "canvasWidth": "canvas_width",
    "canvasHeight": "canvas_height",
    "margin": "margin",
}


@dataclass
class Document:
    sources: Dict[str, List[Any]] = field(default_factory=dict)
    templates: List[Template] = field(default_factory=list)
    legends: List[LegendRequest] = field(default_factory=list)
    auto_legends: bool = False
    legend_defaults: Optional[LegendConfig] = None


def _require(data: Mapping[str, Any], key: str, where: str) -> Any:
    if key not in data or data[key] in (None, ""):
        raise DocumentError(f"{where} requires '{key}'")
    return data[key]


def _as_mapping(data: Any, where: str) -> Mapping[str, Any]:
    if not isinstance(data, Mapping):
        raise DocumentError(f"{where} must be an object, got {type(data).__name__}")
    return data


def mapping_from_dict(data: Any) -> StyleMapping:
    data = _as_mapping(data, "style mapping")
    kind = data.get("type")
    where = f"{kind or 'style'} mapping"
    prop = _require(data, "property", where)
    field_path = _require(data, "field", where)
    if kind == "category":
        return CategoryMapping(
            prop,
            field_path,
            _as_mapping(data.get("categories", {}), "category table"),
            fallback=data.get("fallback"),
            omit_unmatched=bool(data.get("omitUnmatched", False)),
        )
    if kind == "scale":
        return ScaleMapping(prop, field_path, _require(data, "domain", where), _require(data, "range", where))
    if kind == "threshold":
        raw = data.get("thresholds", [])
        if isinstance(raw, Mapping):
            raw = [{"value": value, "style": style} for value, style in raw.items()]
        return ThresholdMapping(prop, field_path, raw)
    raise DocumentError(f"unknown style mapping type: {kind!r}")


def legend_config_from_dict(data: Any) -> LegendConfig:
    data = _as_mapping(data, "legend")
    kwargs = {attr: data[key] for key, attr in _LEGEND_KEYS.items() if key in data}
    return LegendConfig(**kwargs)


def legend_request_from_dict(data: Any) -> LegendRequest:
    data = _as_mapping(data, "legend")
    config = legend_config_from_dict(data)
    return LegendRequest(
        property=_require(data, "property", "legend"),
        field=_require(data, "field", "legend"),
        config=config,
    )


def _statements(items: Any, where: str) -> Tuple[Statement, ...]:
    if items is None:
        return ()
    if not isinstance(items, Sequence) or isinstance(items, str):
        raise DocumentError(f"{where} must be a list of statements")
    return tuple(statement_from_dict(item) for item in items)


def _styles(items: Any) -> Tuple[StyleMapping, ...]:
    return tuple(mapping_from_dict(item) for item in items or ())


def statement_from_dict(data: Any) -> Statement:
    data = _as_mapping(data, "template statement")
    if "node" in data:
        node = _as_mapping(data["node"], "node")
        return NodeBlueprint(
            id=node.get("id"),
            shape=node.get("shape", "rect"),
            label=node.get("label"),
            properties=node.get("properties", {}),
            styles=_styles(node.get("styles")),
        )
    if "edge" in data:
        edge = _as_mapping(data["edge"], "edge")
        return EdgeBlueprint(
            source=_require(edge, "from", "edge"),
            target=_require(edge, "to", "edge"),
            edge_type=edge.get("type"),
            label=edge.get("label"),
            properties=edge.get("properties", {}),
            styles=_styles(edge.get("styles")),
        )
    if "if" in data:
        return Conditional(
            data["if"],
            _statements(data.get("then"), "if/then"),
            _statements(data.get("else"), "if/else"),
        )
    if "for" in data:
        return Loop(data["for"], _require(data, "in", "for loop"), _statements(data.get("body"), "for/body"))
    if "call" in data:
        return TemplateCall(data["call"], _as_mapping(data.get("params", {}), "call params"))
    raise DocumentError(f"unrecognised template statement keys: {sorted(data)}")


def template_from_dict(data: Any) -> Template:
    data = _as_mapping(data, "template")
    template_id = _require(data, "id", "template")
    limit = data.get("limit")
    if limit is not None and (isinstance(limit, bool) or not isinstance(limit, int)):
        raise DocumentError(f'template "{template_id}" limit must be an integer')
    return Template(
        id=template_id,
        source=_require(data, "from", f'template "{template_id}"'),
        body=_statements(data.get("body"), f'template "{template_id}" body'),
        filter=data.get("filter"),
        limit=limit,
        alias=data.get("alias", "item"),
    )


def load_document(source: Any) -> Document:
    if isinstance(source, str):
        try:
            source = json.loads(source)
        except json.JSONDecodeError as exc:
            raise DocumentError(
                f"failed to parse JSON document at line {exc.lineno}, column {exc.colno}: {exc.msg}"
            ) from exc
    data = _as_mapping(source, "document")
    sources = _as_mapping(data.get("sources", {}), "sources")
    for name, records in sources.items():
        if not isinstance(records, list):
            raise DocumentError(f'data source "{name}" must be a list of records')
    legends = data.get("legends", [])
    auto_legends = legends is True
    return Document(
        sources={name: list(records) for name, records in sources.items()},
        templates=[template_from_dict(item) for item in data.get("templates", [])],
        legends=[] if auto_legends else [legend_request_from_dict(item) for item in legends or []],
        auto_legends=auto_legends,
        legend_defaults=legend_config_from_dict(data["legendDefaults"]) if "legendDefaults" in data else None,
    )


def collect_mappings(templates: Sequence[Template]) -> List[StyleMapping]:
    """Every style mapping bound in ``templates``, first occurrence per property/field."""
    found: Dict[Tuple[str, str], StyleMapping] = {}

    def _walk(statements: Sequence[Statement]) -> None:
        for statement in statements:
            if isinstance(statement, (NodeBlueprint, EdgeBlueprint)):
                for mapping in statement.styles:
                    found.setdefault((mapping.property, mapping.field), mapping)
            elif isinstance(statement, Conditional):
                _walk(statement.body)
                _walk(statement.orelse)
            elif isinstance(statement, Loop):
                _walk(statement.body)

    for template in templates:
        _walk(template.body)
    return list(found.values())


def document_legends(document: Document) -> List[Legend]:
    mappings = collect_mappings(document.templates)
    if document.auto_legends:
        return synthesize_all(mappings, document.legend_defaults)
    return synthesize_requested(mappings, document.legends)


def document_legend_configs(document: Document) -> List[Optional[LegendConfig]]:
    """The config each legend of :func:`document_legends` was synthesized with, in order."""
    if document.auto_legends:
        return [document.legend_defaults] * len(collect_mappings(document.templates))
    return [request.config for request in document.legends]


def element_to_dict(element: Element) -> Dict[str, Any]:
    payload = {"kind": element.kind}
    payload.update(asdict(element))
    return payload


def diagnostic_to_dict(diagnostic: Diagnostic) -> Dict[str, Any]:
    return asdict(diagnostic)


def legend_to_dict(legend: Legend) -> Dict[str, Any]:
    payload = asdict(legend)
    payload["entries"] = [asdict(entry) for entry in legend.entries]
    return payload


def compile_document(
    document: Document, *, options: Optional[ExpandOptions] = None
) -> Dict[str, Any]:
    result = expand_all(document.templates, document.sources, options=options)
    return {
        "nodes": [element_to_dict(node) for node in result.nodes],
        "edges": [element_to_dict(edge) for edge in result.edges],
        "diagnostics": [diagnostic_to_dict(item) for item in result.diagnostics],
        "legends": [legend_to_dict(legend) for legend in document_legends(document)],
    }


__all__ = [
    "Document",
    "collect_mappings",
    "compile_document",
    "document_legend_configs",
    "document_legends",
    "legend_config_from_dict",
    "load_document",
    "mapping_from_dict",
    "statement_from_dict",
    "template_from_dict",
]
