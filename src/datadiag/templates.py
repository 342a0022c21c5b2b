"""Data-driven templates: blueprints expanded once per record of a data source."""
from __future__ import annotations

import logging
import re
from collections import ChainMap
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, List, Optional, Set, Tuple, Union

from .errors import (
    DatadiagError,
    MissingDataSourceError,
    TemplateExpansionError,
    TemplateRecursionError,
)
from .mappings import DEFAULT_PALETTE, Palette, StyleMapping, resolve
from .values import (
    evaluate_path,
    expand_expression,
    expand_expression_value,
    has_expression,
    stringify,
    to_boolean,
    variable_paths,
)

logger = logging.getLogger(__name__)

# Properties that always expand to text; everything else keeps its raw type.
TEXT_PROPERTIES = frozenset({"label", "subtitle", "text", "tooltip", "title", "fill", "stroke"})

_ID_UNSAFE_RE = re.compile(r"[^A-Za-z0-9_-]+")


def _as_tuple(value: Any) -> Tuple[Any, ...]:
    if value is None:
        return ()
    return tuple(value)


@dataclass(frozen=True)
class NodeBlueprint:
    id: Optional[str] = None
    shape: str = "rect"
    label: Optional[str] = None
    properties: Mapping[str, Any] = field(default_factory=dict)
    styles: Tuple[StyleMapping, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "properties", dict(self.properties))
        object.__setattr__(self, "styles", _as_tuple(self.styles))


@dataclass(frozen=True)
class EdgeBlueprint:
    source: str
    target: str
    edge_type: Optional[str] = None
    label: Optional[str] = None
    properties: Mapping[str, Any] = field(default_factory=dict)
    styles: Tuple[StyleMapping, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "properties", dict(self.properties))
        object.__setattr__(self, "styles", _as_tuple(self.styles))


@dataclass(frozen=True)
class Conditional:
    condition: str
    body: Tuple["Statement", ...]
    orelse: Tuple["Statement", ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "body", _as_tuple(self.body))
        object.__setattr__(self, "orelse", _as_tuple(self.orelse))


@dataclass(frozen=True)
class Loop:
    variable: str
    collection: str
    body: Tuple["Statement", ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "body", _as_tuple(self.body))


@dataclass(frozen=True)
class TemplateCall:
    template_id: str
    parameters: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "parameters", dict(self.parameters))


Statement = Union[NodeBlueprint, EdgeBlueprint, Conditional, Loop, TemplateCall]


@dataclass(frozen=True)
class Template:
    id: str
    source: str
    body: Tuple[Statement, ...]
    filter: Optional[str] = None
    limit: Optional[int] = None
    alias: str = "item"

    def __post_init__(self) -> None:
        object.__setattr__(self, "body", _as_tuple(self.body))


@dataclass(frozen=True)
class Node:
    id: str
    shape: str
    template_id: str
    properties: Dict[str, Any] = field(default_factory=dict)
    style: Dict[str, Any] = field(default_factory=dict)

    kind: ClassVar[str] = "node"


@dataclass(frozen=True)
class Edge:
    id: str
    source: str
    target: str
    template_id: str
    edge_type: Optional[str] = None
    properties: Dict[str, Any] = field(default_factory=dict)
    style: Dict[str, Any] = field(default_factory=dict)

    kind: ClassVar[str] = "edge"


Element = Union[Node, Edge]


@dataclass(frozen=True)
class Diagnostic:
    template_id: str
    index: Optional[int]
    code: str
    message: str
    property: Optional[str] = None


@dataclass
class ExpansionResult:
    elements: List[Element] = field(default_factory=list)
    diagnostics: List[Diagnostic] = field(default_factory=list)

    @property
    def nodes(self) -> List[Node]:
        return [element for element in self.elements if isinstance(element, Node)]

    @property
    def edges(self) -> List[Edge]:
        return [element for element in self.elements if isinstance(element, Edge)]


@dataclass(frozen=True)
class ExpandOptions:
    safe_navigation: bool = True
    default: Any = None
    strict: bool = False
    palette: Palette = DEFAULT_PALETTE
    max_call_depth: int = 10


@dataclass
class _ExpansionState:
    template_id: str
    taken_ids: Set[str] = field(default_factory=set)
    counter: int = 0
    elements: List[Element] = field(default_factory=list)
    diagnostics: List[Diagnostic] = field(default_factory=list)


class _PathFailure(Exception):
    def __init__(self, path: str, error: Optional[str]) -> None:
        super().__init__(f"{path}: {error}")
        self.path = path
        self.error = error


class _MappingFailure(Exception):
    def __init__(self, property: str, cause: DatadiagError) -> None:
        super().__init__(str(cause))
        self.property = property
        self.cause = cause


def expand(
    template: Template,
    sources: Mapping[str, Sequence[Any]],
    *,
    options: Optional[ExpandOptions] = None,
    registry: Optional[Mapping[str, Template]] = None,
) -> ExpansionResult:
    """Instantiate ``template`` once per retained record of its data source.

    Elements come out in source order. Data problems become diagnostics; only
    configuration problems (unknown source, runaway template calls, and any
    problem at all when ``options.strict`` is set) raise.
    """
    options = options or ExpandOptions()
    if template.source not in sources:
        raise MissingDataSourceError(template.id, template.source)
    records = list(sources[template.source])
    state = _ExpansionState(template.id)

    retained: List[Any] = []
    for position, record in enumerate(records):
        if template.filter is None:
            retained.append(record)
            continue
        scope = _record_scope(template.alias, record, position, len(records))
        try:
            keep = _truthy(_evaluate(template.filter, scope, options))
        except _PathFailure as failure:
            _record_failure(state, options, position, failure, "filter")
            continue
        if keep:
            retained.append(record)

    if template.limit is not None and template.limit > 0:
        retained = retained[: template.limit]

    for index, record in enumerate(retained):
        scope = _record_scope(template.alias, record, index, len(retained))
        taken_before = set(state.taken_ids) if not options.safe_navigation else None
        produced: List[Element] = []
        try:
            _run_statements(template.body, scope, state, produced, index, options, registry, 0)
        except _PathFailure as failure:
            if taken_before is not None:
                state.taken_ids = taken_before
            _record_failure(state, options, index, failure, "record")
            continue
        state.elements.extend(produced)

    logger.debug(
        "template %s: %d of %d records retained, %d elements, %d diagnostics",
        template.id,
        len(retained),
        len(records),
        len(state.elements),
        len(state.diagnostics),
    )
    return ExpansionResult(state.elements, state.diagnostics)


def expand_all(
    templates: Sequence[Template],
    sources: Mapping[str, Sequence[Any]],
    *,
    options: Optional[ExpandOptions] = None,
) -> ExpansionResult:
    registry = {template.id: template for template in templates}
    combined = ExpansionResult()
    for template in templates:
        result = expand(template, sources, options=options, registry=registry)
        combined.elements.extend(result.elements)
        combined.diagnostics.extend(result.diagnostics)
    return combined


def _record_scope(alias: str, record: Any, index: int, length: int) -> ChainMap:
    fields = record if isinstance(record, Mapping) else {}
    bindings = {"item": record, alias: record}
    return ChainMap(bindings, fields, {"index": index, "length": length})


def _record_failure(
    state: _ExpansionState,
    options: ExpandOptions,
    index: int,
    failure: _PathFailure,
    stage: str,
) -> None:
    message = f"{stage} skipped, path '{failure.path}' failed: {failure.error}"
    if options.strict:
        raise TemplateExpansionError(state.template_id, message, index=index)
    _diagnose(state, index, "E_PATH", message)


def _diagnose(
    state: _ExpansionState,
    index: Optional[int],
    code: str,
    message: str,
    property: Optional[str] = None,
    *,
    level: int = logging.WARNING,
) -> None:
    logger.log(level, "[template %s] record %s: %s", state.template_id, index, message)
    state.diagnostics.append(Diagnostic(state.template_id, index, code, message, property))


def _lookup(path: str, scope: Mapping[str, Any], options: ExpandOptions) -> Any:
    result = evaluate_path(
        path, scope, safe_navigation=options.safe_navigation, default=options.default
    )
    if not result.success:
        raise _PathFailure(path, result.error)
    return result.value


def _check_paths(text: str, scope: Mapping[str, Any], options: ExpandOptions) -> None:
    if options.safe_navigation:
        return
    for path in variable_paths(text):
        _lookup(path, scope, options)


def _evaluate(expr: Any, scope: Mapping[str, Any], options: ExpandOptions) -> Any:
    if not isinstance(expr, str):
        return expr
    if has_expression(expr):
        _check_paths(expr, scope, options)
        return expand_expression_value(
            expr, scope, safe_navigation=options.safe_navigation, default=options.default
        )
    return _lookup(expr.strip(), scope, options)


def _expand_value(value: Any, scope: Mapping[str, Any], options: ExpandOptions, *, text: bool) -> Any:
    if not isinstance(value, str):
        return value
    _check_paths(value, scope, options)
    if text:
        return expand_expression(
            value, scope, safe_navigation=options.safe_navigation, default=options.default
        )
    return expand_expression_value(
        value, scope, safe_navigation=options.safe_navigation, default=options.default
    )


def _truthy(value: Any) -> bool:
    if value is None:
        return False
    return to_boolean(value)


def _run_statements(
    statements: Sequence[Statement],
    scope: ChainMap,
    state: _ExpansionState,
    produced: List[Element],
    index: int,
    options: ExpandOptions,
    registry: Optional[Mapping[str, Template]],
    depth: int,
) -> None:
    for statement in statements:
        if isinstance(statement, (NodeBlueprint, EdgeBlueprint)):
            try:
                if isinstance(statement, NodeBlueprint):
                    element = _build_node(statement, scope, state, options)
                else:
                    element = _build_edge(statement, scope, state, index, options)
            except _MappingFailure as failure:
                message = f"style mapping failed: {failure.cause}"
                if options.strict:
                    raise TemplateExpansionError(
                        state.template_id, message, index=index, property=failure.property
                    ) from failure.cause
                _diagnose(state, index, "E_MAPPING", message, failure.property, level=logging.ERROR)
                continue
            if element is not None:
                produced.append(element)
        elif isinstance(statement, Conditional):
            branch = statement.body if _truthy(_evaluate(statement.condition, scope, options)) else statement.orelse
            _run_statements(branch, scope, state, produced, index, options, registry, depth)
        elif isinstance(statement, Loop):
            _run_loop(statement, scope, state, produced, index, options, registry, depth)
        elif isinstance(statement, TemplateCall):
            _run_call(statement, scope, state, produced, index, options, registry, depth)
        else:
            raise TemplateExpansionError(
                state.template_id, f"unsupported template statement: {type(statement).__name__}"
            )


def _run_loop(
    statement: Loop,
    scope: ChainMap,
    state: _ExpansionState,
    produced: List[Element],
    index: int,
    options: ExpandOptions,
    registry: Optional[Mapping[str, Template]],
    depth: int,
) -> None:
    collection = _evaluate(statement.collection, scope, options)
    if not isinstance(collection, Sequence) or isinstance(collection, (str, bytes)):
        _diagnose(
            state,
            index,
            "E_LOOP_COLLECTION",
            f"loop over '{statement.collection}' expected a sequence, got {type(collection).__name__}",
        )
        return
    last = len(collection) - 1
    for loop_index, item in enumerate(collection):
        loop_scope = scope.new_child(
            {
                statement.variable: item,
                f"{statement.variable}_index": loop_index,
                f"{statement.variable}_first": loop_index == 0,
                f"{statement.variable}_last": loop_index == last,
            }
        )
        _run_statements(statement.body, loop_scope, state, produced, index, options, registry, depth)


def _run_call(
    statement: TemplateCall,
    scope: ChainMap,
    state: _ExpansionState,
    produced: List[Element],
    index: int,
    options: ExpandOptions,
    registry: Optional[Mapping[str, Template]],
    depth: int,
) -> None:
    called = (registry or {}).get(statement.template_id)
    if called is None:
        _diagnose(
            state, index, "E_TEMPLATE_CALL", f'called template "{statement.template_id}" not found'
        )
        return
    if depth >= options.max_call_depth:
        raise TemplateRecursionError(
            f'maximum template call depth exceeded ({options.max_call_depth}) '
            f'while calling "{statement.template_id}" from "{state.template_id}"'
        )
    parameters = {
        name: _expand_value(value, scope, options, text=False)
        for name, value in statement.parameters.items()
    }
    _run_statements(
        called.body, scope.new_child(parameters), state, produced, index, options, registry, depth + 1
    )


def _expand_properties(
    properties: Mapping[str, Any], scope: Mapping[str, Any], options: ExpandOptions
) -> Dict[str, Any]:
    return {
        key: _expand_value(value, scope, options, text=key in TEXT_PROPERTIES)
        for key, value in properties.items()
    }


def _resolve_styles(
    styles: Sequence[StyleMapping], scope: Mapping[str, Any], options: ExpandOptions
) -> Dict[str, Any]:
    resolved: Dict[str, Any] = {}
    for mapping in styles:
        field_value = _lookup(mapping.field, scope, options)
        try:
            value = resolve(mapping, field_value, palette=options.palette)
        except DatadiagError as exc:
            raise _MappingFailure(getattr(mapping, "property", "?"), exc) from exc
        if value is not None:
            resolved[mapping.property] = value
    return resolved


def _reserve_unique_id(existing: Set[str], base: str) -> str:
    if base not in existing:
        existing.add(base)
        return base
    idx = 1
    while True:
        candidate = f"{base}-{idx}"
        if candidate not in existing:
            existing.add(candidate)
            return candidate
        idx += 1


def _node_id(
    blueprint: NodeBlueprint,
    scope: Mapping[str, Any],
    label: Optional[str],
    state: _ExpansionState,
    options: ExpandOptions,
) -> str:
    base = ""
    if blueprint.id is not None:
        base = stringify(_expand_value(blueprint.id, scope, options, text=False))
    if not base and label:
        base = _ID_UNSAFE_RE.sub("_", label).strip("_")
    if not base:
        base = f"{state.template_id}_{state.counter}"
        state.counter += 1
    return _reserve_unique_id(state.taken_ids, base)


def _build_node(
    blueprint: NodeBlueprint,
    scope: Mapping[str, Any],
    state: _ExpansionState,
    options: ExpandOptions,
) -> Node:
    properties = _expand_properties(blueprint.properties, scope, options)
    label = None
    if blueprint.label is not None:
        label = _expand_value(blueprint.label, scope, options, text=True)
        properties["label"] = label
    shape = _expand_value(blueprint.shape, scope, options, text=True) or "rect"
    style = _resolve_styles(blueprint.styles, scope, options)
    for key in style:
        properties.pop(key, None)
    node_id = _node_id(blueprint, scope, label, state, options)
    return Node(node_id, shape, state.template_id, properties, style)


def _build_edge(
    blueprint: EdgeBlueprint,
    scope: Mapping[str, Any],
    state: _ExpansionState,
    index: int,
    options: ExpandOptions,
) -> Optional[Edge]:
    source = _expand_value(blueprint.source, scope, options, text=False)
    target = _expand_value(blueprint.target, scope, options, text=False)
    if source in (None, "") or target in (None, ""):
        _diagnose(
            state,
            index,
            "E_EDGE_ENDPOINT",
            f"edge {blueprint.source!r} -> {blueprint.target!r} has an undefined endpoint",
        )
        return None
    source, target = stringify(source), stringify(target)
    properties = _expand_properties(blueprint.properties, scope, options)
    if blueprint.label is not None:
        properties["label"] = _expand_value(blueprint.label, scope, options, text=True)
    style = _resolve_styles(blueprint.styles, scope, options)
    for key in style:
        properties.pop(key, None)
    edge_id = _reserve_unique_id(state.taken_ids, f"{source}->{target}")
    return Edge(edge_id, source, target, state.template_id, blueprint.edge_type, properties, style)


__all__ = [
    "Conditional",
    "Diagnostic",
    "Edge",
    "EdgeBlueprint",
    "ExpandOptions",
    "ExpansionResult",
    "Loop",
    "Node",
    "NodeBlueprint",
    "Template",
    "TemplateCall",
    "expand",
    "expand_all",
]
