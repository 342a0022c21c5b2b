"""Node/edge generation straight from records via field and style mappings."""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from .legend import Legend, LegendConfig, synthesize_all
from .mappings import DEFAULT_PALETTE, Palette, StyleMapping, resolve
from .templates import Edge, Node
from .values import evaluate_path, stringify

GENERATED_TEMPLATE_ID = "generated"


@dataclass(frozen=True)
class NodeGenerationConfig:
    shape: str = "rect"
    id_field: Optional[str] = None
    id_prefix: str = "node_"
    field_mappings: Mapping[str, str] = field(default_factory=dict)
    style_mappings: Tuple[StyleMapping, ...] = ()


@dataclass(frozen=True)
class EdgeGenerationConfig:
    source_field: str
    target_field: str
    edge_type: Optional[str] = None
    field_mappings: Mapping[str, str] = field(default_factory=dict)
    style_mappings: Tuple[StyleMapping, ...] = ()


@dataclass
class GeneratedDiagram:
    nodes: List[Node] = field(default_factory=list)
    edges: List[Edge] = field(default_factory=list)
    legends: List[Legend] = field(default_factory=list)


def _field(record: Any, path: str) -> Any:
    return evaluate_path(path, record).value


def _mapped_properties(record: Any, field_mappings: Mapping[str, str]) -> Dict[str, Any]:
    properties: Dict[str, Any] = {}
    for prop, path in field_mappings.items():
        value = _field(record, path)
        if value is not None:
            properties[prop] = value
    return properties


def _mapped_styles(
    record: Any, style_mappings: Sequence[StyleMapping], palette: Palette
) -> Dict[str, Any]:
    styles: Dict[str, Any] = {}
    for mapping in style_mappings:
        value = resolve(mapping, _field(record, mapping.field), palette=palette)
        if value is not None:
            styles[mapping.property] = value
    return styles


def generate_nodes(
    records: Sequence[Any],
    config: Optional[NodeGenerationConfig] = None,
    *,
    palette: Palette = DEFAULT_PALETTE,
) -> List[Node]:
    config = config or NodeGenerationConfig()
    nodes: List[Node] = []
    for index, record in enumerate(records):
        node_id = None
        if config.id_field:
            node_id = _field(record, config.id_field)
        if node_id is None:
            node_id = f"{config.id_prefix}{index}"
        nodes.append(
            Node(
                id=stringify(node_id),
                shape=config.shape,
                template_id=GENERATED_TEMPLATE_ID,
                properties=_mapped_properties(record, config.field_mappings),
                style=_mapped_styles(record, config.style_mappings, palette),
            )
        )
    return nodes


def generate_edges(
    records: Sequence[Any],
    config: EdgeGenerationConfig,
    *,
    palette: Palette = DEFAULT_PALETTE,
) -> List[Edge]:
    edges: List[Edge] = []
    for record in records:
        source = _field(record, config.source_field)
        target = _field(record, config.target_field)
        if source is None or target is None:
            continue
        source, target = stringify(source), stringify(target)
        edges.append(
            Edge(
                id=f"{source}->{target}",
                source=source,
                target=target,
                template_id=GENERATED_TEMPLATE_ID,
                edge_type=config.edge_type,
                properties=_mapped_properties(record, config.field_mappings),
                style=_mapped_styles(record, config.style_mappings, palette),
            )
        )
    return edges


def generate_nodes_and_edges(
    records: Sequence[Any],
    edge_config: EdgeGenerationConfig,
    node_config: Optional[NodeGenerationConfig] = None,
    *,
    palette: Palette = DEFAULT_PALETTE,
) -> GeneratedDiagram:
    """Nodes for every distinct endpoint (first-seen order) plus one edge per relation."""
    seen: Dict[str, None] = {}
    for record in records:
        for path in (edge_config.source_field, edge_config.target_field):
            endpoint = _field(record, path)
            if endpoint is not None:
                seen.setdefault(stringify(endpoint), None)
    node_config = node_config or NodeGenerationConfig()
    endpoint_config = replace(node_config, id_field="id")
    nodes = generate_nodes([{"id": endpoint} for endpoint in seen], endpoint_config, palette=palette)
    edges = generate_edges(records, edge_config, palette=palette)
    return GeneratedDiagram(nodes=nodes, edges=edges)


def generate_diagram(
    records: Sequence[Any],
    node_config: Optional[NodeGenerationConfig] = None,
    edge_config: Optional[EdgeGenerationConfig] = None,
    *,
    legends: bool = False,
    legend_config: Optional[LegendConfig] = None,
    palette: Palette = DEFAULT_PALETTE,
) -> GeneratedDiagram:
    diagram = GeneratedDiagram()
    mappings: List[StyleMapping] = []
    if node_config is not None:
        diagram.nodes = generate_nodes(records, node_config, palette=palette)
        mappings.extend(node_config.style_mappings)
    if edge_config is not None:
        diagram.edges = generate_edges(records, edge_config, palette=palette)
        mappings.extend(edge_config.style_mappings)
    if legends and mappings:
        diagram.legends = synthesize_all(mappings, legend_config)
    return diagram


__all__ = [
    "EdgeGenerationConfig",
    "GeneratedDiagram",
    "NodeGenerationConfig",
    "generate_diagram",
    "generate_edges",
    "generate_nodes",
    "generate_nodes_and_edges",
]
