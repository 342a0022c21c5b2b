"""Public API for datadiag."""
from .errors import (
    DatadiagError,
    EmptyPathError,
    EmptyThresholdsError,
    InvalidMappingError,
    MappingKindMismatchError,
    MissingDataSourceError,
    TemplateExpansionError,
)
from .legend import LegendConfig, render_legend_svg, render_legends_svg, synthesize, synthesize_all
from .mappings import (
    DEFAULT_PALETTE,
    CategoryMapping,
    Palette,
    ScaleMapping,
    Threshold,
    ThresholdMapping,
    resolve,
)
from .templates import EdgeBlueprint, ExpandOptions, NodeBlueprint, Template, expand, expand_all
from .values import coerce, evaluate_path, expand_expression, expand_expression_value

__all__ = [
    "CategoryMapping",
    "DEFAULT_PALETTE",
    "DatadiagError",
    "EdgeBlueprint",
    "EmptyPathError",
    "EmptyThresholdsError",
    "ExpandOptions",
    "InvalidMappingError",
    "LegendConfig",
    "MappingKindMismatchError",
    "MissingDataSourceError",
    "NodeBlueprint",
    "Palette",
    "ScaleMapping",
    "Template",
    "TemplateExpansionError",
    "Threshold",
    "ThresholdMapping",
    "coerce",
    "evaluate_path",
    "expand",
    "expand_all",
    "expand_expression",
    "expand_expression_value",
    "render_legend_svg",
    "render_legends_svg",
    "resolve",
    "synthesize",
    "synthesize_all",
]
