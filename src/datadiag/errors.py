"""Error types raised by the datadiag engine."""
from __future__ import annotations

from typing import Optional


class DatadiagError(ValueError):
    """Structured error with a stable code for CLI mapping."""

    code = "E_DATADIAG"

    def __init__(self, message: str, *, code: Optional[str] = None) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code
        self.message = message

    def __str__(self) -> str:
        return self.message


class EmptyPathError(DatadiagError):
    code = "E_PATH_EMPTY"


class InvalidMappingError(DatadiagError):
    code = "E_MAPPING_INVALID"


class EmptyThresholdsError(InvalidMappingError):
    code = "E_THRESHOLD_EMPTY"


class MappingKindMismatchError(DatadiagError):
    code = "E_MAPPING_KIND"


class MissingDataSourceError(DatadiagError):
    code = "E_DATA_SOURCE"

    def __init__(self, template_id: str, source: str) -> None:
        super().__init__(f'template "{template_id}" references unknown data source "{source}"')
        self.template_id = template_id
        self.source = source


class TemplateExpansionError(DatadiagError):
    code = "E_TEMPLATE"

    def __init__(
        self,
        template_id: str,
        message: str,
        *,
        index: Optional[int] = None,
        property: Optional[str] = None,
    ) -> None:
        location = f" at record {index}" if index is not None else ""
        target = f' (property "{property}")' if property else ""
        super().__init__(f'template "{template_id}"{location}{target}: {message}')
        self.template_id = template_id
        self.index = index
        self.property = property


class TemplateRecursionError(DatadiagError):
    code = "E_TEMPLATE_DEPTH"


class LegendConfigError(DatadiagError):
    code = "E_LEGEND_CONFIG"


class DocumentError(DatadiagError):
    code = "E_DOCUMENT"
