"""Convert PostgreSQL dumps into Spanner schemas and typed rows."""

from __future__ import annotations

from .conv import Conv, Mode, Row, SchemaIssue, Stats
from .errors import (
    ConversionError,
    InternalError,
    NameMappingError,
    SpannerConvError,
    SQLParseError,
)

__version__ = "0.1.0"

__all__ = [
    "Conv",
    "ConversionError",
    "InternalError",
    "Mode",
    "NameMappingError",
    "Row",
    "SchemaIssue",
    "SpannerConvError",
    "SQLParseError",
    "Stats",
    "__version__",
]
