"""Exception types raised by the conversion engine."""

from __future__ import annotations


class SpannerConvError(RuntimeError):
    pass


class NameMappingError(SpannerConvError):
    """A PostgreSQL identifier could not be mapped to a Spanner identifier."""


class ConversionError(SpannerConvError):
    """A row (or a single value in it) could not be converted."""


class SQLParseError(SpannerConvError):
    """The text handed to the parser is not a complete list of statements."""


class InternalError(SpannerConvError):
    pass
