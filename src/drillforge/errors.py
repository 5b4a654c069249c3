"""Exceptions raised while building queries.

everything here is a client error: the request asked for something the
registry doesn't know about, or slipped an unsafe literal past the type
boundary. they all subclass ValueError so plain `except ValueError` callers
keep working.
"""


class QueryBuildError(ValueError):
    """Base class for invalid drill-down requests."""


class UnknownDimensionError(QueryBuildError):
    pass


class DepthOutOfRangeError(QueryBuildError):
    pass


class UnknownMetricError(QueryBuildError):
    pass


class InvalidFilterError(QueryBuildError):
    pass


class UnsafeLiteralError(QueryBuildError):
    """A token that gets interpolated (sort direction) failed the allow-list."""


class CatalogError(ValueError):
    """A report catalog failed validation at load time."""


def http_status_for(exc: BaseException) -> int:
    """Map an exception to the status a request handler should return."""
    if isinstance(exc, QueryBuildError):
        return 400
    return 500
