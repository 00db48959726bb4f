"""Result container and error types shared by the analysis components."""

from dataclasses import dataclass, field
from typing import Any, Dict, Generic, Optional, TypeVar

T = TypeVar("T")


class AnalysisError(Exception):
    """Base error raised or returned by the analysis core."""

    code = "ANALYSIS_ERROR"
    status_code = 500

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "status_code": self.status_code,
            "context": self.context,
        }


class ValidationError(AnalysisError):
    """Input was rejected (unsupported language, disabled feature, bad option)."""

    code = "VALIDATION_ERROR"
    status_code = 400


class NotFoundError(AnalysisError):
    """A file, directory or entity does not exist."""

    code = "NOT_FOUND"
    status_code = 404


class AlreadyInProgressError(AnalysisError):
    """An analysis for the same project path is already running."""

    code = "ALREADY_IN_PROGRESS"
    status_code = 409


class GraphServiceError(AnalysisError):
    """The graph database could not be reached or rejected a query."""

    code = "GRAPH_SERVICE_ERROR"
    status_code = 502


class QueryParseError(AnalysisError):
    """A natural language query could not be understood."""

    code = "QUERY_PARSE_ERROR"
    status_code = 422


def to_analysis_error(exc: Exception, **context: Any) -> AnalysisError:
    """Wrap an arbitrary exception as an AnalysisError, keeping known subclasses."""
    if isinstance(exc, AnalysisError):
        if context:
            exc.context.update(context)
        return exc
    error = AnalysisError(str(exc) or exc.__class__.__name__, context)
    error.code = "INTERNAL_ERROR"
    return error


@dataclass
class Result(Generic[T]):
    """Outcome of an operation crossing a component boundary."""

    success: bool
    data: Optional[T] = None
    error: Optional[AnalysisError] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, data: T, **metadata: Any) -> "Result[T]":
        return cls(success=True, data=data, metadata=metadata)

    @classmethod
    def fail(cls, error: AnalysisError, **metadata: Any) -> "Result[T]":
        return cls(success=False, error=error, metadata=metadata)

    @property
    def error_message(self) -> Optional[str]:
        return self.error.message if self.error else None
