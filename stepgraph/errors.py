"""
Typed errors shared across stepgraph.

Every error surfaced to a caller carries a stable ``code`` so that
pipelines can branch on the kind of failure without parsing messages.
"""

from typing import Any, Dict, Optional


class StepGraphError(Exception):
    """Base class for all stepgraph errors."""

    code = "STEPGRAPH_ERROR"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.details: Dict[str, Any] = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class GraphBuildError(StepGraphError):
    """Missing graph metadata, no nodes, unknown page reference, invalid topology."""

    code = "BUILD_ERROR"


class GraphPersistenceError(StepGraphError):
    code = "PERSISTENCE_ERROR"


class ScenarioAmbiguityError(GraphPersistenceError):
    """Several scenarios share a spec id and no scenario name was given."""

    code = "SCENARIO_AMBIGUOUS"


class RegistryError(StepGraphError):
    code = "REGISTRY_INVALID"


class SelectorResolutionError(StepGraphError):
    """Base class for failures of the selector resolver."""

    code = "SELECTOR_RESOLUTION_FAILED"


class AmbiguousSelectorError(SelectorResolutionError):
    code = "SELECTOR_AMBIGUOUS"


class SelectorNotFoundError(SelectorResolutionError):
    code = "SELECTOR_NOT_FOUND"


class NavigationTimeoutError(StepGraphError):
    code = "NAVIGATION_TIMEOUT"


class RouteUnavailableError(StepGraphError):
    """The application refused the connection for a route."""

    code = "ROUTE_UNAVAILABLE"
