"""
stepgraph - Deterministic scenario compilation.

Captures scenarios as action graphs, compiles them into Gherkin features
and replayable pytest-bdd steps, and resolves selectors through a
registry-backed strategy chain.
"""

__version__ = "0.1.0"

from stepgraph.errors import StepGraphError
from stepgraph.graph import (
    ActionGraph,
    ActionGraphBuilder,
    GraphPersistence,
    build_action_graph,
    compile_action_graph,
)
from stepgraph.selectors import SelectorResolver, validate_selector_drift

__all__ = [
    "ActionGraph",
    "ActionGraphBuilder",
    "GraphPersistence",
    "SelectorResolver",
    "StepGraphError",
    "__version__",
    "build_action_graph",
    "compile_action_graph",
    "validate_selector_drift",
]
