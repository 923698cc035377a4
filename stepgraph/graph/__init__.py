"""Action Graph - model, builder, compiler and persistence."""

from stepgraph.graph.types import (
    ActionGraph,
    ActionNode,
    DeterministicAction,
    DeterministicInstruction,
    Edge,
    EdgeType,
    ExecutionRecord,
    ExecutionState,
    GherkinKeyword,
    GraphMetadata,
    NodeType,
    SelectorRef,
    generate_graph_id,
)
from stepgraph.graph.builder import (
    ActionGraphBuilder,
    ScenarioDefinition,
    ScenarioStep,
    build_action_graph,
    resolve_node_type,
)
from stepgraph.graph.compiler import (
    CompileResult,
    compile_action_graph,
    compile_graph_file,
    generate_feature_content,
    generate_step_definitions,
)
from stepgraph.graph.persistence import GraphPersistence

__all__ = [
    "ActionGraph",
    "ActionGraphBuilder",
    "ActionNode",
    "CompileResult",
    "DeterministicAction",
    "DeterministicInstruction",
    "Edge",
    "EdgeType",
    "ExecutionRecord",
    "ExecutionState",
    "GherkinKeyword",
    "GraphMetadata",
    "GraphPersistence",
    "NodeType",
    "ScenarioDefinition",
    "ScenarioStep",
    "SelectorRef",
    "build_action_graph",
    "compile_action_graph",
    "compile_graph_file",
    "generate_feature_content",
    "generate_graph_id",
    "generate_step_definitions",
    "resolve_node_type",
]
