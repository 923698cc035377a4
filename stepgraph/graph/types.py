"""
Action Graph - the intermediate representation of one test scenario.

A graph is a list of typed, ordered nodes (one per scenario step) joined
by edges. It is serialized as JSON with camelCase keys so persisted
graphs stay readable by other tooling.
"""

import copy
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional

from stepgraph.errors import GraphBuildError

GRAPH_VERSION = "1.0"


class NodeType(str, Enum):
    NAVIGATE = "navigate"
    OBSERVE = "observe"
    ACT = "act"
    EXTRACT = "extract"
    ASSERT = "assert"
    SETUP = "setup"
    TEARDOWN = "teardown"


class GherkinKeyword(str, Enum):
    GIVEN = "given"
    WHEN = "when"
    THEN = "then"
    AND = "and"
    BUT = "but"


class DeterministicAction(str, Enum):
    CLICK = "click"
    FILL = "fill"
    SELECT = "select"
    NAVIGATE = "navigate"
    WAIT = "wait"
    CHECK = "check"


class ExecutionState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class EdgeType(str, Enum):
    SEQUENTIAL = "sequential"
    CONDITIONAL = "conditional"
    PARALLEL = "parallel"


class AuthorshipSource(str, Enum):
    LLM = "llm"
    MANUAL = "manual"
    HYBRID = "hybrid"


def _compact(data: Dict[str, Any]) -> Dict[str, Any]:
    """Drop keys whose value is None."""
    return {k: v for k, v in data.items() if v is not None}


@dataclass
class GherkinStepRef:
    keyword: GherkinKeyword
    text: str

    def to_dict(self) -> Dict[str, Any]:
        return {"keyword": self.keyword.value, "text": self.text}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GherkinStepRef":
        return cls(keyword=GherkinKeyword(data["keyword"]), text=data["text"])


@dataclass
class DeterministicInstruction:
    """Machine-executable form of a step: ``{selector, action, value}``."""
    selector: Optional[str] = None
    action: Optional[DeterministicAction] = None
    value: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return _compact({
            "selector": self.selector,
            "action": self.action.value if self.action else None,
            "value": self.value,
        })

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeterministicInstruction":
        action = data.get("action")
        return cls(
            selector=data.get("selector"),
            action=DeterministicAction(action) if action else None,
            value=data.get("value"),
        )


@dataclass
class NodeInstructions:
    natural: Optional[str] = None
    deterministic: Optional[DeterministicInstruction] = None

    def to_dict(self) -> Dict[str, Any]:
        return _compact({
            "natural": self.natural,
            "deterministic": self.deterministic.to_dict() if self.deterministic else None,
        })

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "NodeInstructions":
        deterministic = data.get("deterministic")
        return cls(
            natural=data.get("natural"),
            deterministic=DeterministicInstruction.from_dict(deterministic) if deterministic else None,
        )


@dataclass
class SelectorRef:
    id: str
    locator: Optional[str] = None
    verified: Optional[bool] = None

    def to_dict(self) -> Dict[str, Any]:
        return _compact({"id": self.id, "locator": self.locator, "verified": self.verified})

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SelectorRef":
        return cls(id=data["id"], locator=data.get("locator"), verified=data.get("verified"))


@dataclass
class ExecutionRecord:
    """Per-node execution state. Only written during or after replay."""
    state: ExecutionState = ExecutionState.PENDING
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    duration: Optional[float] = None
    cached: Optional[bool] = None
    cache_key: Optional[str] = None
    error: Optional[Dict[str, Any]] = None
    result: Any = None

    def to_dict(self) -> Dict[str, Any]:
        return _compact({
            "state": self.state.value,
            "startedAt": self.started_at,
            "completedAt": self.completed_at,
            "duration": self.duration,
            "cached": self.cached,
            "cacheKey": self.cache_key,
            "error": self.error,
            "result": self.result,
        })

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExecutionRecord":
        return cls(
            state=ExecutionState(data.get("state", "pending")),
            started_at=data.get("startedAt"),
            completed_at=data.get("completedAt"),
            duration=data.get("duration"),
            cached=data.get("cached"),
            cache_key=data.get("cacheKey"),
            error=data.get("error"),
            result=data.get("result"),
        )


@dataclass
class ActionNode:
    """
    One step in a scenario.

    ``metadata`` is free-form; the keys ``retries``, ``timeout``,
    ``critical`` and ``testData`` carry execution policy and fixtures,
    ``selectorHintText``/``selectorHintType``/``selectorHintRole`` feed
    the selector resolver.
    """
    node_id: str
    type: NodeType
    step_index: int
    gherkin_step: Optional[GherkinStepRef] = None
    instructions: Optional[NodeInstructions] = None
    selectors: List[SelectorRef] = field(default_factory=list)
    execution: ExecutionRecord = field(default_factory=ExecutionRecord)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_background(self) -> bool:
        return self.node_id.startswith("bg_")

    @property
    def deterministic(self) -> Optional[DeterministicInstruction]:
        return self.instructions.deterministic if self.instructions else None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "nodeId": self.node_id,
            "type": self.type.value,
            "stepIndex": self.step_index,
        }
        if self.gherkin_step:
            data["gherkinStep"] = self.gherkin_step.to_dict()
        if self.instructions:
            data["instructions"] = self.instructions.to_dict()
        if self.selectors:
            data["selectors"] = [s.to_dict() for s in self.selectors]
        data["execution"] = self.execution.to_dict()
        if self.metadata:
            data["metadata"] = copy.deepcopy(self.metadata)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ActionNode":
        gherkin = data.get("gherkinStep")
        instructions = data.get("instructions")
        execution = data.get("execution")
        return cls(
            node_id=data["nodeId"],
            type=NodeType(data["type"]),
            step_index=data["stepIndex"],
            gherkin_step=GherkinStepRef.from_dict(gherkin) if gherkin else None,
            instructions=NodeInstructions.from_dict(instructions) if instructions else None,
            selectors=[SelectorRef.from_dict(s) for s in data.get("selectors") or []],
            execution=ExecutionRecord.from_dict(execution) if execution else ExecutionRecord(),
            metadata=copy.deepcopy(data.get("metadata") or {}),
        )


@dataclass
class Edge:
    from_node: str
    to_node: str
    type: EdgeType = EdgeType.SEQUENTIAL
    condition: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return _compact({
            "from": self.from_node,
            "to": self.to_node,
            "type": self.type.value,
            "condition": self.condition,
        })

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Edge":
        return cls(
            from_node=data["from"],
            to_node=data["to"],
            type=EdgeType(data.get("type", "sequential")),
            condition=data.get("condition"),
        )


@dataclass
class GraphAuthorship:
    authoring_mode: Optional[bool] = None
    authored_by: Optional[AuthorshipSource] = None

    def to_dict(self) -> Dict[str, Any]:
        return _compact({
            "authoringMode": self.authoring_mode,
            "authoredBy": self.authored_by.value if self.authored_by else None,
        })

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GraphAuthorship":
        authored_by = data.get("authoredBy")
        return cls(
            authoring_mode=data.get("authoringMode"),
            authored_by=AuthorshipSource(authored_by) if authored_by else None,
        )


@dataclass
class GraphMetadata:
    """``spec_id`` + ``scenario_name`` identify a scenario across versions."""
    created_at: str
    spec_id: str
    scenario_name: str
    feature_name: Optional[str] = None
    scenario_tags: Optional[List[str]] = None
    authorship: Optional[GraphAuthorship] = None
    updated_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return _compact({
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "specId": self.spec_id,
            "scenarioName": self.scenario_name,
            "featureName": self.feature_name,
            "scenarioTags": list(self.scenario_tags) if self.scenario_tags else None,
            "authorship": self.authorship.to_dict() if self.authorship else None,
        })

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GraphMetadata":
        authorship = data.get("authorship")
        return cls(
            created_at=data.get("createdAt", ""),
            updated_at=data.get("updatedAt"),
            spec_id=data.get("specId", ""),
            scenario_name=data.get("scenarioName", ""),
            feature_name=data.get("featureName"),
            scenario_tags=data.get("scenarioTags"),
            authorship=GraphAuthorship.from_dict(authorship) if authorship else None,
        )


@dataclass
class ActionGraph:
    graph_id: str
    nodes: List[ActionNode]
    edges: List[Edge]
    metadata: GraphMetadata
    version: str = GRAPH_VERSION

    def get_node(self, node_id: str) -> Optional[ActionNode]:
        for node in self.nodes:
            if node.node_id == node_id:
                return node
        return None

    @property
    def background_nodes(self) -> List[ActionNode]:
        return sorted((n for n in self.nodes if n.is_background), key=lambda n: n.step_index)

    @property
    def scenario_nodes(self) -> List[ActionNode]:
        return sorted((n for n in self.nodes if not n.is_background), key=lambda n: n.step_index)

    def validate(self) -> None:
        """
        Check the structural invariants of a finalized graph.

        Raises:
            GraphBuildError: when metadata is incomplete, no nodes exist,
                step indexes are not strictly increasing, or the edges
                reference unknown nodes or form a cycle.
        """
        if not self.metadata.spec_id:
            raise GraphBuildError("specId is required")
        if not self.metadata.scenario_name:
            raise GraphBuildError("scenarioName is required")
        if not self.nodes:
            raise GraphBuildError("At least one node is required")

        seen = set()
        previous_index = -1
        for node in self.nodes:
            if node.node_id in seen:
                raise GraphBuildError(f"Duplicate nodeId '{node.node_id}'", details={"nodeId": node.node_id})
            seen.add(node.node_id)
            if node.step_index <= previous_index:
                raise GraphBuildError(
                    f"stepIndex must be strictly increasing (node '{node.node_id}' has {node.step_index})",
                    details={"nodeId": node.node_id},
                )
            previous_index = node.step_index

        adjacency: Dict[str, List[str]] = {node_id: [] for node_id in seen}
        for edge in self.edges:
            for endpoint in (edge.from_node, edge.to_node):
                if endpoint not in seen:
                    raise GraphBuildError(f"Edge references unknown node '{endpoint}'")
            adjacency[edge.from_node].append(edge.to_node)

        if _has_cycle(adjacency):
            raise GraphBuildError("Action graph edges must not form a cycle")

    def with_execution(self, node_id: str, record: ExecutionRecord) -> "ActionGraph":
        """Return a copy of the graph with one node's execution record replaced."""
        if self.get_node(node_id) is None:
            raise KeyError(node_id)
        nodes = [
            replace(copy.deepcopy(n), execution=record) if n.node_id == node_id else copy.deepcopy(n)
            for n in self.nodes
        ]
        return replace(self, nodes=nodes, edges=copy.deepcopy(self.edges), metadata=copy.deepcopy(self.metadata))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "graphId": self.graph_id,
            "version": self.version,
            "nodes": [n.to_dict() for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
            "metadata": self.metadata.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ActionGraph":
        return cls(
            graph_id=data["graphId"],
            version=data.get("version", GRAPH_VERSION),
            nodes=[ActionNode.from_dict(n) for n in data.get("nodes", [])],
            edges=[Edge.from_dict(e) for e in data.get("edges", [])],
            metadata=GraphMetadata.from_dict(data.get("metadata", {})),
        )


def generate_graph_id() -> str:
    """Fresh identifier for a compiled graph snapshot."""
    return str(uuid.uuid4())


def _has_cycle(adjacency: Dict[str, List[str]]) -> bool:
    visiting, done = set(), set()

    def visit(node: str) -> bool:
        if node in done:
            return False
        if node in visiting:
            return True
        visiting.add(node)
        for target in adjacency.get(node, []):
            if visit(target):
                return True
        visiting.discard(node)
        done.add(node)
        return False

    return any(visit(node) for node in sorted(adjacency))
