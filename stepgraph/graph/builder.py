"""
Action Graph Builder.

Turns a structured scenario (background + scenario steps) into a
finalized, validated :class:`ActionGraph`.
"""

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Union

from stepgraph.errors import GraphBuildError
from stepgraph.graph.instructions import StepInstructionParser, merge_hints
from stepgraph.graph.types import (
    ActionGraph,
    ActionNode,
    AuthorshipSource,
    DeterministicAction,
    DeterministicInstruction,
    Edge,
    EdgeType,
    ExecutionRecord,
    GherkinKeyword,
    GherkinStepRef,
    GraphAuthorship,
    GraphMetadata,
    NodeInstructions,
    NodeType,
    SelectorRef,
    generate_graph_id,
)
from stepgraph.utils.text import utc_now_iso

logger = logging.getLogger(__name__)


class ActionGraphBuilder:
    """
    Accumulates nodes, edges and metadata, then produces one graph.

    Setters return the builder so calls can be chained. ``build()``
    validates and returns an independent copy; the builder refuses any
    further change afterwards.

    Example:
        >>> graph = (
        ...     ActionGraphBuilder()
        ...     .set_spec_id("spec-1")
        ...     .set_scenario_name("Login")
        ...     .add_gherkin_step("step_0", GherkinKeyword.GIVEN, "I am on the login page", NodeType.SETUP)
        ...     .build()
        ... )
    """

    def __init__(self, graph_id: Optional[str] = None):
        self._graph_id = graph_id or generate_graph_id()
        self._nodes: List[ActionNode] = []
        self._edges: List[Edge] = []
        self._metadata: Dict[str, Any] = {}
        self._step_counter = 0
        self._finalized = False

    @property
    def finalized(self) -> bool:
        return self._finalized

    def _check_open(self) -> None:
        if self._finalized:
            raise GraphBuildError("Builder is finalized; create a new builder to change the graph")

    def _node(self, node_id: str) -> Optional[ActionNode]:
        for node in self._nodes:
            if node.node_id == node_id:
                return node
        return None

    def set_graph_id(self, graph_id: str) -> "ActionGraphBuilder":
        self._check_open()
        self._graph_id = graph_id
        return self

    def set_spec_id(self, spec_id: str) -> "ActionGraphBuilder":
        self._check_open()
        self._metadata["spec_id"] = spec_id
        return self

    def set_scenario_name(self, name: str) -> "ActionGraphBuilder":
        self._check_open()
        self._metadata["scenario_name"] = name
        return self

    def set_feature_name(self, name: Optional[str]) -> "ActionGraphBuilder":
        self._check_open()
        self._metadata["feature_name"] = name
        return self

    def set_scenario_tags(self, tags: Sequence[str]) -> "ActionGraphBuilder":
        self._check_open()
        unique = list(dict.fromkeys(t.lstrip("@") for t in tags if t))
        self._metadata["scenario_tags"] = unique or None
        return self

    def set_authorship(
        self, authoring_mode: bool, authored_by: Union[AuthorshipSource, str]
    ) -> "ActionGraphBuilder":
        self._check_open()
        self._metadata["authorship"] = GraphAuthorship(
            authoring_mode=authoring_mode, authored_by=AuthorshipSource(authored_by)
        )
        return self

    def add_node(self, node_id: str, node_type: Union[NodeType, str], **options: Any) -> "ActionGraphBuilder":
        self._check_open()
        if self._node(node_id) is not None:
            raise GraphBuildError(f"Duplicate nodeId '{node_id}'", details={"nodeId": node_id})
        self._nodes.append(ActionNode(
            node_id=node_id,
            type=NodeType(node_type),
            step_index=self._step_counter,
            gherkin_step=options.get("gherkin_step"),
            instructions=options.get("instructions"),
            selectors=list(options.get("selectors") or []),
            execution=options.get("execution") or ExecutionRecord(),
            metadata=dict(options.get("metadata") or {}),
        ))
        self._step_counter += 1
        return self

    def add_gherkin_step(
        self,
        node_id: str,
        keyword: Union[GherkinKeyword, str],
        text: str,
        node_type: Union[NodeType, str, None] = None,
    ) -> "ActionGraphBuilder":
        self._check_open()
        step = GherkinStepRef(keyword=GherkinKeyword(keyword), text=text)
        node = self._node(node_id)
        if node:
            node.gherkin_step = step
            return self
        return self.add_node(node_id, node_type or NodeType.ACT, gherkin_step=step)

    def add_natural_instruction(self, node_id: str, instruction: str) -> "ActionGraphBuilder":
        self._check_open()
        node = self._node(node_id)
        if node:
            node.instructions = node.instructions or NodeInstructions()
            node.instructions.natural = instruction
        return self

    def add_deterministic_instruction(
        self,
        node_id: str,
        selector: Optional[str] = None,
        action: Union[DeterministicAction, str, None] = None,
        value: Any = None,
    ) -> "ActionGraphBuilder":
        self._check_open()
        node = self._node(node_id)
        if node:
            node.instructions = node.instructions or NodeInstructions()
            node.instructions.deterministic = DeterministicInstruction(
                selector=selector,
                action=DeterministicAction(action) if action else None,
                value=value,
            )
        return self

    def add_selector(
        self, node_id: str, selector_id: str, locator: Optional[str] = None, verified: bool = False
    ) -> "ActionGraphBuilder":
        self._check_open()
        node = self._node(node_id)
        if node:
            node.selectors.append(SelectorRef(id=selector_id, locator=locator, verified=verified))
        return self

    def add_metadata(self, node_id: str, metadata: Dict[str, Any]) -> "ActionGraphBuilder":
        self._check_open()
        node = self._node(node_id)
        if node:
            node.metadata = {**node.metadata, **metadata}
        return self

    def add_edge(
        self,
        from_node: str,
        to_node: str,
        edge_type: Union[EdgeType, str] = EdgeType.SEQUENTIAL,
        condition: Optional[str] = None,
    ) -> "ActionGraphBuilder":
        self._check_open()
        self._edges.append(Edge(from_node=from_node, to_node=to_node, type=EdgeType(edge_type), condition=condition))
        return self

    def add_sequential_chain(self, *node_ids: str) -> "ActionGraphBuilder":
        for current, following in zip(node_ids, node_ids[1:]):
            self.add_edge(current, following, EdgeType.SEQUENTIAL)
        return self

    def build(self) -> ActionGraph:
        """
        Validate and return the graph.

        Raises:
            GraphBuildError: when specId or scenarioName is unset, no nodes
                were added, or the builder was already finalized.
        """
        self._check_open()
        if not self._metadata.get("spec_id"):
            raise GraphBuildError("specId is required")
        if not self._metadata.get("scenario_name"):
            raise GraphBuildError("scenarioName is required")
        if not self._nodes:
            raise GraphBuildError("At least one node is required")

        graph = ActionGraph(
            graph_id=self._graph_id,
            nodes=copy.deepcopy(self._nodes),
            edges=copy.deepcopy(self._edges),
            metadata=GraphMetadata(
                created_at=utc_now_iso(),
                spec_id=self._metadata["spec_id"],
                scenario_name=self._metadata["scenario_name"],
                feature_name=self._metadata.get("feature_name"),
                scenario_tags=self._metadata.get("scenario_tags"),
                authorship=copy.deepcopy(self._metadata.get("authorship")),
            ),
        )
        graph.validate()
        self._finalized = True
        return graph


@dataclass
class ScenarioStep:
    """One authored step: keyword, sentence, optional selector id and fixtures."""
    keyword: GherkinKeyword
    text: str
    selector_id: Optional[str] = None
    test_data: Optional[Dict[str, Any]] = None

    def __post_init__(self) -> None:
        self.keyword = GherkinKeyword(self.keyword)


@dataclass
class ScenarioDefinition:
    name: str
    steps: List[ScenarioStep]
    background: List[ScenarioStep] = field(default_factory=list)
    selectors: Dict[str, str] = field(default_factory=dict)
    tags: List[str] = field(default_factory=list)


def resolve_node_type(
    keyword: Union[GherkinKeyword, str],
    previous: Optional[NodeType] = None,
    is_background: bool = False,
) -> NodeType:
    """Infer a node's semantic type from its step keyword."""
    keyword = GherkinKeyword(keyword)
    if is_background:
        if keyword is GherkinKeyword.THEN:
            return NodeType.ASSERT
        if keyword is GherkinKeyword.WHEN:
            return NodeType.ACT
        return NodeType.SETUP

    if keyword is GherkinKeyword.GIVEN:
        return NodeType.SETUP
    if keyword is GherkinKeyword.WHEN:
        return NodeType.ACT
    if keyword is GherkinKeyword.THEN:
        return NodeType.ASSERT
    return previous or NodeType.ACT


def build_action_graph(
    scenario: ScenarioDefinition,
    spec_id: str,
    feature_name: Optional[str] = None,
    tags: Optional[Sequence[str]] = None,
    authoring_mode: bool = True,
    authored_by: Union[AuthorshipSource, str, None] = None,
    pages: Optional[Dict[str, str]] = None,
    base_url: Optional[str] = None,
    infer_instructions: bool = True,
    graph_id: Optional[str] = None,
) -> ActionGraph:
    """
    Convert a scenario definition into a finalized action graph.

    Background steps become ``bg_<i>`` nodes and scenario steps
    ``step_<i>`` nodes, in that order, chained by sequential edges.

    Args:
        scenario: The scenario to convert.
        spec_id: Identifier of the scenario document the scenario belongs to.
        feature_name: Feature title for the generated document.
        tags: Scenario tags; defaults to ``scenario.tags``.
        authoring_mode: Whether the scenario was machine-assisted.
        authored_by: llm, manual or hybrid; derived from authoring_mode if unset.
        pages: Page name to route map used by "I am on the X page" steps.
        base_url: Prefix for relative page routes.
        infer_instructions: Derive deterministic instructions from step text.
        graph_id: Explicit graph id (a fresh uuid otherwise).

    Raises:
        GraphBuildError: when spec_id or scenario name is missing, the
            scenario yields no nodes, or a step names an unknown page.
    """
    authored_by = authored_by or (AuthorshipSource.LLM if authoring_mode else AuthorshipSource.MANUAL)
    builder = (
        ActionGraphBuilder(graph_id)
        .set_spec_id(spec_id)
        .set_scenario_name(scenario.name)
        .set_feature_name(feature_name)
        .set_scenario_tags(list(tags) if tags is not None else scenario.tags)
        .set_authorship(authoring_mode, authored_by)
    )
    parser = StepInstructionParser(pages=pages, base_url=base_url) if infer_instructions else None

    ordered_ids: List[str] = []
    for prefix, steps, is_background in (("bg", scenario.background, True), ("step", scenario.steps, False)):
        previous: Optional[NodeType] = None
        for idx, step in enumerate(steps):
            node_id = f"{prefix}_{idx}"
            previous = _add_step_node(builder, node_id, step, scenario.selectors, previous, is_background, parser)
            ordered_ids.append(node_id)

    if len(ordered_ids) > 1:
        builder.add_sequential_chain(*ordered_ids)

    graph = builder.build()
    logger.debug(f"[Builder] Built graph {graph.graph_id} with {len(graph.nodes)} nodes for '{scenario.name}'")
    return graph


def _add_step_node(
    builder: ActionGraphBuilder,
    node_id: str,
    step: ScenarioStep,
    selector_map: Dict[str, str],
    previous: Optional[NodeType],
    is_background: bool,
    parser: Optional[StepInstructionParser],
) -> NodeType:
    node_type = resolve_node_type(step.keyword, previous, is_background)
    builder.add_gherkin_step(node_id, step.keyword, step.text, node_type)
    builder.add_natural_instruction(node_id, step.text)

    if step.selector_id and step.selector_id in selector_map:
        builder.add_selector(node_id, step.selector_id, selector_map[step.selector_id], verified=True)

    metadata: Dict[str, Any] = {}
    if step.test_data:
        metadata["testData"] = dict(step.test_data)

    parsed = parser.parse(step.text) if parser else None
    if parsed:
        instruction = parsed.instruction
        selector = step.selector_id or instruction.selector
        builder.add_deterministic_instruction(node_id, selector, instruction.action, instruction.value)
        metadata = merge_hints(metadata, parsed.hints)

    if metadata:
        builder.add_metadata(node_id, metadata)
    return node_type
