"""
Action Graph Compiler.

Emits two artifacts from a finalized graph:

1. a Gherkin feature document (Background / tagged Scenario), and
2. a pytest-bdd step module that replays each node's deterministic
   instruction through the selector resolver. Its ``page`` and
   ``selector_resolver`` fixtures come from the ``stepgraph`` pytest
   plugin (:mod:`stepgraph.testing`), registered on install.

Both generators are pure and byte-stable: compiling the same graph
twice yields identical text. :func:`compile_action_graph` is the only
function here that touches the file system.
"""

import json
import logging
import os
from dataclasses import dataclass
from typing import Any, List, Optional, Set, Tuple

from stepgraph.graph.persistence import scenario_key
from stepgraph.graph.types import (
    ActionGraph,
    ActionNode,
    DeterministicAction,
    GherkinKeyword,
    NodeType,
)
from stepgraph.utils.logging import log_event

logger = logging.getLogger(__name__)

DEFAULT_FEATURE_DIR = os.path.join("tests", "features", "generated")
DEFAULT_STEPS_DIR = os.path.join("tests", "steps", "generated")

INDENT = "    "
PRIMARY_KEYWORDS = (GherkinKeyword.GIVEN, GherkinKeyword.WHEN, GherkinKeyword.THEN)
ELEMENT_ACTIONS = (
    DeterministicAction.CLICK,
    DeterministicAction.FILL,
    DeterministicAction.SELECT,
    DeterministicAction.CHECK,
)


@dataclass
class CompileResult:
    """Paths and contents of the compiled artifacts."""
    feature_path: str
    steps_path: str
    feature_content: str
    steps_content: str
    dry_run: bool = False
    graph_path: Optional[str] = None


def feature_file_name(graph: ActionGraph) -> str:
    return f"{scenario_key(graph.metadata.scenario_name)}.feature"


def steps_file_name(graph: ActionGraph) -> str:
    return f"test_{scenario_key(graph.metadata.scenario_name).replace('-', '_')}.py"


def _literal(value: Any) -> str:
    """Python source literal for ``value``."""
    if isinstance(value, str):
        return json.dumps(value, ensure_ascii=False)
    return repr(value)


def _gherkin_line(node: ActionNode) -> Optional[str]:
    if not node.gherkin_step:
        return None
    return f"{node.gherkin_step.keyword.value.capitalize()} {node.gherkin_step.text}"


def generate_feature_content(graph: ActionGraph, include_metadata: bool = True) -> str:
    """Render the readable scenario document for a graph."""
    meta = graph.metadata
    lines: List[str] = []

    if include_metadata:
        lines.append(f"# specId: {meta.spec_id}")
        lines.append(f"# graphId: {graph.graph_id}")

    lines.append(f"Feature: {meta.feature_name or meta.scenario_name}")

    background = [line for line in map(_gherkin_line, graph.background_nodes) if line]
    if background:
        lines.append("")
        lines.append(f"{INDENT}Background:")
        lines.extend(f"{INDENT * 2}{line}" for line in background)

    lines.append("")
    if meta.scenario_tags:
        lines.append(INDENT + " ".join(f"@{tag}" for tag in meta.scenario_tags))
    lines.append(f"{INDENT}Scenario: {meta.scenario_name}")
    for line in map(_gherkin_line, graph.scenario_nodes):
        if line:
            lines.append(f"{INDENT * 2}{line}")

    return "\n".join(lines) + "\n"


def _effective_keywords(nodes: List[ActionNode]) -> List[GherkinKeyword]:
    """Map And/But to the primary keyword they continue (Given when leading)."""
    keywords = []
    current = GherkinKeyword.GIVEN
    for node in nodes:
        keyword = node.gherkin_step.keyword if node.gherkin_step else GherkinKeyword.GIVEN
        if keyword in PRIMARY_KEYWORDS:
            current = keyword
        keywords.append(current)
    return keywords


def _selector_target(node: ActionNode) -> Tuple[Optional[str], Optional[str]]:
    """Selector id and known locator for a node, if any."""
    det = node.deterministic
    selector_id = det.selector if det and det.selector else None
    if selector_id is None and node.selectors:
        selector_id = node.selectors[0].id

    locator = None
    for ref in node.selectors:
        if ref.id == selector_id and ref.locator:
            locator = ref.locator
            break
    return selector_id, locator


def _resolve_statement(node: ActionNode) -> Optional[str]:
    selector_id, locator = _selector_target(node)
    hint = selector_id or node.metadata.get("selectorHintText")
    if not hint and not locator:
        return None

    args = [_literal(hint) if hint else "None"]
    if locator:
        args.append(f"locator={_literal(locator)}")
    for option, key in (
        ("text_hint", "selectorHintText"),
        ("type_hint", "selectorHintType"),
        ("role_hint", "selectorHintRole"),
    ):
        value = node.metadata.get(key)
        if value:
            args.append(f"{option}={_literal(value)}")
    return f"target = selector_resolver.resolve({', '.join(args)}).element"


def node_statements(node: ActionNode) -> Tuple[List[str], Set[str]]:
    """
    Python statements replaying one node and the fixtures they need.

    Nodes without a usable instruction produce no statements.
    """
    det = node.deterministic
    if det is None:
        return [], set()

    action = det.action
    if action is DeterministicAction.NAVIGATE:
        if det.value is None:
            return [], set()
        return [f"page.navigate({_literal(det.value)})"], {"page"}

    if action is DeterministicAction.WAIT:
        return [f"page.wait({_literal(det.value if det.value is not None else 0)})"], {"page"}

    if action in ELEMENT_ACTIONS:
        resolve = _resolve_statement(node)
        if resolve is None:
            return [], set()
        if action is DeterministicAction.CLICK:
            call = "page.click(target)"
        else:
            call = f"page.{action.value}(target, {_literal(det.value)})"
        return [resolve, call], {"page", "selector_resolver"}

    if action is None and node.type is NodeType.ASSERT:
        resolve = _resolve_statement(node) if (det.selector or node.selectors) else None
        if resolve:
            if det.value is not None:
                check = f"assert {_literal(str(det.value))} in page.text_of(target)"
            else:
                check = "assert page.is_visible(target)"
            return [resolve, check], {"page", "selector_resolver"}
        if det.value is not None:
            return [f"assert {_literal(str(det.value))} in page.text_of(None)"], {"page"}

    return [], set()


def generate_step_definitions(
    graph: ActionGraph,
    feature_path: Optional[str] = None,
    include_metadata: bool = True,
) -> str:
    """
    Render a pytest-bdd step module for a graph.

    Args:
        graph: The graph to compile.
        feature_path: Path of the feature document as seen from the step
            module (defaults to the feature file name).
        include_metadata: Add the graph/spec provenance docstring.
    """
    meta = graph.metadata
    ordered = graph.background_nodes + graph.scenario_nodes
    keywords = _effective_keywords(graph.background_nodes) + _effective_keywords(graph.scenario_nodes)

    blocks: List[str] = []
    used_decorators: Set[str] = set()
    seen: Set[Tuple[GherkinKeyword, str]] = set()
    for node, keyword in zip(ordered, keywords):
        if not node.gherkin_step:
            continue
        key = (keyword, node.gherkin_step.text)
        if key in seen:
            continue
        seen.add(key)
        used_decorators.add(keyword.value)

        statements, fixtures = node_statements(node)
        params = ", ".join(sorted(fixtures))
        body = statements or ["pass"]
        block = [f"@{keyword.value}({_literal(node.gherkin_step.text)})", f"def {node.node_id}({params}):"]
        block.extend(f"{INDENT}{statement}" for statement in body)
        blocks.append("\n".join(block))

    lines: List[str] = []
    if include_metadata:
        lines.append('"""')
        lines.append(f"Step definitions for scenario {_literal(meta.scenario_name)}.")
        lines.append("")
        lines.append(f"Generated from action graph {graph.graph_id} (spec {meta.spec_id}). Do not edit.")
        lines.append('"""')
        lines.append("")

    imports = ", ".join(sorted(used_decorators | {"scenarios"}))
    lines.append(f"from pytest_bdd import {imports}")
    lines.append("")
    lines.append(f"scenarios({_literal(feature_path or feature_file_name(graph))})")

    for block in blocks:
        lines.append("")
        lines.append("")
        lines.append(block)

    return "\n".join(lines) + "\n"


def compile_action_graph(
    graph: ActionGraph,
    feature_dir: Optional[str] = None,
    steps_dir: Optional[str] = None,
    dry_run: bool = False,
    include_metadata: bool = True,
) -> CompileResult:
    """
    Compile a graph to a feature document and a step module on disk.

    Nothing is written when ``dry_run`` is set; the returned paths are
    where the artifacts would land.
    """
    graph.validate()
    feature_dir = feature_dir or DEFAULT_FEATURE_DIR
    steps_dir = steps_dir or DEFAULT_STEPS_DIR

    feature_path = os.path.join(feature_dir, feature_file_name(graph))
    steps_path = os.path.join(steps_dir, steps_file_name(graph))
    relative_feature = os.path.relpath(feature_path, steps_dir).replace(os.sep, "/")

    feature_content = generate_feature_content(graph, include_metadata=include_metadata)
    steps_content = generate_step_definitions(graph, relative_feature, include_metadata=include_metadata)

    if not dry_run:
        os.makedirs(feature_dir, exist_ok=True)
        os.makedirs(steps_dir, exist_ok=True)
        for path, content in ((feature_path, feature_content), (steps_path, steps_content)):
            with open(path, "w", encoding="utf-8", newline="\n") as f:
                f.write(content)
        log_event("graph.compiled", "Artifacts written", featurePath=feature_path, stepsPath=steps_path)
    else:
        logger.info(f"[Compiler] Dry run: would write {feature_path} and {steps_path}")

    return CompileResult(
        feature_path=feature_path,
        steps_path=steps_path,
        feature_content=feature_content,
        steps_content=steps_content,
        dry_run=dry_run,
    )


def compile_graph_file(graph_path: str, **options: Any) -> CompileResult:
    """Load a persisted graph JSON file and compile it."""
    with open(graph_path, "r", encoding="utf-8") as f:
        graph = ActionGraph.from_dict(json.load(f))
    result = compile_action_graph(graph, **options)
    result.graph_path = graph_path
    return result
