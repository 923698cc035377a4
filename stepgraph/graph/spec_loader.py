"""
Normalized scenario documents.

A normalized spec is a YAML document with a feature title, an optional
background, one or more scenarios and authoring metadata. It is
validated with pydantic before any graph is built from it.
"""

from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, Field, ValidationError

from stepgraph.errors import GraphBuildError
from stepgraph.graph.builder import ScenarioDefinition, ScenarioStep, build_action_graph
from stepgraph.graph.types import ActionGraph, AuthorshipSource, GherkinKeyword


class NormalizedStep(BaseModel):
    """Single step of a normalized scenario."""

    type: GherkinKeyword
    text: str = Field(min_length=1)
    selector: Optional[str] = Field(default=None, pattern=r"^[a-z0-9-]+$")
    testData: Optional[Dict[str, Any]] = None


class NormalizedBackground(BaseModel):
    steps: List[NormalizedStep] = Field(min_length=1)


class NormalizedScenario(BaseModel):
    name: str = Field(min_length=3, max_length=200)
    tags: List[str] = Field(default_factory=list)
    steps: List[NormalizedStep] = Field(min_length=1)
    selectors: Dict[str, str] = Field(default_factory=dict)


class NormalizedMetadata(BaseModel):
    specId: str = Field(min_length=1)
    generatedAt: Optional[str] = None
    llmProvider: Optional[str] = None
    llmModel: Optional[str] = None
    authoringMode: bool = True
    authoredBy: Optional[AuthorshipSource] = None


class NormalizedSpec(BaseModel):
    """Validated normalized scenario document."""

    feature: str = Field(min_length=3, max_length=200)
    description: Optional[str] = None
    background: Optional[NormalizedBackground] = None
    scenarios: List[NormalizedScenario] = Field(min_length=1)
    metadata: NormalizedMetadata
    pages: Dict[str, str] = Field(default_factory=dict)
    baseUrl: Optional[str] = None


def parse_normalized_spec(content: str, source: str = "<string>") -> NormalizedSpec:
    """Parse and validate YAML text."""
    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise GraphBuildError(f"Invalid YAML in {source}: {e}", details={"source": source}) from e

    return validate_normalized_spec(data, source)


def validate_normalized_spec(data: Any, source: str = "<string>") -> NormalizedSpec:
    """Validate an already-parsed document."""
    if not isinstance(data, dict):
        raise GraphBuildError(f"Normalized spec {source} must be a mapping", details={"source": source})

    try:
        return NormalizedSpec.model_validate(data)
    except ValidationError as e:
        raise GraphBuildError(
            f"Normalized spec {source} failed validation: {e}",
            details={"source": source, "errors": e.errors(include_url=False)},
        ) from e


def load_normalized_spec(path: Union[str, Path]) -> NormalizedSpec:
    path = Path(path)
    return parse_normalized_spec(path.read_text(encoding="utf-8"), source=str(path))


def _to_steps(steps: List[NormalizedStep]) -> List[ScenarioStep]:
    return [
        ScenarioStep(keyword=s.type, text=s.text, selector_id=s.selector, test_data=s.testData)
        for s in steps
    ]


def graphs_from_spec(
    spec: NormalizedSpec,
    pages: Optional[Dict[str, str]] = None,
    base_url: Optional[str] = None,
) -> List[ActionGraph]:
    """Build one action graph per scenario of a normalized spec."""
    background = _to_steps(spec.background.steps) if spec.background else []
    page_map = pages if pages is not None else (spec.pages or None)
    graphs = []
    for scenario in spec.scenarios:
        definition = ScenarioDefinition(
            name=scenario.name,
            steps=_to_steps(scenario.steps),
            background=background,
            selectors=dict(scenario.selectors),
            tags=list(scenario.tags),
        )
        graphs.append(build_action_graph(
            definition,
            spec_id=spec.metadata.specId,
            feature_name=spec.feature,
            authoring_mode=spec.metadata.authoringMode,
            authored_by=spec.metadata.authoredBy,
            pages=page_map,
            base_url=base_url or spec.baseUrl,
        ))
    return graphs
