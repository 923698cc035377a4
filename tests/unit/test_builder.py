import pytest

from stepgraph.errors import GraphBuildError
from stepgraph.graph.builder import (
    ActionGraphBuilder,
    ScenarioDefinition,
    ScenarioStep,
    build_action_graph,
    resolve_node_type,
)
from stepgraph.graph.types import (
    ActionGraph,
    AuthorshipSource,
    DeterministicAction,
    EdgeType,
    ExecutionRecord,
    ExecutionState,
    GherkinKeyword,
    NodeType,
)


def test_build_login_graph_nodes_in_order(login_scenario, login_pages):
    graph = build_action_graph(login_scenario, spec_id="login-spec", feature_name="Login", pages=login_pages)

    assert [n.node_id for n in graph.nodes] == ["bg_0", "step_0", "step_1", "step_2", "step_3"]
    assert [n.step_index for n in graph.nodes] == [0, 1, 2, 3, 4]
    assert [n.type for n in graph.nodes] == [
        NodeType.SETUP, NodeType.ACT, NodeType.ACT, NodeType.ACT, NodeType.ASSERT
    ]
    assert graph.metadata.spec_id == "login-spec"
    assert graph.metadata.scenario_name == "Valid login"
    assert graph.metadata.feature_name == "Login"
    assert graph.metadata.created_at.endswith("Z")


def test_build_chains_consecutive_nodes(login_scenario, login_pages):
    graph = build_action_graph(login_scenario, spec_id="login-spec", pages=login_pages)

    pairs = [(e.from_node, e.to_node) for e in graph.edges]
    assert pairs == [("bg_0", "step_0"), ("step_0", "step_1"), ("step_1", "step_2"), ("step_2", "step_3")]
    assert all(e.type is EdgeType.SEQUENTIAL for e in graph.edges)


def test_single_node_has_no_edges():
    scenario = ScenarioDefinition(name="Ping", steps=[ScenarioStep("given", "the service is up")])
    graph = build_action_graph(scenario, spec_id="ping")

    assert len(graph.nodes) == 1
    assert graph.edges == []


def test_natural_instruction_always_kept(login_scenario, login_pages):
    graph = build_action_graph(login_scenario, spec_id="login-spec", pages=login_pages)

    for node in graph.nodes:
        assert node.instructions.natural == node.gherkin_step.text


def test_known_selector_attached_as_verified_ref(login_scenario, login_pages):
    graph = build_action_graph(login_scenario, spec_id="login-spec", pages=login_pages)

    email = graph.get_node("step_0")
    assert len(email.selectors) == 1
    assert email.selectors[0].id == "email-input"
    assert email.selectors[0].locator == "[data-testid='email-input']"
    assert email.selectors[0].verified is True
    assert graph.get_node("step_1").selectors == []


def test_unknown_selector_id_is_not_attached():
    scenario = ScenarioDefinition(
        name="Search",
        steps=[ScenarioStep("when", "I click the search button", selector_id="search-btn")],
        selectors={},
    )
    graph = build_action_graph(scenario, spec_id="search")

    node = graph.get_node("step_0")
    assert node.selectors == []
    assert node.deterministic.selector == "search-btn"


def test_deterministic_instructions_inferred(login_scenario, login_pages):
    graph = build_action_graph(
        login_scenario, spec_id="login-spec", pages=login_pages, base_url="https://app.test"
    )

    nav = graph.get_node("bg_0").deterministic
    assert nav.action is DeterministicAction.NAVIGATE
    assert nav.value == "https://app.test/login"

    fill = graph.get_node("step_1").deterministic
    assert fill.selector == "password-input"
    assert fill.action is DeterministicAction.FILL
    assert fill.value == "secret"

    click = graph.get_node("step_2")
    assert click.deterministic.selector == "submit-button"
    assert click.metadata["selectorHintType"] == "submit"

    check = graph.get_node("step_3").deterministic
    assert check.action is None
    assert check.value == "Welcome back"


def test_test_data_lands_in_metadata():
    scenario = ScenarioDefinition(
        name="Checkout",
        steps=[ScenarioStep("given", "a cart", test_data={"sku": "A-1", "qty": 2})],
    )
    graph = build_action_graph(scenario, spec_id="shop")

    assert graph.get_node("step_0").metadata["testData"] == {"sku": "A-1", "qty": 2}


def test_unknown_page_reference_is_a_build_error(login_pages):
    scenario = ScenarioDefinition(name="Lost", steps=[ScenarioStep("given", "I am on the settings page")])

    with pytest.raises(GraphBuildError) as exc:
        build_action_graph(scenario, spec_id="lost", pages=login_pages)

    assert "Unknown page reference" in str(exc.value)
    assert exc.value.code == "BUILD_ERROR"


def test_tags_deduplicated_in_order(login_scenario):
    graph = build_action_graph(login_scenario, spec_id="login-spec", infer_instructions=False)

    assert graph.metadata.scenario_tags == ["smoke", "auth"]


def test_authorship_defaults_from_authoring_mode(login_scenario):
    llm = build_action_graph(login_scenario, spec_id="s", infer_instructions=False)
    manual = build_action_graph(login_scenario, spec_id="s", authoring_mode=False, infer_instructions=False)

    assert llm.metadata.authorship.authored_by is AuthorshipSource.LLM
    assert manual.metadata.authorship.authored_by is AuthorshipSource.MANUAL
    assert manual.metadata.authorship.authoring_mode is False


def test_empty_scenario_is_a_build_error():
    with pytest.raises(GraphBuildError):
        build_action_graph(ScenarioDefinition(name="Empty", steps=[]), spec_id="empty")


def test_missing_spec_id_is_a_build_error(login_scenario):
    with pytest.raises(GraphBuildError):
        build_action_graph(login_scenario, spec_id="")


@pytest.mark.parametrize("keyword,previous,background,expected", [
    ("given", None, False, NodeType.SETUP),
    ("when", None, False, NodeType.ACT),
    ("then", None, False, NodeType.ASSERT),
    ("and", NodeType.ASSERT, False, NodeType.ASSERT),
    ("but", None, False, NodeType.ACT),
    ("then", None, True, NodeType.ASSERT),
    ("when", None, True, NodeType.ACT),
    ("given", None, True, NodeType.SETUP),
    ("and", NodeType.ACT, True, NodeType.SETUP),
])
def test_resolve_node_type(keyword, previous, background, expected):
    assert resolve_node_type(keyword, previous, background) is expected


def test_and_after_background_does_not_inherit_background_type():
    scenario = ScenarioDefinition(
        name="Order",
        background=[ScenarioStep("then", "the banner is shown")],
        steps=[ScenarioStep("and", "the user waits")],
    )
    graph = build_action_graph(scenario, spec_id="order", infer_instructions=False)

    assert graph.get_node("bg_0").type is NodeType.ASSERT
    assert graph.get_node("step_0").type is NodeType.ACT


def test_builder_refuses_changes_after_build():
    builder = (
        ActionGraphBuilder("g-1")
        .set_spec_id("spec")
        .set_scenario_name("One")
        .add_gherkin_step("step_0", GherkinKeyword.GIVEN, "a thing", NodeType.SETUP)
    )
    builder.build()

    assert builder.finalized
    with pytest.raises(GraphBuildError):
        builder.add_node("step_1", NodeType.ACT)
    with pytest.raises(GraphBuildError):
        builder.build()


def test_builder_rejects_duplicate_node_ids():
    builder = ActionGraphBuilder().add_node("step_0", NodeType.ACT)

    with pytest.raises(GraphBuildError):
        builder.add_node("step_0", NodeType.ACT)


def test_builder_rejects_edge_cycles():
    builder = (
        ActionGraphBuilder()
        .set_spec_id("spec")
        .set_scenario_name("Loop")
        .add_node("a", NodeType.ACT)
        .add_node("b", NodeType.ACT)
        .add_edge("a", "b")
        .add_edge("b", "a")
    )

    with pytest.raises(GraphBuildError) as exc:
        builder.build()
    assert "cycle" in str(exc.value)


def test_builder_rejects_edges_to_unknown_nodes():
    builder = (
        ActionGraphBuilder()
        .set_spec_id("spec")
        .set_scenario_name("Dangling")
        .add_node("a", NodeType.ACT)
        .add_edge("a", "ghost")
    )

    with pytest.raises(GraphBuildError):
        builder.build()


def test_with_execution_returns_updated_copy(login_scenario, login_pages):
    graph = build_action_graph(login_scenario, spec_id="login-spec", pages=login_pages)
    record = ExecutionRecord(state=ExecutionState.SUCCESS, duration=120)

    updated = graph.with_execution("step_2", record)

    assert updated.get_node("step_2").execution.state is ExecutionState.SUCCESS
    assert graph.get_node("step_2").execution.state is ExecutionState.PENDING
    with pytest.raises(KeyError):
        graph.with_execution("missing", record)


def test_graph_json_shape(login_scenario, login_pages):
    graph = build_action_graph(login_scenario, spec_id="login-spec", pages=login_pages, graph_id="g-42")
    data = graph.to_dict()

    assert data["graphId"] == "g-42"
    assert data["edges"][0] == {"from": "bg_0", "to": "step_0", "type": "sequential"}
    assert data["nodes"][1]["gherkinStep"] == {"keyword": "when", "text": 'I enter email as "qa@example.com"'}
    assert data["metadata"]["scenarioTags"] == ["smoke", "auth"]
    assert ActionGraph.from_dict(data).to_dict() == data
