import pytest

from stepgraph.graph.builder import ScenarioDefinition, ScenarioStep
from stepgraph.selectors.page import PageHandle


class FakeElement:
    def __init__(self, tag="div", text="", parent=None, visible=True, **attrs):
        self.tag = tag
        self.text = text
        self.parent = parent
        self.visible = visible
        self.attrs = {k.replace("_", "-"): v for k, v in attrs.items()}
        self.clicks = 0
        self.value = None
        self.checked = False

    def __repr__(self):
        return f"FakeElement({self.tag!r}, {self.text!r})"


class FakePage(PageHandle):
    """
    In-memory page: CSS selectors map to element lists, roles to
    elements whose text is their accessible name.
    """

    def __init__(self, selectors=None, roles=None, body_text="", unreachable=()):
        self.selectors = selectors or {}
        self.roles = roles or {}
        self.body_text = body_text
        self.unreachable = set(unreachable)
        self.visited = []
        self.queries = []
        self.closed = False
        self.extracted = {}

    def _in_scope(self, elements, scope):
        return [e for e in elements if scope is None or e.parent is scope]

    def navigate(self, url):
        from stepgraph.errors import RouteUnavailableError

        if url in self.unreachable:
            raise RouteUnavailableError(f"Connection refused for {url}")
        self.visited.append(url)

    def query(self, selector, scope=None):
        self.queries.append(selector)
        return self._in_scope(self.selectors.get(selector, []), scope)

    def query_by_role(self, role, name, scope=None):
        self.queries.append(f"role={role}:{name.pattern}")
        return [
            e for e in self._in_scope(self.roles.get(role, []), scope)
            if e.visible and name.search(e.attrs.get("aria-label") or e.text)
        ]

    def tag_name(self, element):
        return element.tag

    def get_attribute(self, element, name):
        return element.attrs.get(name)

    def text_of(self, element=None):
        return self.body_text if element is None else element.text

    def is_visible(self, element):
        return element.visible

    def click(self, element):
        element.clicks += 1

    def fill(self, element, value):
        element.value = value

    def select(self, element, value):
        element.value = value

    def check(self, element, value=True):
        element.checked = bool(value)

    def evaluate(self, script, *args):
        return self.extracted.get(self.visited[-1], []) if self.visited else []

    def wait(self, milliseconds):
        pass

    def close(self):
        self.closed = True


@pytest.fixture
def element():
    return FakeElement


@pytest.fixture
def make_page():
    return FakePage


@pytest.fixture
def login_scenario():
    return ScenarioDefinition(
        name="Valid login",
        background=[
            ScenarioStep("given", "I am on the login page"),
        ],
        steps=[
            ScenarioStep("when", 'I enter email as "qa@example.com"', selector_id="email-input"),
            ScenarioStep("and", 'I enter password as "secret"'),
            ScenarioStep("and", "I click the submit button"),
            ScenarioStep("then", 'I should see text "Welcome back"'),
        ],
        selectors={"email-input": "[data-testid='email-input']"},
        tags=["@smoke", "auth", "smoke"],
    )


@pytest.fixture
def login_pages():
    return {"login": "/login", "dashboard": "/dashboard"}


@pytest.fixture
def no_env_overrides(monkeypatch):
    for name in ("SELECTOR_STRATEGY", "STEPGRAPH_REGISTRY_PATH", "STEPGRAPH_GRAPH_DIR", "LLM_PROVIDER",
                 "OPENAI_API_KEY", "ANTHROPIC_API_KEY"):
        monkeypatch.delenv(name, raising=False)
