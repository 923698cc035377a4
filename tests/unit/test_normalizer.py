from datetime import datetime, timezone

import pytest
import yaml

from stepgraph.errors import GraphBuildError
from stepgraph.graph.normalizer import (
    has_pending_clarifications,
    normalization_options,
    normalize_scenarios,
    sanitize_yaml_completion,
)
from stepgraph.graph.spec_loader import graphs_from_spec, load_normalized_spec
from stepgraph.llm import (
    CompletionMetadata,
    CompletionOptions,
    CompletionResult,
    LLMErrorCode,
    LLMProvider,
    LLMProviderError,
)

COMPLETION = """```yaml
feature: User login
scenarios:
  - name: Valid login
    tags: ["@smoke"]
    steps:
      - type: given
        text: I am on the login page
      - type: when
        text: I enter email as "qa@example.com"
      - type: and
        text: I click the submit button
      - type: then
        text: I should see "Welcome"
pages:
  login: /login
metadata:
  specId: user-login
```"""

ANSWERED = """# Clarifications

## Question 1
**Required**: Yes
Which page does the user land on?
Answer: the dashboard

## Question 2
**Required**: No
Remember me?
_[Pending answer]_
"""

PENDING = """## Question 1
**Required**: Yes
Which page does the user land on?
_[Pending answer]_
"""

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class ScriptedProvider(LLMProvider):
    """Returns queued completions; exceptions in the queue are raised."""

    name = "openai"

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def generate_completion(self, prompt, options):
        self.calls.append((prompt, options))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return CompletionResult(
            completion=response,
            metadata=CompletionMetadata(provider=self.name, model=options.model or "gpt-4o", tokens_used=321),
        )


@pytest.fixture
def feature_file(tmp_path):
    path = tmp_path / "User Login.md"
    path.write_text("Users sign in with email and password.", encoding="utf-8")
    return path


def test_has_pending_clarifications():
    assert has_pending_clarifications(PENDING)
    assert not has_pending_clarifications(ANSWERED)
    assert not has_pending_clarifications("No questions here")


def test_sanitize_strips_fences():
    assert sanitize_yaml_completion("```yaml\r\nfeature: x\r\n```") == "feature: x"
    assert sanitize_yaml_completion("feature: x") == "feature: x"


def test_normalization_options_env_and_overrides(monkeypatch):
    monkeypatch.setenv("LLM_MODEL", "claude-3-haiku")
    monkeypatch.setenv("LLM_TEMPERATURE", "0.4")
    monkeypatch.setenv("LLM_MAX_TOKENS", "lots")
    monkeypatch.delenv("LLM_TIMEOUT_MS", raising=False)

    options = normalization_options()
    assert options.model == "claude-3-haiku"
    assert options.temperature == 0.4
    assert options.max_tokens == 3000
    assert options.timeout_ms == 120000

    assert normalization_options(model="gpt-4o", temperature=0.0).model == "gpt-4o"
    assert normalization_options(temperature=0.0).temperature == 0.0


def test_normalize_writes_validated_yaml(feature_file, tmp_path):
    provider = ScriptedProvider(COMPLETION)
    output = tmp_path / "normalized" / "login.yaml"

    result = normalize_scenarios(
        feature_file, output_path=output, provider=provider,
        options=CompletionOptions(model="gpt-4o"), now=NOW,
    )

    assert result.output_path == str(output)
    assert result.metadata.tokens_used == 321
    written = yaml.safe_load(output.read_text(encoding="utf-8"))
    assert written["feature"] == "User login"
    assert written["metadata"] == {
        "specId": "user-login",
        "generatedAt": "2026-03-01T12:00:00.000Z",
        "llmProvider": "openai",
        "llmModel": "gpt-4o",
        "authoringMode": True,
        "authoredBy": "llm",
    }
    prompt = provider.calls[0][0]
    assert "Users sign in with email and password." in prompt
    assert 'I enter {field} as "{value}"' in prompt


def test_normalized_output_builds_graphs(feature_file, tmp_path):
    output = tmp_path / "login.yaml"
    normalize_scenarios(feature_file, output_path=output, provider=ScriptedProvider(COMPLETION), now=NOW)

    graph = graphs_from_spec(load_normalized_spec(output), base_url="https://app.test")[0]

    assert graph.metadata.spec_id == "user-login"
    assert graph.nodes[0].deterministic.value == "https://app.test/login"


def test_missing_spec_id_defaults_to_file_slug(feature_file, tmp_path):
    completion = COMPLETION.replace("metadata:\n  specId: user-login\n", "")

    result = normalize_scenarios(
        feature_file, output_path=tmp_path / "out.yaml", provider=ScriptedProvider(completion), now=NOW
    )

    assert result.spec.metadata.specId == "user-login"


def test_transient_provider_failures_are_retried(feature_file, tmp_path):
    provider = ScriptedProvider(LLMProviderError(LLMErrorCode.PROVIDER_ERROR, "503"), COMPLETION)
    sleeps = []

    result = normalize_scenarios(
        feature_file, output_path=tmp_path / "out.yaml", provider=provider, sleep=sleeps.append, now=NOW
    )

    assert len(provider.calls) == 2
    assert sleeps == [2.0]
    assert result.spec.feature == "User login"


def test_non_retriable_provider_failure_propagates(feature_file, tmp_path):
    provider = ScriptedProvider(LLMProviderError(LLMErrorCode.MODEL_NOT_AVAILABLE, "no such model"))

    with pytest.raises(LLMProviderError) as exc:
        normalize_scenarios(feature_file, output_path=tmp_path / "out.yaml", provider=provider, sleep=lambda s: None)

    assert exc.value.code == "MODEL_NOT_AVAILABLE"
    assert not (tmp_path / "out.yaml").exists()


def test_pending_clarifications_block_generation(feature_file, tmp_path):
    clarifications = tmp_path / "login.clarifications.md"
    clarifications.write_text(PENDING, encoding="utf-8")
    provider = ScriptedProvider(COMPLETION)

    with pytest.raises(GraphBuildError) as exc:
        normalize_scenarios(feature_file, clarifications_path=clarifications, provider=provider)

    assert "clarification" in exc.value.message
    assert provider.calls == []


def test_invalid_document_is_a_build_error(feature_file, tmp_path):
    provider = ScriptedProvider("feature: x\nscenarios: []\n")

    with pytest.raises(GraphBuildError) as exc:
        normalize_scenarios(feature_file, output_path=tmp_path / "out.yaml", provider=provider, now=NOW)

    assert exc.value.details["source"] == str(feature_file)
    assert not (tmp_path / "out.yaml").exists()


def test_default_provider_comes_from_factory(feature_file, tmp_path, monkeypatch):
    provider = ScriptedProvider(COMPLETION)
    monkeypatch.setattr("stepgraph.graph.normalizer.create_provider", lambda: provider)

    normalize_scenarios(feature_file, output_path=tmp_path / "out.yaml", now=NOW)

    assert len(provider.calls) == 1
