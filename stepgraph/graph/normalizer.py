"""
Scenario Normalizer - turns a prose feature description into a normalized
scenario document with a completion provider.

The provider is asked for YAML in the shape ``spec_loader`` validates and
is nudged towards the sentence shapes the instruction parser understands,
so the resulting document builds into graphs with deterministic steps.
"""

import logging
import os
import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from stepgraph.errors import GraphBuildError
from stepgraph.graph.instructions import STEP_PHRASES
from stepgraph.graph.spec_loader import NormalizedSpec, validate_normalized_spec
from stepgraph.llm import CompletionMetadata, CompletionOptions, LLMProvider, create_provider, with_retry
from stepgraph.utils.logging import log_event
from stepgraph.utils.text import slugify, utc_now_iso

logger = logging.getLogger(__name__)

DEFAULT_OUTPUT_DIR = "tests/normalized"
DEFAULT_TEMPERATURE = 0.1
DEFAULT_MAX_TOKENS = 3000
DEFAULT_TIMEOUT_MS = 120000

PENDING_ANSWER = re.compile(r"_\s*\[Pending answer\]_")
REQUIRED_FLAG = re.compile(r"\*\*Required\*\*:\s*(Yes|No)", re.IGNORECASE)
CODE_FENCE = re.compile(r"```(?:yaml|yml|json)?", re.IGNORECASE)


@dataclass
class NormalizeResult:
    output_path: str
    content: str
    metadata: CompletionMetadata
    spec: NormalizedSpec


def has_pending_clarifications(markdown: str) -> bool:
    """True when a question marked ``**Required**: Yes`` is still unanswered."""
    for section in re.split(r"## Question \d+", markdown)[1:]:
        required = REQUIRED_FLAG.search(section)
        if required and required.group(1).lower() == "yes" and PENDING_ANSWER.search(section):
            return True
    return False


def sanitize_yaml_completion(text: str) -> str:
    """Strip markdown fences and normalize line endings."""
    return CODE_FENCE.sub("", text).replace("```", "").strip().replace("\r\n", "\n")


def _number_env(key: str, fallback: float) -> float:
    raw = os.environ.get(key)
    if not raw:
        return fallback
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"[Normalizer] Ignoring non-numeric {key}={raw!r}")
        return fallback


def normalization_options(
    model: Optional[str] = None,
    temperature: Optional[float] = None,
    max_tokens: Optional[int] = None,
    timeout_ms: Optional[int] = None,
    provider_name: str = "",
) -> CompletionOptions:
    """
    Completion options for normalization.

    Explicit arguments win over ``LLM_MODEL``, ``LLM_TEMPERATURE``,
    ``LLM_MAX_TOKENS`` and ``LLM_TIMEOUT_MS``. An empty model lets the
    provider use its default.
    """
    return CompletionOptions(
        model=model or os.environ.get("LLM_MODEL", ""),
        temperature=temperature if temperature is not None else _number_env("LLM_TEMPERATURE", DEFAULT_TEMPERATURE),
        max_tokens=int(max_tokens if max_tokens is not None else _number_env("LLM_MAX_TOKENS", DEFAULT_MAX_TOKENS)),
        timeout_ms=int(timeout_ms if timeout_ms is not None else _number_env("LLM_TIMEOUT_MS", DEFAULT_TIMEOUT_MS)),
        metadata={"provider": provider_name, "stage": "normalize"},
    )


def build_normalization_prompt(spec_name: str, spec_content: str, clarifications: str = "") -> str:
    vocabulary = "\n".join(f"- {phrase}" for phrase in STEP_PHRASES)
    return f"""You convert feature descriptions into normalized BDD scenario documents.

FEATURE FILE: {spec_name}

FEATURE DESCRIPTION:
{spec_content.strip()}

CLARIFICATIONS:
{clarifications.strip() or "None"}

STEP SENTENCES (phrase every step as one of these where possible):
{vocabulary}

Respond with YAML only, using this structure:
feature: <title, 3-200 chars>
description: <optional>
background:            # optional
  steps: [<step>, ...]
scenarios:
  - name: <3-200 chars>
    tags: ["@smoke", ...]
    steps:
      - type: given|when|then|and|but
        text: <sentence>
        selector: <optional lowercase-hyphenated id>
pages:                 # page name -> route
  login: /login
metadata:
  specId: <lowercase-hyphenated id>
"""


def _coerce_metadata(data: Any, spec_id: str, completion: CompletionMetadata, now: Optional[datetime]) -> None:
    if not isinstance(data, dict):
        return
    metadata = data.get("metadata")
    if not isinstance(metadata, dict):
        metadata = data["metadata"] = {}

    generated_at = metadata.get("generatedAt")
    if isinstance(generated_at, datetime):
        metadata["generatedAt"] = utc_now_iso(generated_at)
    elif not generated_at:
        metadata["generatedAt"] = utc_now_iso(now)

    metadata.setdefault("specId", spec_id)
    metadata.setdefault("llmProvider", completion.provider)
    metadata.setdefault("llmModel", completion.model)
    metadata.setdefault("authoredBy", "llm")


def normalize_scenarios(
    spec_path: Union[str, Path],
    clarifications_path: Optional[Union[str, Path]] = None,
    output_path: Optional[Union[str, Path]] = None,
    provider: Optional[LLMProvider] = None,
    options: Optional[CompletionOptions] = None,
    now: Optional[datetime] = None,
    **retry_options: Any,
) -> NormalizeResult:
    """
    Generate, validate and write the normalized YAML for one feature file.

    Args:
        spec_path: Prose feature description (markdown).
        clarifications_path: Answered clarification questions, if any.
        output_path: Target YAML file (default ``tests/normalized/<slug>.yaml``).
        provider: Completion provider (default from ``create_provider()``).
        options: Completion options (default from :func:`normalization_options`).
        now: Timestamp for ``metadata.generatedAt`` when the model omits it.
        **retry_options: Forwarded to :func:`stepgraph.llm.with_retry`.

    Raises:
        GraphBuildError: pending required clarifications, unparsable YAML or
            a document that fails validation.
        LLMProviderError: the provider failed after retries.
    """
    spec_path = Path(spec_path)
    spec_content = spec_path.read_text(encoding="utf-8")
    clarifications = ""
    if clarifications_path:
        clarifications = Path(clarifications_path).read_text(encoding="utf-8")
        if has_pending_clarifications(clarifications):
            raise GraphBuildError(
                f"Missing required clarification answers for {spec_path.name}; normalization blocked",
                details={"source": str(spec_path), "clarifications": str(clarifications_path)},
            )

    slug = slugify(spec_path.stem)
    target = Path(output_path) if output_path else Path(DEFAULT_OUTPUT_DIR) / f"{slug}.yaml"

    provider = provider or create_provider()
    options = options or normalization_options(provider_name=provider.name)
    prompt = build_normalization_prompt(spec_path.name, spec_content, clarifications)

    logger.info(f"[Normalizer] Normalizing {spec_path.name} with {provider.name}")
    completion = with_retry(lambda: provider.generate_completion(prompt, options), provider.name, **retry_options)

    source = str(spec_path)
    try:
        data = yaml.safe_load(sanitize_yaml_completion(completion.completion))
    except yaml.YAMLError as e:
        raise GraphBuildError(f"Provider returned invalid YAML for {source}: {e}", details={"source": source}) from e

    _coerce_metadata(data, slug, completion.metadata, now)
    spec = validate_normalized_spec(data, source)

    content = yaml.safe_dump(
        spec.model_dump(mode="json", exclude_none=True), sort_keys=False, allow_unicode=True, width=120
    ).rstrip()
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(content + "\n", encoding="utf-8")

    log_event(
        "spec.normalized",
        f"Normalized {spec_path.name} into {len(spec.scenarios)} scenario(s)",
        specId=spec.metadata.specId,
        outputPath=str(target),
        **completion.metadata.to_dict(),
    )
    return NormalizeResult(output_path=str(target), content=content, metadata=completion.metadata, spec=spec)
