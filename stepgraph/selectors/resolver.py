"""
Selector Resolver - Layered element resolution.

Given a page handle and a selector id or free-text hint, returns exactly
one element using:

1. an id shortcut (registry entry, then a locator recorded in the graph),
2. a complete strategy chain: role, label, text, type, name,
   placeholder, css, testid.

Every lookup emits a telemetry record through an injectable sink.
Candidates matching more than one element are handled by the
ambiguity policy (``error``, ``warn`` or ``first``).
"""

import logging
import os
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence, Union

from stepgraph.errors import AmbiguousSelectorError, SelectorNotFoundError
from stepgraph.selectors.page import PageHandle
from stepgraph.selectors.registry import (
    RegistryCache,
    SelectorEntry,
    SelectorRegistry,
    read_selector_registry,
)

logger = logging.getLogger(__name__)


class StrategyName(str, Enum):
    ROLE = "role"
    LABEL = "label"
    TEXT = "text"
    TYPE = "type"
    NAME = "name"
    PLACEHOLDER = "placeholder"
    CSS = "css"
    TESTID = "testid"


class AmbiguityPolicy(str, Enum):
    ERROR = "error"
    WARN = "warn"
    FIRST = "first"


class TelemetrySource(str, Enum):
    REGISTRY = "registry"
    ATTRIBUTE = "attribute"
    HEURISTIC = "heuristic"


DEFAULT_STRATEGY_ORDER: List[StrategyName] = list(StrategyName)
REGISTRY_STRATEGIES = (StrategyName.ROLE, StrategyName.LABEL, StrategyName.CSS, StrategyName.TESTID)
TYPE_TOKENS = ("submit", "reset", "button")
ID_STRATEGY = "id"


@dataclass
class ResolverTelemetry:
    """One resolution attempt."""
    strategy: str
    selector: str
    tokens: List[str]
    source: TelemetrySource
    entry_id: Optional[str] = None
    match_count: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "strategy": self.strategy,
            "selector": self.selector,
            "tokens": list(self.tokens),
            "source": self.source.value,
        }
        if self.entry_id:
            data["entryId"] = self.entry_id
        if self.match_count is not None:
            data["matchCount"] = self.match_count
        return data

    def describe(self) -> str:
        entry = f" (registry id: {self.entry_id})" if self.entry_id else ""
        return f"[{self.strategy}] {self.selector}{entry}"


@dataclass
class SelectorResolution:
    element: Any
    telemetry: ResolverTelemetry
    match_count: int
    attempts: List[ResolverTelemetry] = field(default_factory=list)


@dataclass
class _Candidate:
    strategy: str
    selector: str
    source: TelemetrySource
    lookup: Callable[[], List[Any]]
    entry_id: Optional[str] = None


TelemetrySink = Callable[[ResolverTelemetry], None]


def default_telemetry_sink(event: ResolverTelemetry) -> None:
    entry = f" entryId={event.entry_id}" if event.entry_id else ""
    logger.info(
        f"[Resolver] strategy={event.strategy} selector={event.selector}{entry} "
        f"tokens=[{','.join(event.tokens)}] matches={event.match_count}"
    )


def build_tokens(id_or_hint: Optional[str]) -> List[str]:
    """Lower-cased alphanumeric words of a hint."""
    if not id_or_hint:
        return []
    return [segment.lower() for segment in re.split(r"[^a-zA-Z0-9]+", id_or_hint) if segment]


def effective_strategy_order(order: Optional[Sequence[Union[StrategyName, str]]] = None) -> List[StrategyName]:
    """
    The complete strategy chain for a caller or environment override.

    Listed strategies come first (unknown names dropped, duplicates
    ignored); every default strategy the override omits is appended in
    default order, so the chain is never truncated.
    """
    requested: List[str] = []
    if order:
        requested = [str(getattr(s, "value", s)).strip().lower() for s in order]
    else:
        env_override = os.environ.get("SELECTOR_STRATEGY", "")
        requested = [s.strip().lower() for s in env_override.split(",") if s.strip()]

    valid = {s.value for s in StrategyName}
    chain: List[StrategyName] = []
    for name in requested:
        if name in valid and StrategyName(name) not in chain:
            chain.append(StrategyName(name))
    chain.extend(s for s in DEFAULT_STRATEGY_ORDER if s not in chain)
    return chain


def _matches_tokens(entry: SelectorEntry, tokens: List[str]) -> bool:
    if not tokens:
        return False
    haystack = f"{entry.id} {entry.selector} {entry.page}".lower()
    return all(token in haystack for token in tokens)


def _escape_attribute(value: str) -> str:
    return re.sub(r'(["\\])', r"\\\1", value)


class SelectorResolver:
    """
    Resolves selector ids and hints to exactly one element.

    The registry is held in an explicit :class:`RegistryCache` owned by
    the resolver; call :meth:`reload` after the registry file changes.

    Example:
        >>> resolver = SelectorResolver(page, registry=RegistryCache("registry.json"))
        >>> resolution = resolver.resolve("email-input", expected_tag_names=["input"])
        >>> page.fill(resolution.element, "qa@example.com")
    """

    def __init__(
        self,
        page: PageHandle,
        registry: Union[RegistryCache, SelectorRegistry, str, None] = None,
        telemetry: Optional[TelemetrySink] = None,
        strategy_order: Optional[Sequence[Union[StrategyName, str]]] = None,
        ambiguity_policy: Union[AmbiguityPolicy, str] = AmbiguityPolicy.FIRST,
    ):
        self.page = page
        if isinstance(registry, RegistryCache):
            self.cache = registry
        elif isinstance(registry, SelectorRegistry):
            self.cache = RegistryCache(registry=registry)
        else:
            self.cache = RegistryCache(registry)
        self.telemetry = telemetry or default_telemetry_sink
        self.strategy_order = list(strategy_order) if strategy_order else None
        self.ambiguity_policy = AmbiguityPolicy(ambiguity_policy)

    def reload(self) -> SelectorRegistry:
        return self.cache.reload()

    def resolve(
        self,
        id_or_hint: Optional[str] = None,
        *,
        locator: Optional[str] = None,
        strategy_order: Optional[Sequence[Union[StrategyName, str]]] = None,
        expected_tag_names: Optional[Sequence[str]] = None,
        text_hint: Optional[str] = None,
        type_hint: Optional[str] = None,
        role_hint: Optional[str] = None,
        scope: Any = None,
        ambiguity_policy: Union[AmbiguityPolicy, str, None] = None,
        registry_path: Optional[str] = None,
    ) -> SelectorResolution:
        """
        Resolve a selector id or hint to one element.

        Args:
            id_or_hint: Registry id or free-text hint ("submit button").
            locator: Raw locator recorded for this selector, tried after
                the registry id shortcut.
            strategy_order: Preferred strategy order (completed with defaults).
            expected_tag_names: Accept only elements with these tag names.
            text_hint: Accessible-name text for the ``text`` strategy.
            type_hint: submit/reset/button for the ``type`` strategy.
            role_hint: Role for the ``text`` strategy (default ``button``).
            scope: Element handle restricting every lookup to its sub-tree.
            ambiguity_policy: error, warn or first (resolver default otherwise).
            registry_path: Read this registry file instead of the cache.

        Raises:
            AmbiguousSelectorError: a candidate matched several elements
                under the ``error`` policy.
            SelectorNotFoundError: no strategy produced a match.
        """
        tokens = build_tokens(id_or_hint)
        if registry_path:
            registry = read_selector_registry(registry_path) or SelectorRegistry()
        else:
            registry = self.cache.get()
        policy = AmbiguityPolicy(ambiguity_policy or self.ambiguity_policy)
        expected = [t.lower() for t in expected_tag_names] if expected_tag_names else None
        attempts: List[ResolverTelemetry] = []
        hint_label = id_or_hint or locator or text_hint or "selector"

        for candidate in self._shortcut_candidates(id_or_hint, locator, registry, scope):
            resolution = self._try(candidate, tokens, expected, policy, attempts, hint_label)
            if resolution:
                return resolution

        chain = effective_strategy_order(strategy_order or self.strategy_order)
        for strategy in chain:
            candidates = self._strategy_candidates(
                strategy, registry, tokens, scope, text_hint, type_hint, role_hint
            )
            for candidate in candidates:
                resolution = self._try(candidate, tokens, expected, policy, attempts, hint_label)
                if resolution:
                    return resolution

        attempted = ([ID_STRATEGY] if any(a.strategy == ID_STRATEGY for a in attempts) else []) + [
            s.value for s in chain
        ]
        tried = "\n".join(f"  - {a.describe()} -> {a.match_count} matches" for a in attempts) or "  (no candidates)"
        raise SelectorNotFoundError(
            f'Could not resolve "{hint_label}" using strategies {", ".join(attempted)}.\n'
            f"Candidates tried:\n{tried}\n"
            "Suggestion: register the selector (collect-selectors) or add a disambiguating "
            "attribute such as data-testid or aria-label to the element.",
            details={
                "hint": hint_label,
                "strategies": attempted,
                "candidates": [a.to_dict() for a in attempts],
            },
        )

    def _try(
        self,
        candidate: _Candidate,
        tokens: List[str],
        expected: Optional[List[str]],
        policy: AmbiguityPolicy,
        attempts: List[ResolverTelemetry],
        hint_label: str,
    ) -> Optional[SelectorResolution]:
        elements = candidate.lookup()
        if expected:
            elements = [e for e in elements if self.page.tag_name(e).lower() in expected]

        telemetry = ResolverTelemetry(
            strategy=candidate.strategy,
            selector=candidate.selector,
            tokens=list(tokens),
            source=candidate.source,
            entry_id=candidate.entry_id,
            match_count=len(elements),
        )
        attempts.append(telemetry)
        self.telemetry(telemetry)

        if not elements:
            return None

        if len(elements) > 1:
            self._handle_ambiguity(elements, telemetry, policy, attempts, hint_label)

        return SelectorResolution(
            element=elements[0],
            telemetry=telemetry,
            match_count=len(elements),
            attempts=list(attempts),
        )

    def _handle_ambiguity(
        self,
        elements: List[Any],
        telemetry: ResolverTelemetry,
        policy: AmbiguityPolicy,
        attempts: List[ResolverTelemetry],
        hint_label: str,
    ) -> None:
        if policy is AmbiguityPolicy.FIRST:
            return
        if policy is AmbiguityPolicy.WARN:
            logger.warning(
                f"[Resolver] Ambiguous match for \"{hint_label}\": {len(elements)} elements via "
                f"{telemetry.describe()}; using the first"
            )
            return

        matches = [self.page.describe(e) for e in elements]
        match_lines = "\n".join(f"  {i}. {m}" for i, m in enumerate(matches, 1))
        tried = "\n".join(f"  - {a.describe()} -> {a.match_count} matches" for a in attempts)
        raise AmbiguousSelectorError(
            f'Ambiguous selector "{hint_label}": {len(elements)} elements matched {telemetry.describe()}.\n'
            f"Matches:\n{match_lines}\n"
            f"Candidates tried:\n{tried}\n"
            "Suggestion: narrow the match with a scope or expected tag names, or give the element "
            "a unique data-testid / aria-label and register it.",
            details={
                "hint": hint_label,
                "matches": matches,
                "candidates": [a.to_dict() for a in attempts],
            },
        )

    def _shortcut_candidates(
        self,
        id_or_hint: Optional[str],
        locator: Optional[str],
        registry: SelectorRegistry,
        scope: Any,
    ) -> Iterator[_Candidate]:
        entry = registry.get(id_or_hint.strip().lower()) if id_or_hint else None
        if entry:
            yield _Candidate(
                strategy=ID_STRATEGY,
                selector=entry.selector,
                source=TelemetrySource.REGISTRY,
                entry_id=entry.id,
                lookup=lambda: self.page.query(entry.selector, scope),
            )
        if locator and (entry is None or entry.selector != locator):
            yield _Candidate(
                strategy=ID_STRATEGY,
                selector=locator,
                source=TelemetrySource.HEURISTIC,
                lookup=lambda: self.page.query(locator, scope),
            )

    def _strategy_candidates(
        self,
        strategy: StrategyName,
        registry: SelectorRegistry,
        tokens: List[str],
        scope: Any,
        text_hint: Optional[str],
        type_hint: Optional[str],
        role_hint: Optional[str],
    ) -> Iterator[_Candidate]:
        page = self.page

        if strategy in REGISTRY_STRATEGIES:
            entries = sorted(
                (e for e in registry.selectors.values() if e.type.value == strategy.value and _matches_tokens(e, tokens)),
                key=lambda e: (e.priority, e.id),
            )
            for entry in entries:
                yield _Candidate(
                    strategy=strategy.value,
                    selector=entry.selector,
                    source=TelemetrySource.REGISTRY,
                    entry_id=entry.id,
                    lookup=lambda sel=entry.selector: page.query(sel, scope),
                )

        elif strategy in (StrategyName.NAME, StrategyName.PLACEHOLDER):
            for token in tokens:
                selector = f'[{strategy.value}*="{_escape_attribute(token)}"]'
                yield _Candidate(
                    strategy=strategy.value,
                    selector=selector,
                    source=TelemetrySource.ATTRIBUTE,
                    lookup=lambda sel=selector: page.query(sel, scope),
                )

        elif strategy is StrategyName.TEXT:
            role = role_hint or "button"
            texts = list(dict.fromkeys(t.strip() for t in ([text_hint] if text_hint else []) + tokens if t and t.strip()))
            for text in texts:
                pattern = re.compile(re.escape(text), re.IGNORECASE)
                yield _Candidate(
                    strategy=strategy.value,
                    selector=f"role={role}[name=/{text}/i]",
                    source=TelemetrySource.HEURISTIC,
                    lookup=lambda pat=pattern: page.query_by_role(role, pat, scope),
                )

        elif strategy is StrategyName.TYPE:
            type_token = type_hint or next((t for t in tokens if t in TYPE_TOKENS), None)
            if not type_token:
                return
            normalized = type_token.lower()
            for tag in ("button", "input", "a"):
                selector = f"{tag}[type='{normalized}']"
                yield _Candidate(
                    strategy=strategy.value,
                    selector=selector,
                    source=TelemetrySource.HEURISTIC,
                    lookup=lambda sel=selector: page.query(sel, scope),
                )


def resolve_selector(
    page: PageHandle,
    id_or_hint: Optional[str] = None,
    registry: Union[RegistryCache, SelectorRegistry, str, None] = None,
    telemetry: Optional[TelemetrySink] = None,
    **options: Any,
) -> SelectorResolution:
    """One-shot resolution without keeping a resolver around."""
    return SelectorResolver(page, registry=registry, telemetry=telemetry).resolve(id_or_hint, **options)
