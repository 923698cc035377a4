"""Selectors - registry, resolution, collection and drift detection."""

from stepgraph.selectors.registry import (
    RegistryCache,
    SelectorEntry,
    SelectorRegistry,
    SelectorStability,
    SelectorType,
    merge_registry,
    read_selector_registry,
    write_selector_registry,
)
from stepgraph.selectors.page import PageHandle, SeleniumPage
from stepgraph.selectors.resolver import (
    AmbiguityPolicy,
    ResolverTelemetry,
    SelectorResolution,
    SelectorResolver,
    StrategyName,
    effective_strategy_order,
    resolve_selector,
)
from stepgraph.selectors.collector import collect_selectors, scan_selector_registry
from stepgraph.selectors.drift import DriftResult, SelectorDriftReport, validate_selector_drift

__all__ = [
    "AmbiguityPolicy",
    "DriftResult",
    "PageHandle",
    "RegistryCache",
    "ResolverTelemetry",
    "SelectorDriftReport",
    "SelectorEntry",
    "SelectorRegistry",
    "SelectorResolution",
    "SelectorResolver",
    "SelectorStability",
    "SelectorType",
    "SeleniumPage",
    "StrategyName",
    "collect_selectors",
    "effective_strategy_order",
    "merge_registry",
    "read_selector_registry",
    "resolve_selector",
    "scan_selector_registry",
    "validate_selector_drift",
    "write_selector_registry",
]
