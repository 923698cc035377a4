"""
Selector Drift - Compares the stored registry with a fresh scan.

Every tracked id ends up in exactly one bucket: missing, updated or
unchanged. Observed ids that were never tracked are reported as added.
The report is always written; the registry only changes when updates
are applied explicitly.
"""

import json
import logging
import os
import re
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from stepgraph.errors import RegistryError
from stepgraph.selectors.collector import (
    DEFAULT_ROUTES,
    ExtractSelectors,
    PageFactory,
    scan_selector_registry,
)
from stepgraph.selectors.registry import (
    SelectorEntry,
    SelectorRegistry,
    read_selector_registry,
    resolve_drift_report_path,
    resolve_registry_path,
    write_selector_registry,
)
from stepgraph.utils.logging import log_event
from stepgraph.utils.text import utc_now_iso

logger = logging.getLogger(__name__)


@dataclass
class DriftMissingEntry:
    id: str
    last_seen: str = ""
    page: str = ""
    priority: Optional[int] = None
    suggestion: Optional[SelectorEntry] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"id": self.id, "lastSeen": self.last_seen, "page": self.page}
        if self.priority is not None:
            data["priority"] = self.priority
        if self.suggestion:
            data["suggestion"] = self.suggestion.to_dict()
        return data


@dataclass
class DriftUpdatedEntry:
    id: str
    previous: SelectorEntry
    observed: SelectorEntry

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "previous": self.previous.to_dict(), "observed": self.observed.to_dict()}


@dataclass
class RegistryDiff:
    """Classification of tracked ids against an observed registry."""
    missing: List[DriftMissingEntry] = field(default_factory=list)
    updated: List[DriftUpdatedEntry] = field(default_factory=list)
    added: List[SelectorEntry] = field(default_factory=list)
    unchanged: int = 0


@dataclass
class SelectorDriftReport:
    timestamp: str
    base_url: str
    routes: List[str]
    registry_path: str
    total_tracked: int
    missing: List[DriftMissingEntry]
    updated: List[DriftUpdatedEntry]
    added: List[SelectorEntry]
    unchanged: int

    @property
    def has_drift(self) -> bool:
        return bool(self.missing or self.updated or self.added)

    def summary(self) -> Dict[str, int]:
        return {
            "totalTracked": self.total_tracked,
            "missing": len(self.missing),
            "updated": len(self.updated),
            "new": len(self.added),
            "unchanged": self.unchanged,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "baseUrl": self.base_url,
            "routes": list(self.routes),
            "registryPath": self.registry_path,
            "summary": self.summary(),
            "missing": [m.to_dict() for m in self.missing],
            "updated": [u.to_dict() for u in self.updated],
            "added": [a.to_dict() for a in self.added],
        }


@dataclass
class DriftResult:
    report: SelectorDriftReport
    report_path: str
    applied: bool = False
    next_registry: Optional[SelectorRegistry] = None


def normalize_id(selector_id: str) -> str:
    return re.sub(r"[^a-z0-9]", "", selector_id.lower())


def has_meaningful_change(previous: SelectorEntry, observed: SelectorEntry) -> bool:
    """True when anything but lastSeen/stability differs."""
    return (
        previous.selector != observed.selector
        or previous.type != observed.type
        or previous.priority != observed.priority
        or previous.accessible != observed.accessible
        or previous.page != observed.page
    )


def find_suggestion(
    selector_id: str,
    missing_entry: SelectorEntry,
    observed: Dict[str, SelectorEntry],
) -> Optional[SelectorEntry]:
    """
    Best replacement for a missing id.

    An observed id equal after stripping non-alphanumerics wins; otherwise
    the lowest-priority observed entry on the same page.
    """
    normalized = normalize_id(selector_id)
    for entry in observed.values():
        if normalize_id(entry.id) == normalized:
            return entry

    same_page = sorted(
        (entry for entry in observed.values() if entry.page == missing_entry.page),
        key=lambda entry: (entry.priority, entry.id),
    )
    return same_page[0] if same_page else None


def diff_registry(existing: Dict[str, SelectorEntry], observed: Dict[str, SelectorEntry]) -> RegistryDiff:
    diff = RegistryDiff()
    for selector_id, entry in existing.items():
        seen = observed.get(selector_id)
        if seen is None:
            diff.missing.append(
                DriftMissingEntry(
                    id=selector_id,
                    last_seen=entry.last_seen,
                    page=entry.page,
                    priority=entry.priority,
                    suggestion=find_suggestion(selector_id, entry, observed),
                )
            )
        elif has_meaningful_change(entry, seen):
            diff.updated.append(DriftUpdatedEntry(id=selector_id, previous=entry, observed=seen))
        else:
            diff.unchanged += 1

    diff.added = [entry for selector_id, entry in observed.items() if selector_id not in existing]
    return diff


def apply_drift(existing: SelectorRegistry, scan: SelectorRegistry, diff: RegistryDiff) -> SelectorRegistry:
    """Fold updated and added entries into the registry; missing ids stay tracked."""
    selectors = dict(existing.selectors)
    for change in diff.updated:
        previous = selectors.get(change.id)
        stability = previous.stability if previous else change.observed.stability
        selectors[change.id] = replace(change.observed, stability=stability)
    for entry in diff.added:
        selectors[entry.id] = entry
    return SelectorRegistry(version=scan.version, last_scanned=scan.last_scanned, selectors=selectors)


def write_drift_report(report: SelectorDriftReport, report_path: Optional[str] = None) -> str:
    path = resolve_drift_report_path(report_path)
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(report.to_dict(), f, indent=2)
        f.write("\n")
    return path


def validate_selector_drift(
    base_url: str,
    routes: Optional[Sequence[str]] = None,
    registry_path: Optional[str] = None,
    report_path: Optional[str] = None,
    apply_updates: bool = False,
    page_factory: Optional[PageFactory] = None,
    extract_selectors: Optional[ExtractSelectors] = None,
    now: Optional[datetime] = None,
) -> DriftResult:
    """
    Scan the application and report how the registry has drifted.

    Args:
        base_url: Application origin.
        routes: Routes to scan (default ``/``).
        registry_path: Registry to compare against.
        report_path: Where the JSON drift report is written.
        apply_updates: Rewrite the registry with updated and added entries.
        page_factory: Page handle factory for the scan.
        extract_selectors: Candidate extractor for the scan.
        now: Fixed time for the report and scan stamps.
    """
    path = resolve_registry_path(registry_path)
    routes = list(routes or DEFAULT_ROUTES)

    existing: Optional[SelectorRegistry] = None
    try:
        existing = read_selector_registry(path)
    except RegistryError as e:
        logger.warning(f"[Drift] Treating unreadable registry as empty: {e.message}")
    existing = existing or SelectorRegistry()

    scan = scan_selector_registry(
        base_url,
        routes=routes,
        page_factory=page_factory,
        extract_selectors=extract_selectors,
        now=now,
    )
    diff = diff_registry(existing.selectors, scan.selectors)

    report = SelectorDriftReport(
        timestamp=utc_now_iso(now),
        base_url=base_url,
        routes=routes,
        registry_path=path,
        total_tracked=len(existing.selectors),
        missing=diff.missing,
        updated=diff.updated,
        added=diff.added,
        unchanged=diff.unchanged,
    )
    written_report = write_drift_report(report, report_path)

    result = DriftResult(report=report, report_path=written_report)
    if apply_updates:
        result.next_registry = apply_drift(existing, scan, diff)
        write_selector_registry(result.next_registry, path)
        result.applied = True

    summary = report.summary()
    log_event(
        "selectors.drift",
        "Selector drift validation completed",
        baseUrl=base_url,
        reportPath=written_report,
        missing=summary["missing"],
        updated=summary["updated"],
        added=summary["new"],
        applied=result.applied,
    )
    return result
