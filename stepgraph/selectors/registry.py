"""
Selector Registry.

A versioned JSON map of logical selector id to locator metadata. Ids
are lower-cased; an incoming entry only replaces a stored one when it
is new or has a strictly lower (more preferred) priority number.
"""

import json
import logging
import os
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Optional

from stepgraph.errors import RegistryError

logger = logging.getLogger(__name__)

SELECTOR_ARTIFACT_DIR = os.path.join("tests", "artifacts", "selectors")
DEFAULT_REGISTRY_PATH = os.path.join(SELECTOR_ARTIFACT_DIR, "registry.json")
DEFAULT_DRIFT_REPORT_PATH = os.path.join(SELECTOR_ARTIFACT_DIR, "drift-report.json")


class SelectorType(str, Enum):
    ROLE = "role"
    LABEL = "label"
    TESTID = "testid"
    CSS = "css"


class SelectorStability(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass
class SelectorEntry:
    """Locator metadata for one logical selector (priority 1 is most preferred)."""
    id: str
    type: SelectorType
    selector: str
    priority: int
    last_seen: str = ""
    stability: SelectorStability = SelectorStability.MEDIUM
    page: str = "/"
    accessible: bool = False

    def __post_init__(self) -> None:
        self.id = self.id.lower()
        self.type = SelectorType(self.type)
        self.stability = SelectorStability(self.stability)
        if self.priority not in (1, 2, 3, 4):
            raise RegistryError(
                f"Selector '{self.id}' has invalid priority {self.priority} (expected 1-4)",
                details={"id": self.id},
            )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "selector": self.selector,
            "priority": self.priority,
            "lastSeen": self.last_seen,
            "stability": self.stability.value,
            "page": self.page,
            "accessible": self.accessible,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SelectorEntry":
        return cls(
            id=data["id"],
            type=data["type"],
            selector=data["selector"],
            priority=int(data["priority"]),
            last_seen=data.get("lastSeen", ""),
            stability=data.get("stability", "medium"),
            page=data.get("page", "/"),
            accessible=bool(data.get("accessible", False)),
        )


@dataclass
class SelectorRegistry:
    version: str = ""
    last_scanned: str = ""
    selectors: Dict[str, SelectorEntry] = field(default_factory=dict)

    def get(self, selector_id: str) -> Optional[SelectorEntry]:
        return self.selectors.get(selector_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "lastScanned": self.last_scanned,
            "selectors": {key: entry.to_dict() for key, entry in self.selectors.items()},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SelectorRegistry":
        entries = (SelectorEntry.from_dict(raw) for raw in (data.get("selectors") or {}).values())
        return cls(
            version=data.get("version", ""),
            last_scanned=data.get("lastScanned", ""),
            selectors={entry.id: entry for entry in entries},
        )


def resolve_registry_path(custom_path: Optional[str] = None) -> str:
    return os.path.abspath(custom_path or os.environ.get("STEPGRAPH_REGISTRY_PATH") or DEFAULT_REGISTRY_PATH)


def resolve_drift_report_path(custom_path: Optional[str] = None) -> str:
    return os.path.abspath(custom_path or DEFAULT_DRIFT_REPORT_PATH)


def read_selector_registry(registry_path: Optional[str] = None) -> Optional[SelectorRegistry]:
    """
    Load the registry, or None when the file does not exist.

    Raises:
        RegistryError: when the file exists but cannot be parsed.
    """
    path = resolve_registry_path(registry_path)
    if not os.path.exists(path):
        return None
    try:
        with open(path, "r", encoding="utf-8") as f:
            return SelectorRegistry.from_dict(json.load(f))
    except (ValueError, KeyError, TypeError) as e:
        raise RegistryError(f"Failed to parse selector registry at {path}: {e}", details={"path": path}) from e


def write_selector_registry(registry: SelectorRegistry, registry_path: Optional[str] = None) -> str:
    path = resolve_registry_path(registry_path)
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(registry.to_dict(), f, indent=2)
        f.write("\n")
    return path


def merge_entry(selectors: Dict[str, SelectorEntry], entry: SelectorEntry) -> bool:
    """
    Apply the "lower priority number wins" rule for one entry in place.

    A replaced entry keeps the stability classification it already had.
    Returns True when ``selectors`` changed.
    """
    key = entry.id.lower()
    existing = selectors.get(key)
    if existing and existing.priority <= entry.priority:
        return False
    stability = existing.stability if existing else entry.stability
    selectors[key] = replace(entry, id=key, stability=stability)
    return True


def merge_registry(existing: Optional[SelectorRegistry], scan: SelectorRegistry) -> SelectorRegistry:
    """
    Merge a fresh scan into a stored registry without mutating either.

    Merging the same scan twice yields the same registry as merging once.
    """
    selectors: Dict[str, SelectorEntry] = dict(existing.selectors) if existing else {}
    for entry in scan.selectors.values():
        merge_entry(selectors, entry)
    return SelectorRegistry(version=scan.version, last_scanned=scan.last_scanned, selectors=selectors)


class RegistryCache:
    """
    Explicitly owned registry cache.

    Loads lazily from ``path`` and keeps the result until ``reload()``.
    A missing file caches as an empty registry.
    """

    def __init__(self, path: Optional[str] = None, registry: Optional[SelectorRegistry] = None):
        self.path = resolve_registry_path(path)
        self._registry = registry
        self._loaded = registry is not None

    def get(self) -> SelectorRegistry:
        if not self._loaded:
            self.reload()
        return self._registry  # type: ignore[return-value]

    def reload(self) -> SelectorRegistry:
        self._registry = read_selector_registry(self.path) or SelectorRegistry()
        self._loaded = True
        logger.debug(f"[Registry] Loaded {len(self._registry.selectors)} selectors from {self.path}")
        return self._registry

    def set(self, registry: SelectorRegistry) -> None:
        self._registry = registry
        self._loaded = True
