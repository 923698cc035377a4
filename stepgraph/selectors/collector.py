"""
Selector Collector - Scans live routes into a selector registry.

One page visits every route in turn. An in-page script lists
accessibility-first candidates:

- role elements named by aria-label or text (priority 1)
- aria-label attributes (priority 2)
- data-testid attributes (priority 3)

Routes that refuse the connection are skipped with a warning.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence
from urllib.parse import urljoin

from stepgraph.errors import RegistryError, RouteUnavailableError
from stepgraph.selectors.page import PageHandle
from stepgraph.selectors.registry import (
    SelectorEntry,
    SelectorRegistry,
    merge_entry,
    merge_registry,
    read_selector_registry,
    resolve_registry_path,
    write_selector_registry,
)
from stepgraph.utils.logging import log_event
from stepgraph.utils.text import utc_now_iso

logger = logging.getLogger(__name__)

DEFAULT_ROUTES = ("/",)

PageFactory = Callable[[], PageHandle]
ExtractSelectors = Callable[[PageHandle, str], List[Dict[str, Any]]]

EXTRACT_SELECTORS_SCRIPT = """
return (function () {
    var results = {};
    var slugify = function (value) {
        return value.toLowerCase().trim().replace(/[^a-z0-9]+/g, '-').replace(/^-+|-+$/g, '');
    };
    var record = function (entry) {
        var id = entry.id.toLowerCase();
        var existing = results[id];
        if (existing && existing.priority <= entry.priority) {
            return;
        }
        entry.id = id;
        results[id] = entry;
    };

    document.querySelectorAll('[role]').forEach(function (element) {
        var role = element.getAttribute('role');
        if (!role) return;
        var name = element.getAttribute('aria-label') || element.textContent || '';
        if (!name.trim()) return;
        record({
            id: role + '-' + slugify(name),
            type: 'role',
            selector: "[role='" + role + "'][aria-label='" + name.trim() + "']",
            priority: 1,
            accessible: true
        });
    });

    document.querySelectorAll('[aria-label]').forEach(function (element) {
        var label = element.getAttribute('aria-label');
        if (!label) return;
        record({
            id: slugify(label),
            type: 'label',
            selector: "[aria-label='" + label + "']",
            priority: 2,
            accessible: true
        });
    });

    document.querySelectorAll('[data-testid]').forEach(function (element) {
        var testId = element.getAttribute('data-testid');
        if (!testId) return;
        record({
            id: slugify(testId),
            type: 'testid',
            selector: "[data-testid='" + testId + "']",
            priority: 3,
            accessible: false
        });
    });

    return Object.keys(results).map(function (key) { return results[key]; });
})();
"""


def default_extract_selectors(page: PageHandle, route: str) -> List[Dict[str, Any]]:
    return page.evaluate(EXTRACT_SELECTORS_SCRIPT) or []


def default_page_factory() -> PageHandle:
    from stepgraph.core.driver_factory import create_page

    return create_page(headless=True)


def scan_selector_registry(
    base_url: str,
    routes: Optional[Sequence[str]] = None,
    page_factory: Optional[PageFactory] = None,
    extract_selectors: Optional[ExtractSelectors] = None,
    now: Optional[datetime] = None,
) -> SelectorRegistry:
    """
    Visit each route and build a fresh registry from what is on screen.

    Args:
        base_url: Application origin, e.g. ``http://localhost:3000``.
        routes: Route paths joined onto ``base_url`` (default ``/``).
        page_factory: Creates the page handle (default: headless Chrome).
        extract_selectors: ``(page, route) -> [candidate dicts]`` (default:
            the in-page accessibility script).
        now: Fixed scan time, for reproducible registries.

    Returns:
        A registry stamped ``version=YYYY-MM-DD`` and ``lastScanned``.
    """
    routes = list(routes or DEFAULT_ROUTES)
    page_factory = page_factory or default_page_factory
    extract_selectors = extract_selectors or default_extract_selectors
    timestamp = utc_now_iso(now)

    selectors: Dict[str, SelectorEntry] = {}
    page = page_factory()
    try:
        for route in routes:
            url = urljoin(base_url, route)
            try:
                page.navigate(url)
            except RouteUnavailableError as e:
                logger.warning(f"[Collector] Skipping {url}: {e.message}")
                log_event(
                    "selectors.route.skipped",
                    "Route skipped during selector collection",
                    level=logging.WARNING,
                    url=url,
                    reason="connection_refused",
                )
                continue

            extracted = extract_selectors(page, route)
            logger.debug(f"[Collector] {len(extracted)} candidates on {route}")
            for raw in extracted:
                entry = SelectorEntry(
                    id=raw["id"],
                    type=raw["type"],
                    selector=raw["selector"],
                    priority=int(raw["priority"]),
                    last_seen=timestamp,
                    page=route,
                    accessible=bool(raw.get("accessible", False)),
                )
                merge_entry(selectors, entry)
    finally:
        page.close()

    return SelectorRegistry(version=timestamp[:10], last_scanned=timestamp, selectors=selectors)


def collect_selectors(
    base_url: str,
    routes: Optional[Sequence[str]] = None,
    output_path: Optional[str] = None,
    page_factory: Optional[PageFactory] = None,
    extract_selectors: Optional[ExtractSelectors] = None,
    now: Optional[datetime] = None,
) -> SelectorRegistry:
    """Scan routes, merge into the stored registry and write it back."""
    path = resolve_registry_path(output_path)

    existing: Optional[SelectorRegistry] = None
    try:
        existing = read_selector_registry(path)
    except RegistryError as e:
        logger.warning(f"[Collector] Ignoring unreadable registry: {e.message}")

    scan = scan_selector_registry(
        base_url,
        routes=routes,
        page_factory=page_factory,
        extract_selectors=extract_selectors,
        now=now,
    )
    registry = merge_registry(existing, scan)
    write_selector_registry(registry, path)

    log_event(
        "selectors.collected",
        "Selector registry updated",
        outputPath=path,
        total=len(registry.selectors),
    )
    return registry
