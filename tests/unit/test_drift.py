import json
from datetime import datetime, timezone

from stepgraph.selectors.drift import (
    diff_registry,
    find_suggestion,
    has_meaningful_change,
    validate_selector_drift,
)
from stepgraph.selectors.registry import (
    SelectorEntry,
    SelectorRegistry,
    SelectorStability,
    read_selector_registry,
    write_selector_registry,
)

SCAN_TIME = datetime(2024, 6, 1, 8, 30, 0, tzinfo=timezone.utc)


def tracked(selector_id, selector, priority=3, page="/login", stability="medium", last_seen="2024-05-01T10:00:00.000Z"):
    types = {1: "role", 2: "label", 3: "testid", 4: "css"}
    return SelectorEntry(selector_id, types[priority], selector, priority, last_seen, stability, page)


def test_meaningful_change_ignores_last_seen_and_stability():
    before = tracked("email", "[data-testid='email']")
    after = tracked("email", "[data-testid='email']", stability="high", last_seen="2024-06-01T00:00:00.000Z")

    assert has_meaningful_change(before, after) is False
    assert has_meaningful_change(before, tracked("email", "[data-testid='mail']")) is True
    assert has_meaningful_change(before, tracked("email", "[data-testid='email']", page="/signup")) is True


def test_suggestion_prefers_normalized_id_match():
    missing = tracked("sign-in", "[aria-label='Sign in']", priority=2)
    observed = {
        "signin": tracked("signin", "[aria-label='Signin']", priority=2),
        "button-go": tracked("button-go", "[role='button']", priority=1),
    }

    assert find_suggestion("sign-in", missing, observed).id == "signin"


def test_suggestion_falls_back_to_best_entry_on_same_page():
    missing = tracked("remember", "[data-testid='remember']")
    observed = {
        "other-page": tracked("other-page", "#x", priority=1, page="/home"),
        "keep-me": tracked("keep-me", "[data-testid='keep-me']", priority=3),
        "keep-label": tracked("keep-label", "[aria-label='Keep']", priority=2),
    }

    assert find_suggestion("remember", missing, observed).id == "keep-label"
    assert find_suggestion("remember", tracked("remember", "#r", page="/nowhere"), observed) is None


def test_every_tracked_id_lands_in_one_bucket():
    existing = {
        "gone": tracked("gone", "#gone"),
        "moved": tracked("moved", "#moved"),
        "same": tracked("same", "#same"),
    }
    observed = {
        "moved": tracked("moved", "#moved-v2"),
        "same": tracked("same", "#same", last_seen="2024-06-01T08:30:00.000Z"),
        "fresh": tracked("fresh", "#fresh"),
    }

    diff = diff_registry(existing, observed)

    assert [m.id for m in diff.missing] == ["gone"]
    assert [u.id for u in diff.updated] == ["moved"]
    assert diff.unchanged == 1
    assert [a.id for a in diff.added] == ["fresh"]
    assert len(diff.missing) + len(diff.updated) + diff.unchanged == len(existing)


def run_drift(make_page, tmp_path, observed, apply_updates=False):
    extract = lambda page, route: observed
    return validate_selector_drift(
        "http://app.test",
        routes=["/login"],
        registry_path=str(tmp_path / "registry.json"),
        report_path=str(tmp_path / "drift-report.json"),
        apply_updates=apply_updates,
        page_factory=make_page,
        extract_selectors=extract,
        now=SCAN_TIME,
    )


def seed_registry(tmp_path):
    registry = SelectorRegistry("2024-05-01", "2024-05-01T10:00:00.000Z", {
        "email-input": tracked("email-input", "[data-testid='email-input']", stability="high"),
        "password-input": tracked("password-input", "[data-testid='password-input']"),
        "sign-in": tracked("sign-in", "[aria-label='Sign in']", priority=2),
    })
    write_selector_registry(registry, str(tmp_path / "registry.json"))
    return registry


OBSERVED = [
    {"id": "email-input", "type": "testid", "selector": "[data-testid='email']", "priority": 3},
    {"id": "password-input", "type": "testid", "selector": "[data-testid='password-input']", "priority": 3},
    {"id": "signin", "type": "label", "selector": "[aria-label='Signin']", "priority": 2, "accessible": True},
]


def test_report_written_without_touching_registry(make_page, tmp_path):
    seed_registry(tmp_path)
    before = (tmp_path / "registry.json").read_text(encoding="utf-8")

    result = run_drift(make_page, tmp_path, OBSERVED)

    assert result.applied is False
    assert result.next_registry is None
    assert (tmp_path / "registry.json").read_text(encoding="utf-8") == before

    report = json.loads((tmp_path / "drift-report.json").read_text(encoding="utf-8"))
    assert report["timestamp"] == "2024-06-01T08:30:00.000Z"
    assert report["baseUrl"] == "http://app.test"
    assert report["routes"] == ["/login"]
    assert report["summary"] == {"totalTracked": 3, "missing": 1, "updated": 1, "new": 1, "unchanged": 1}
    assert report["missing"][0]["id"] == "sign-in"
    assert report["missing"][0]["suggestion"]["id"] == "signin"
    assert report["updated"][0]["previous"]["selector"] == "[data-testid='email-input']"
    assert report["updated"][0]["observed"]["selector"] == "[data-testid='email']"
    assert report["added"][0]["id"] == "signin"


def test_apply_updates_rewrites_registry(make_page, tmp_path):
    seed_registry(tmp_path)

    result = run_drift(make_page, tmp_path, OBSERVED, apply_updates=True)

    assert result.applied is True
    stored = read_selector_registry(str(tmp_path / "registry.json"))
    assert stored.to_dict() == result.next_registry.to_dict()
    assert stored.version == "2024-06-01"
    assert stored.selectors["email-input"].selector == "[data-testid='email']"
    assert stored.selectors["email-input"].stability is SelectorStability.HIGH
    assert "signin" in stored.selectors
    assert "sign-in" in stored.selectors


def test_missing_registry_reports_everything_as_new(make_page, tmp_path):
    result = run_drift(make_page, tmp_path, OBSERVED)

    summary = result.report.summary()
    assert summary["totalTracked"] == 0
    assert summary["new"] == 3
    assert result.report.has_drift
