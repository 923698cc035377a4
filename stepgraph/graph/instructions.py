"""
Step Instruction Parser.

Derives a deterministic ``{selector, action, value}`` instruction from a
scenario sentence using a small regex vocabulary. Sentences outside the
vocabulary yield no instruction; the natural text is always kept on the
node for replay.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from urllib.parse import urljoin

from stepgraph.errors import GraphBuildError
from stepgraph.graph.types import DeterministicAction, DeterministicInstruction
from stepgraph.utils.text import slugify

TYPE_HINTS = ("submit", "reset", "button")

# Sentence shapes the parser turns into instructions, in match order
STEP_PHRASES = (
    'I navigate to "https://host/path"',
    "I am on the {page} page",
    'I enter {field} as "{value}"',
    'I select {field} as "{option}"',
    "I check the {name} checkbox",
    "I click the {name} button",
    "I click the {name} link",
    "I wait for {n} seconds",
    'I should see "{text}"',
    "I should see the {name} button|link|heading|field|message",
)


@dataclass
class ParsedInstruction:
    """An instruction plus the resolver hints recovered from the sentence."""
    instruction: DeterministicInstruction
    hints: Dict[str, str] = field(default_factory=dict)


class StepInstructionParser:
    """
    Parses scenario sentences into deterministic instructions.

    Example:
        >>> parser = StepInstructionParser(pages={"login": "/login"}, base_url="https://x")
        >>> parser.parse('I enter email as "a@b.com"').instruction
        DeterministicInstruction(selector='email-input', action=<DeterministicAction.FILL: 'fill'>, value='a@b.com')
    """

    def __init__(self, pages: Optional[Dict[str, str]] = None, base_url: Optional[str] = None):
        self.pages = pages
        self.base_url = base_url

    def parse(self, text: str) -> Optional[ParsedInstruction]:
        sentence = text.strip().rstrip(".")

        # 1. NAVIGATE to an explicit URL
        url_match = re.search(
            r"(?:navigate|go|open)\s+(?:to\s+)?['\"]?(https?://[^\s'\"]+)", sentence, re.IGNORECASE
        )
        if url_match:
            return ParsedInstruction(DeterministicInstruction(
                action=DeterministicAction.NAVIGATE, value=url_match.group(1)
            ))

        # 2. NAVIGATE to a named page ("I am on the login page")
        page_match = re.search(
            r"(?:I am on|I navigate to|I go to|I open)\s+(?:the\s+)?['\"]?(.+?)['\"]?\s+page$",
            sentence, re.IGNORECASE,
        )
        if page_match:
            url = self._resolve_page(page_match.group(1))
            if url is None:
                return None
            return ParsedInstruction(DeterministicInstruction(action=DeterministicAction.NAVIGATE, value=url))

        # 3. FILL
        fill_match = re.search(
            r"I (?:enter|type|fill in|fill)\s+(?:the\s+|my\s+)?(.+?)\s+(?:as|with)\s+['\"](.*)['\"]$",
            sentence, re.IGNORECASE,
        )
        if fill_match:
            field_name = fill_match.group(1)
            return ParsedInstruction(
                DeterministicInstruction(
                    selector=f"{slugify(field_name)}-input",
                    action=DeterministicAction.FILL,
                    value=fill_match.group(2),
                ),
                hints={"selectorHintText": field_name},
            )

        # 4. SELECT
        select_match = re.search(
            r"I (?:select|choose)\s+(?:the\s+)?(.+?)\s+as\s+['\"](.*)['\"]$", sentence, re.IGNORECASE
        )
        if select_match:
            return ParsedInstruction(
                DeterministicInstruction(
                    selector=f"{slugify(select_match.group(1))}-select",
                    action=DeterministicAction.SELECT,
                    value=select_match.group(2),
                ),
                hints={"selectorHintText": select_match.group(1)},
            )

        # 5. CHECK
        check_match = re.search(r"I (?:check|tick)\s+(?:the\s+)?(.+?)(?:\s+checkbox)?$", sentence, re.IGNORECASE)
        if check_match:
            name = check_match.group(1).strip("'\" ")
            return ParsedInstruction(
                DeterministicInstruction(
                    selector=f"{slugify(name)}-checkbox", action=DeterministicAction.CHECK, value=True
                ),
                hints={"selectorHintText": name, "selectorHintRole": "checkbox"},
            )

        # 6. CLICK
        click_match = re.search(
            r"I click (?:on\s+)?(?:the\s+)?['\"]?(.+?)['\"]?\s+(button|link)$", sentence, re.IGNORECASE
        )
        if click_match:
            name, kind = click_match.group(1), click_match.group(2).lower()
            hints = {"selectorHintText": name, "selectorHintRole": kind}
            if name.lower() in TYPE_HINTS:
                hints["selectorHintType"] = name.lower()
            return ParsedInstruction(
                DeterministicInstruction(selector=f"{slugify(name)}-{kind}", action=DeterministicAction.CLICK),
                hints=hints,
            )

        # 7. WAIT
        wait_match = re.search(
            r"I wait (?:for\s+)?(\d+(?:\.\d+)?)\s*(ms|milliseconds?|s|secs?|seconds?)$", sentence, re.IGNORECASE
        )
        if wait_match:
            amount = float(wait_match.group(1))
            unit = wait_match.group(2).lower()
            millis = amount if unit.startswith("m") else amount * 1000
            return ParsedInstruction(DeterministicInstruction(action=DeterministicAction.WAIT, value=int(millis)))

        # 8. ASSERT visible text
        text_match = re.search(r"I should see (?:the\s+)?(?:text\s+)?['\"](.+?)['\"]", sentence, re.IGNORECASE)
        if text_match:
            return ParsedInstruction(
                DeterministicInstruction(value=text_match.group(1)),
                hints={"selectorHintText": text_match.group(1)},
            )

        # 9. ASSERT an element is visible
        visible_match = re.search(
            r"I should see (?:the|a|an)\s+(.+?)\s+(button|link|heading|field|message)$", sentence, re.IGNORECASE
        )
        if visible_match:
            name, kind = visible_match.group(1), visible_match.group(2).lower()
            return ParsedInstruction(
                DeterministicInstruction(selector=f"{slugify(name)}-{kind}"),
                hints={"selectorHintText": name},
            )

        return None

    def _resolve_page(self, raw_page: str) -> Optional[str]:
        """Look a page name up in the page map; unknown names are a build error."""
        if self.pages is None:
            return None

        normalized = slugify(raw_page)
        for key, route in self.pages.items():
            if key.lower() == raw_page.lower() or slugify(key) == normalized:
                return self._absolute(route)

        known = ", ".join(sorted(self.pages)) or "none"
        raise GraphBuildError(
            f"Unknown page reference '{raw_page}' (known pages: {known})",
            details={"page": raw_page},
        )

    def _absolute(self, route: str) -> str:
        if self.base_url and not re.match(r"^https?://", route):
            return urljoin(self.base_url, route)
        return route


def merge_hints(metadata: Dict[str, Any], hints: Dict[str, str]) -> Dict[str, Any]:
    """Add resolver hints without clobbering values already on the node."""
    merged = dict(metadata)
    for key, value in hints.items():
        merged.setdefault(key, value)
    return merged
