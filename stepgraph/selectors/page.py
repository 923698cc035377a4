"""
Page Handle - the DOM collaborator used by resolution, scanning and replay.

``PageHandle`` is the narrow surface the core depends on;
``SeleniumPage`` implements it over a Selenium WebDriver.
"""

import logging
import re
import time
from abc import ABC, abstractmethod
from typing import Any, List, Optional, Pattern, TYPE_CHECKING

from stepgraph.errors import NavigationTimeoutError, RouteUnavailableError

if TYPE_CHECKING:
    from selenium.webdriver.remote.webdriver import WebDriver
    from selenium.webdriver.remote.webelement import WebElement

logger = logging.getLogger(__name__)

# CSS approximations of implicit ARIA roles
IMPLICIT_ROLE_SELECTORS = {
    "button": "button, input[type='button'], input[type='submit'], input[type='reset'], [role='button']",
    "link": "a[href], [role='link']",
    "heading": "h1, h2, h3, h4, h5, h6, [role='heading']",
    "textbox": "input:not([type]), input[type='text'], input[type='email'], input[type='password'], "
               "input[type='search'], input[type='tel'], input[type='url'], textarea, [role='textbox']",
    "checkbox": "input[type='checkbox'], [role='checkbox']",
    "combobox": "select, [role='combobox']",
    "cell": "td, [role='cell']",
}

# Chrome net:: errors for hosts that cannot be reached at all
ROUTE_UNREACHABLE = re.compile(
    r"net::ERR_(?:CONNECTION_(?:REFUSED|RESET|CLOSED|FAILED|TIMED_OUT)|NAME_NOT_RESOLVED|NAME_RESOLUTION_FAILED"
    r"|ADDRESS_UNREACHABLE|INTERNET_DISCONNECTED|TUNNEL_CONNECTION_FAILED|PROXY_CONNECTION_FAILED)"
    r"|ECONNREFUSED|connection refused",
    re.IGNORECASE,
)

BUTTON_INPUT_TYPES = ("button", "submit", "reset")
LABELABLE_TAGS = ("input", "select", "textarea")


class PageHandle(ABC):
    """Abstract page/DOM handle. ``scope`` arguments are element handles."""

    @abstractmethod
    def navigate(self, url: str) -> None:
        pass

    @abstractmethod
    def query(self, selector: str, scope: Any = None) -> List[Any]:
        """All elements matching a CSS selector, in document order."""

    @abstractmethod
    def query_by_role(self, role: str, name: Pattern[str], scope: Any = None) -> List[Any]:
        """Visible elements with ``role`` whose accessible name matches ``name``."""

    @abstractmethod
    def tag_name(self, element: Any) -> str:
        pass

    @abstractmethod
    def get_attribute(self, element: Any, name: str) -> Optional[str]:
        pass

    @abstractmethod
    def text_of(self, element: Any = None) -> str:
        """Visible text of ``element``, or of the whole document when None."""

    @abstractmethod
    def is_visible(self, element: Any) -> bool:
        pass

    @abstractmethod
    def click(self, element: Any) -> None:
        pass

    @abstractmethod
    def fill(self, element: Any, value: Any) -> None:
        pass

    @abstractmethod
    def select(self, element: Any, value: Any) -> None:
        pass

    @abstractmethod
    def check(self, element: Any, value: Any = True) -> None:
        pass

    @abstractmethod
    def evaluate(self, script: str, *args: Any) -> Any:
        pass

    def wait(self, milliseconds: float) -> None:
        time.sleep(float(milliseconds) / 1000)

    def describe(self, element: Any) -> str:
        """Short human-readable form of an element for diagnostics."""
        tag = self.tag_name(element)
        attrs = []
        for name in ("id", "name", "data-testid", "aria-label", "type"):
            value = self.get_attribute(element, name)
            if value:
                attrs.append(f'{name}="{value}"')
        text = (self.text_of(element) or "").strip()
        text_preview = text[:40] + "..." if len(text) > 40 else text
        attr_str = (" " + " ".join(attrs)) if attrs else ""
        return f"<{tag}{attr_str}>{text_preview}</{tag}>"

    def close(self) -> None:
        pass


class SeleniumPage(PageHandle):
    """
    PageHandle backed by a Selenium WebDriver.

    Example:
        >>> page = SeleniumPage(create_driver(headless=True))
        >>> page.navigate("https://example.com/login")
        >>> page.query("[data-testid='email-input']")
    """

    def __init__(self, driver: "WebDriver", page_load_timeout: Optional[float] = None):
        self.driver = driver
        self.page_load_timeout = page_load_timeout
        if page_load_timeout:
            driver.set_page_load_timeout(page_load_timeout)

    def navigate(self, url: str) -> None:
        from selenium.common.exceptions import TimeoutException, WebDriverException

        try:
            self.driver.get(url)
        except TimeoutException as e:
            raise NavigationTimeoutError(
                f"Navigation to {url} exceeded {self.page_load_timeout}s",
                details={"url": url, "timeoutSeconds": self.page_load_timeout},
            ) from e
        except WebDriverException as e:
            match = ROUTE_UNREACHABLE.search(str(e))
            if match:
                raise RouteUnavailableError(
                    f"Route {url} is unreachable ({match.group(0)})",
                    details={"url": url, "reason": match.group(0)},
                ) from e
            raise

    def query(self, selector: str, scope: Any = None) -> List["WebElement"]:
        from selenium.common.exceptions import InvalidSelectorException
        from selenium.webdriver.common.by import By

        root = scope if scope is not None else self.driver
        try:
            return list(root.find_elements(By.CSS_SELECTOR, selector))
        except InvalidSelectorException:
            logger.warning(f"[Page] Invalid CSS selector skipped: {selector}")
            return []

    def query_by_role(self, role: str, name: Pattern[str], scope: Any = None) -> List["WebElement"]:
        css = IMPLICIT_ROLE_SELECTORS.get(role, f"[role='{role}']")
        return [
            element for element in self.query(css, scope)
            if self.is_visible(element) and name.search(self.accessible_name(element))
        ]

    def accessible_name(self, element: "WebElement") -> str:
        """
        Approximate the accessible name of an element.

        Order: aria-label, aria-labelledby, then for form controls the
        button value, the associated <label> and placeholder; other
        elements use their text. title is the last resort.
        """
        aria_label = _clean(element.get_attribute("aria-label"))
        if aria_label:
            return aria_label

        labelled_by = self._labelledby_text(element)
        if labelled_by:
            return labelled_by

        tag = self.tag_name(element)
        if tag in LABELABLE_TAGS:
            input_type = (element.get_attribute("type") or "").lower()
            if tag == "input" and input_type in BUTTON_INPUT_TYPES:
                name = _clean(element.get_attribute("value"))
            else:
                name = self._label_text(element) or _clean(element.get_attribute("placeholder"))
        else:
            name = _clean(element.text)

        return name or _clean(element.get_attribute("title"))

    def _labelledby_text(self, element: "WebElement") -> str:
        from selenium.common.exceptions import NoSuchElementException
        from selenium.webdriver.common.by import By

        ids = (element.get_attribute("aria-labelledby") or "").split()
        parts = []
        for label_id in ids:
            try:
                parts.append(_clean(self.driver.find_element(By.ID, label_id).text))
            except NoSuchElementException:
                continue
        return " ".join(p for p in parts if p)

    def _label_text(self, element: "WebElement") -> str:
        from selenium.webdriver.common.by import By

        element_id = element.get_attribute("id")
        if element_id:
            escaped = element_id.replace("\\", "\\\\").replace('"', '\\"')
            for label in self.driver.find_elements(By.CSS_SELECTOR, f'label[for="{escaped}"]'):
                text = _clean(label.text)
                if text:
                    return text
        for label in element.find_elements(By.XPATH, "ancestor::label"):
            text = _clean(label.text)
            if text:
                return text
        return ""

    def tag_name(self, element: "WebElement") -> str:
        return element.tag_name.lower()

    def get_attribute(self, element: "WebElement", name: str) -> Optional[str]:
        return element.get_attribute(name)

    def text_of(self, element: Any = None) -> str:
        if element is None:
            from selenium.webdriver.common.by import By
            return self.driver.find_element(By.TAG_NAME, "body").text
        return element.text

    def is_visible(self, element: "WebElement") -> bool:
        return element.is_displayed()

    def click(self, element: "WebElement") -> None:
        element.click()

    def fill(self, element: "WebElement", value: Any) -> None:
        element.clear()
        element.send_keys(str(value))

    def select(self, element: "WebElement", value: Any) -> None:
        from selenium.common.exceptions import NoSuchElementException
        from selenium.webdriver.support.ui import Select

        dropdown = Select(element)
        try:
            dropdown.select_by_visible_text(str(value))
        except NoSuchElementException:
            dropdown.select_by_value(str(value))

    def check(self, element: "WebElement", value: Any = True) -> None:
        if element.is_selected() != bool(value):
            element.click()

    def evaluate(self, script: str, *args: Any) -> Any:
        return self.driver.execute_script(script, *args)

    def close(self) -> None:
        self.driver.quit()


def _clean(value: Optional[str]) -> str:
    return " ".join((value or "").split())
