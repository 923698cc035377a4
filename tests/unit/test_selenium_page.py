import re
from unittest.mock import MagicMock

import pytest
from selenium.common.exceptions import (
    InvalidSelectorException,
    NoSuchElementException,
    TimeoutException,
    WebDriverException,
)

from stepgraph.errors import NavigationTimeoutError, RouteUnavailableError
from stepgraph.selectors.page import SeleniumPage


def web_element(tag, text="", displayed=True, ancestors=(), selected=False, **attrs):
    """Mocked WebElement; attribute names use underscores for hyphens."""
    attributes = {name.replace("_", "-"): value for name, value in attrs.items()}
    element = MagicMock()
    element.tag_name = tag.upper()
    element.text = text
    element.get_attribute.side_effect = attributes.get
    element.is_displayed.return_value = displayed
    element.is_selected.return_value = selected
    element.find_elements.return_value = list(ancestors)
    return element


def selenium_page(css=None, ids=None):
    css = css or {}
    ids = ids or {}

    def find_element(by, value):
        if value not in ids:
            raise NoSuchElementException(value)
        return ids[value]

    driver = MagicMock()
    driver.find_elements.side_effect = lambda by, selector: css.get(selector, [])
    driver.find_element.side_effect = find_element
    return SeleniumPage(driver), driver


def test_checkbox_named_by_label_for_not_value():
    box = web_element("input", type="checkbox", value="on", id="terms")
    label = web_element("label", text="I accept the terms")
    page, _ = selenium_page(css={
        "input[type='checkbox'], [role='checkbox']": [box],
        'label[for="terms"]': [label],
    })

    assert page.accessible_name(box) == "I accept the terms"
    assert page.query_by_role("checkbox", re.compile("terms", re.IGNORECASE)) == [box]


def test_filled_textbox_named_by_placeholder_not_typed_value():
    email = web_element("input", type="email", value="qa@example.com", placeholder="Email")
    page, _ = selenium_page()

    assert page.accessible_name(email) == "Email"


def test_button_inputs_use_their_value():
    submit = web_element("input", type="submit", value="Sign in", id="go")
    page, _ = selenium_page(css={'label[for="go"]': [web_element("label", text="ignored")]})

    assert page.accessible_name(submit) == "Sign in"


def test_wrapping_label():
    label = web_element("label", text="Remember me")
    box = web_element("input", type="checkbox", ancestors=[label])
    page, _ = selenium_page()

    assert page.accessible_name(box) == "Remember me"


def test_aria_labelledby_joins_referenced_text():
    field = web_element("input", type="text", aria_labelledby="billing missing address")
    page, _ = selenium_page(ids={
        "billing": web_element("span", text="Billing"),
        "address": web_element("span", text=" Address\n"),
    })

    assert page.accessible_name(field) == "Billing Address"


def test_aria_label_wins_over_everything():
    button = web_element("button", text="X", aria_label="Close dialog", title="Close")
    page, _ = selenium_page()

    assert page.accessible_name(button) == "Close dialog"


def test_text_then_title_for_other_elements():
    link = web_element("a", text="  Forgot   password? ")
    icon = web_element("button", text="", title="Settings")
    page, _ = selenium_page()

    assert page.accessible_name(link) == "Forgot password?"
    assert page.accessible_name(icon) == "Settings"


def test_query_by_role_skips_hidden_elements():
    shown = web_element("button", text="Save")
    hidden = web_element("button", text="Save", displayed=False)
    page, _ = selenium_page(css={
        "button, input[type='button'], input[type='submit'], input[type='reset'], [role='button']": [hidden, shown],
    })

    assert page.query_by_role("button", re.compile("save", re.IGNORECASE)) == [shown]


@pytest.mark.parametrize("message,reason", [
    ("unknown error: net::ERR_NAME_NOT_RESOLVED", "net::ERR_NAME_NOT_RESOLVED"),
    ("unknown error: net::ERR_CONNECTION_RESET", "net::ERR_CONNECTION_RESET"),
    ("unknown error: net::ERR_ADDRESS_UNREACHABLE", "net::ERR_ADDRESS_UNREACHABLE"),
    ("unknown error: net::ERR_CONNECTION_REFUSED", "net::ERR_CONNECTION_REFUSED"),
])
def test_unreachable_hosts_become_route_unavailable(message, reason):
    page, driver = selenium_page()
    driver.get.side_effect = WebDriverException(message)

    with pytest.raises(RouteUnavailableError) as exc:
        page.navigate("http://app.test/admin")

    assert exc.value.code == "ROUTE_UNAVAILABLE"
    assert exc.value.details == {"url": "http://app.test/admin", "reason": reason}


def test_navigation_timeout():
    page, driver = selenium_page()
    driver.get.side_effect = TimeoutException("slow")

    with pytest.raises(NavigationTimeoutError):
        page.navigate("http://app.test/")


def test_other_driver_errors_propagate():
    page, driver = selenium_page()
    driver.get.side_effect = WebDriverException("chrome not reachable")

    with pytest.raises(WebDriverException):
        page.navigate("http://app.test/")


def test_invalid_selector_yields_no_matches():
    page, driver = selenium_page()
    driver.find_elements.side_effect = InvalidSelectorException("bad")

    assert page.query("[[nope") == []


def test_actions_delegate_to_webelement():
    field = web_element("input")
    box = web_element("input", type="checkbox", selected=True)
    page, driver = selenium_page()

    page.fill(field, 42)
    page.check(box, True)
    page.check(box, False)
    page.close()

    field.clear.assert_called_once()
    field.send_keys.assert_called_once_with("42")
    box.click.assert_called_once()
    driver.quit.assert_called_once()


def test_text_of_document_reads_body():
    page, _ = selenium_page(ids={"body": web_element("body", text="Welcome back")})

    assert page.text_of(None) == "Welcome back"
