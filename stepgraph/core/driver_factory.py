"""
Driver Factory - WebDriver creation for scanning and replay.

Creates headless-capable Chrome WebDriver instances and wraps them in
the page handle the resolver and collector work against.
"""

from typing import Optional

from selenium import webdriver
from selenium.webdriver.chrome.options import Options as ChromeOptions

from stepgraph.selectors.page import SeleniumPage

WebDriverType = webdriver.Chrome

DEFAULT_PAGE_LOAD_TIMEOUT = 30


def create_driver(
    headless: bool = True,
    page_load_timeout: Optional[float] = DEFAULT_PAGE_LOAD_TIMEOUT,
    profile_path: Optional[str] = None,
    window_size: str = "1920,1080",
) -> WebDriverType:
    """
    Create a Chrome WebDriver.

    Args:
        headless: Run browser in headless mode
        page_load_timeout: Seconds before a navigation is abandoned
        profile_path: Path to browser profile for session persistence
        window_size: Viewport as "width,height"

    Example:
        >>> driver = create_driver(headless=True)
        >>> driver.get("https://example.com")
    """
    options = ChromeOptions()

    if headless:
        options.add_argument("--headless=new")

    if profile_path:
        options.add_argument(f"--user-data-dir={profile_path}")

    options.add_argument("--disable-extensions")
    options.add_argument("--no-sandbox")
    options.add_argument("--disable-dev-shm-usage")
    options.add_argument("--disable-gpu")
    options.add_argument(f"--window-size={window_size}")

    driver = webdriver.Chrome(options=options)
    if page_load_timeout:
        driver.set_page_load_timeout(page_load_timeout)
    return driver


def create_page(
    headless: bool = True,
    page_load_timeout: Optional[float] = DEFAULT_PAGE_LOAD_TIMEOUT,
    **driver_options,
) -> SeleniumPage:
    """Create a driver and wrap it as a page handle (closing it quits the driver)."""
    driver = create_driver(headless=headless, page_load_timeout=page_load_timeout, **driver_options)
    return SeleniumPage(driver, page_load_timeout=page_load_timeout)
