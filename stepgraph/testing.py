"""
pytest fixtures for compiled step modules.

Installing the package registers this module as the ``stepgraph`` pytest
plugin, so no ``conftest.py`` wiring is needed.

Generated steps request ``page`` (a :class:`PageHandle`) and
``selector_resolver``. Override either fixture to run against another
page implementation.
"""

import os

import pytest

from stepgraph.selectors.registry import RegistryCache
from stepgraph.selectors.resolver import SelectorResolver


@pytest.fixture(scope="session")
def stepgraph_headless():
    return os.environ.get("STEPGRAPH_HEADLESS", "1") != "0"


@pytest.fixture
def page(stepgraph_headless):
    from stepgraph.core.driver_factory import create_page

    handle = create_page(headless=stepgraph_headless)
    yield handle
    handle.close()


@pytest.fixture(scope="session")
def selector_registry():
    return RegistryCache()


@pytest.fixture
def selector_resolver(page, selector_registry):
    return SelectorResolver(
        page,
        registry=selector_registry,
        ambiguity_policy=os.environ.get("STEPGRAPH_AMBIGUITY_POLICY", "first"),
    )
