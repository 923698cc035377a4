"""Core components: browser creation."""

from stepgraph.core.driver_factory import create_driver, create_page

__all__ = ["create_driver", "create_page"]
