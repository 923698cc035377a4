"""
Graph Persistence.

Stores action graphs as JSON files named
``{specId}__{scenarioSlug}[__v{epochMillis}].json``.
"""

import json
import logging
import os
import re
import time
from typing import List, Optional

from stepgraph.errors import GraphPersistenceError, ScenarioAmbiguityError
from stepgraph.graph.types import ActionGraph
from stepgraph.utils.logging import log_event
from stepgraph.utils.text import slugify

logger = logging.getLogger(__name__)

SCENARIO_DELIMITER = "__"
DEFAULT_GRAPH_DIR = os.path.join("tests", "artifacts", "graph")

# path separators, the name delimiter, or a bare dot name
INVALID_SPEC_ID = re.compile(r"[\\/]|__|^\.+$")


def scenario_key(name: str) -> str:
    """Filesystem-safe slug for a scenario name."""
    return slugify(name) or "scenario"


def check_spec_id(spec_id: str) -> str:
    """
    Reject spec ids that cannot be stored as a file name prefix.

    Raises:
        GraphPersistenceError: when the id is empty, contains a path
            separator or the ``__`` delimiter.
    """
    if not spec_id or INVALID_SPEC_ID.search(spec_id):
        raise GraphPersistenceError(
            f"Invalid specId '{spec_id}': must be non-empty without '/', '\\' or '{SCENARIO_DELIMITER}'",
            details={"specId": spec_id},
        )
    return spec_id


class GraphPersistence:
    """
    Reads and writes action graphs in a directory.

    Example:
        >>> store = GraphPersistence(graph_dir="tests/artifacts/graph")
        >>> path = store.write(graph)
        >>> latest = store.read(graph.metadata.spec_id, graph.metadata.scenario_name)
    """

    def __init__(self, graph_dir: Optional[str] = None, versioned: bool = True):
        self.base_dir = graph_dir or os.environ.get("STEPGRAPH_GRAPH_DIR") or DEFAULT_GRAPH_DIR
        self.versioned = versioned

    def write(self, graph: ActionGraph) -> str:
        """
        Save a graph and return its path.

        Versioned stores never overwrite: each write gets a new
        ``__v{epochMillis}`` suffix.
        """
        if not graph.metadata.scenario_name:
            raise GraphPersistenceError("scenarioName is required on graph metadata")
        check_spec_id(graph.metadata.spec_id)
        self._ensure_dir()

        prefix = f"{graph.metadata.spec_id}{SCENARIO_DELIMITER}{scenario_key(graph.metadata.scenario_name)}"
        if self.versioned:
            version = int(time.time() * 1000)
            file_name = f"{prefix}{SCENARIO_DELIMITER}v{version}.json"
            while os.path.exists(os.path.join(self.base_dir, file_name)):
                version += 1
                file_name = f"{prefix}{SCENARIO_DELIMITER}v{version}.json"
        else:
            file_name = f"{prefix}.json"

        path = os.path.join(self.base_dir, file_name)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(graph.to_dict(), f, indent=2)
            f.write("\n")

        log_event("graph.persisted", "Action graph written", path=path, graphId=graph.graph_id)
        return path

    def read(self, spec_id: str, scenario_name: Optional[str] = None) -> Optional[ActionGraph]:
        """
        Return the newest graph for a spec (and scenario), or None.

        Raises:
            ScenarioAmbiguityError: when no scenario name is given and more
                than one scenario is stored for ``spec_id``.
        """
        versions = self.list_by_spec(spec_id, scenario_name)
        if not versions:
            return None

        if not scenario_name:
            keys = {key for key in (self._extract_scenario_key(f) for f in versions) if key}
            if len(keys) > 1:
                raise ScenarioAmbiguityError(
                    f"Multiple scenarios found for spec {spec_id}. "
                    "Provide scenarioName to read a specific graph.",
                    details={"specId": spec_id, "scenarios": sorted(keys)},
                )

        path = os.path.join(self.base_dir, versions[0])
        try:
            with open(path, "r", encoding="utf-8") as f:
                return ActionGraph.from_dict(json.load(f))
        except (ValueError, KeyError) as e:
            raise GraphPersistenceError(f"Failed to parse graph at {path}: {e}", details={"path": path}) from e

    def list_by_spec(self, spec_id: str, scenario_name: Optional[str] = None) -> List[str]:
        """File names for a spec, newest first."""
        check_spec_id(spec_id)
        if not os.path.isdir(self.base_dir):
            return []
        prefix = f"{spec_id}{SCENARIO_DELIMITER}"
        files = [f for f in os.listdir(self.base_dir) if f.endswith(".json") and f.startswith(prefix)]
        if scenario_name:
            key = scenario_key(scenario_name)
            files = [f for f in files if self._extract_scenario_key(f) == key]
        return sorted(files, reverse=True)

    def delete(self, file_name: str) -> None:
        os.remove(os.path.join(self.base_dir, file_name))

    def clear(self) -> None:
        """Remove every stored graph."""
        if not os.path.isdir(self.base_dir):
            return
        for name in os.listdir(self.base_dir):
            if name.endswith(".json"):
                os.remove(os.path.join(self.base_dir, name))

    def _ensure_dir(self) -> None:
        os.makedirs(self.base_dir, exist_ok=True)

    @staticmethod
    def _extract_scenario_key(file_name: str) -> Optional[str]:
        parts = file_name[: -len(".json")].split(SCENARIO_DELIMITER)
        if len(parts) < 2:
            return None
        return parts[1]
