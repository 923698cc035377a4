import threading
import time
from unittest.mock import patch

import pytest

from stepgraph.utils.concurrent import default_concurrency, run_concurrent


def test_results_keep_task_order():
    def task(value, delay):
        def run():
            time.sleep(delay)
            return value
        return run

    tasks = [task("a", 0.03), task("b", 0.0), task("c", 0.01)]

    assert run_concurrent(tasks, limit=3) == ["a", "b", "c"]


def test_empty_batch():
    assert run_concurrent([]) == []


def test_limit_caps_tasks_in_flight():
    lock = threading.Lock()
    state = {"active": 0, "peak": 0}

    def task():
        with lock:
            state["active"] += 1
            state["peak"] = max(state["peak"], state["active"])
        time.sleep(0.01)
        with lock:
            state["active"] -= 1
        return True

    results = run_concurrent([task] * 8, limit=2)

    assert results == [True] * 8
    assert state["peak"] <= 2


def test_first_failure_is_raised():
    def boom():
        raise ValueError("bad graph")

    with pytest.raises(ValueError, match="bad graph"):
        run_concurrent([lambda: 1, boom, lambda: 3], limit=1)


def test_default_concurrency_uses_logical_cpus():
    with patch("stepgraph.utils.concurrent.psutil.cpu_count", return_value=6):
        assert default_concurrency() == 6
    with patch("stepgraph.utils.concurrent.psutil.cpu_count", return_value=None):
        assert default_concurrency() == 1
