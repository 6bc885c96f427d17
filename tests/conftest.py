"""
Shared pytest fixtures for bochka tests.

This module provides:
- A live background ExecutionContext per test
- An in-memory StubRuntime (no Docker) with its listeners released afterwards
- A RecordingReporter for asserting on print_logs output

Tests under tests/integration start real containers and carry the
``docker`` marker; the bochka pytest plugin skips them without a daemon.
"""

import sys
from pathlib import Path

import pytest

# Ensure bochka package is importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from bochka.context import ExecutionContext
from bochka.reporting import RecordingReporter
from bochka.testing import StubRuntime


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on their location."""
    for item in items:
        test_path = Path(item.fspath).relative_to(Path(__file__).parent)
        if "integration" in str(test_path):
            item.add_marker(pytest.mark.integration)
            item.add_marker(pytest.mark.docker)
        else:
            item.add_marker(pytest.mark.unit)


@pytest.fixture
def ctx():
    context = ExecutionContext.background()
    yield context
    context.cancel()


@pytest.fixture
def runtime():
    stub = StubRuntime()
    yield stub
    stub.close()


@pytest.fixture
def reporter():
    return RecordingReporter()
