"""Pytest configuration and shared fixtures."""

import logging
from collections.abc import Iterator

import pytest

# The tasmota_config testing plugin is registered via a ``pytest11``
# entry point (pyproject.toml) for external consumers.  In our own test
# suite we disable it (``-p no:tasmota_config``) and load explicitly
# here instead, because conftest-based loading is processed during
# ``pytest_load_initial_conftests`` — after ``pytest-cov`` starts
# coverage tracing — so the tasmota_config import chain is measured.
pytest_plugins = ["tasmota_config.testing._plugin"]


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests (fast, no external dependencies)"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests (may require external services)"
    )


@pytest.fixture
def restore_root_logger() -> Iterator[logging.Logger]:
    """Snapshot and restore root logger handlers and level.

    ``App._run_async`` calls ``configure_logging``, which replaces the
    root handlers; this keeps that from leaking into other tests.
    """
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield root
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers = handlers
    root.setLevel(level)
