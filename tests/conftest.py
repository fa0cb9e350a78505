"""Pytest configuration and shared fixtures."""

import pytest

# The testing plugin is registered via a ``pytest11`` entry point
# (pyproject.toml) for external consumers.  In our own test suite we
# disable it (``-p no:androidtv2mqtt``) and load it explicitly here so
# the package import chain is measured by pytest-cov.
pytest_plugins = ["androidtv2mqtt.testing._plugin"]


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "unit: Unit tests (fast, no external dependencies)"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests (lifecycle with test doubles)"
    )
