"""Pytest configuration for the Retention Toolkit."""

import pytest


def pytest_configure(config):
    """Configure pytest with custom settings."""
    config.addinivalue_line(
        "markers", "compliance: mark test as compliance evidence test"
    )


# Configure pytest to ignore certain warnings
pytest.mark.filterwarnings("ignore::pytest.PytestCollectionWarning")
