"""Pytest configuration and fixtures for cocproxy tests."""

import pytest


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "e2e: End-to-end tests requiring a real browser and network")
    config.addinivalue_line("markers", "integration: Integration tests with a real browser")
    config.addinivalue_line("markers", "slow: Tests that take longer to run")


@pytest.fixture
def files_dir(tmp_path):
    """Empty cache root for a test."""
    return tmp_path / "files"
