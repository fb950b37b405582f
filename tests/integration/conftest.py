"""
Pytest configuration and fixtures for kvcheck tests.

This module provides:
- Test configuration and markers
- Validation config fixtures (in memory and TOML backed)
- History builder fixture
- Logging setup routed through the rich console
"""

import logging
from pathlib import Path

import pytest

from kvcheck.config import ValidationConfig
from kvcheck.log import configure_logging
from utils import HistoryBuilder


@pytest.fixture
def builder() -> HistoryBuilder:
    """Provide an empty history builder."""
    return HistoryBuilder()


@pytest.fixture
def config() -> ValidationConfig:
    """Provide the default validation config (unique revisions expected)."""
    return ValidationConfig()


@pytest.fixture
def non_unique_config() -> ValidationConfig:
    """Provide a config for stores that may share a revision between mutations."""
    return ValidationConfig(expect_revision_unique=False)


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    """Create a temporary config file for the validator."""
    config_content = """
[validation]
expect_revision_unique = false
timeout_seconds = 5.0
"""
    config_file = tmp_path / "validation.toml"
    config_file.write_text(config_content)
    return config_file


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "scenario: marks end-to-end validation scenarios"
    )


def pytest_collection_modifyitems(config, items):
    """Add markers to test items based on their names."""
    for item in items:
        if "scenario" in item.name:
            item.add_marker(pytest.mark.scenario)


@pytest.fixture(autouse=True)
def setup_logging():
    """Setup logging for tests."""
    configure_logging(logging.DEBUG)
    yield
