"""
Shared test configuration.
"""

import pytest
import structlog


@pytest.fixture(autouse=True)
def reset_logging():
    """Undo any structlog configuration a test (or CLI command) installed."""
    yield
    structlog.reset_defaults()
