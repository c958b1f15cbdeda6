# conftest.py
import pytest

from templateforge.config import reset_settings


# Custom test markers
def pytest_configure(config):
    """Configure custom markers."""
    markers = [
        "slow: marks tests as slow",
        "sql: marks tests that need a SQL database",
        "integration: marks integration tests",
    ]
    for marker in markers:
        config.addinivalue_line("markers", marker)


@pytest.fixture(autouse=True)
def clean_settings(monkeypatch):
    """Keep environment-derived settings from leaking between tests."""
    for var in ("TEMPLATEFORGE_DATABASE_URL", "TEMPLATEFORGE_MAX_DEPTH",
                "TEMPLATEFORGE_LOG_LEVEL", "TEMPLATEFORGE_DEFAULT_BRANCH"):
        monkeypatch.delenv(var, raising=False)
    reset_settings()
    yield
    reset_settings()
