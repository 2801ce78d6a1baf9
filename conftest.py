"""
Pytest Configuration
Configuration file for pytest test runner
"""

import os

import pytest

# Test markers
def pytest_configure(config):
    config.addinivalue_line(
        "markers", "unit: Unit tests"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests"
    )
    config.addinivalue_line(
        "markers", "api: API tests"
    )
    config.addinivalue_line(
        "markers", "slow: Slow running tests"
    )

# Test collection
collect_ignore_glob = [
    "alembic/*",
    "*/venv/*",
    "*/env/*",
    "*/__pycache__/*"
]

# Environment setup
@pytest.fixture(scope="session", autouse=True)
def setup_test_environment():
    """Setup test environment"""
    os.environ["TESTING"] = "true"
    os.environ["LOG_LEVEL"] = "DEBUG"
    os.environ["BOOKING_TX_BASE_DELAY"] = "0.001"
    os.environ.pop("APP_TIMEZONE", None)
    os.environ.pop("AUTO_MIGRATE", None)

    yield

    # Cleanup
    os.environ.pop("TESTING", None)
    os.environ.pop("LOG_LEVEL", None)
    os.environ.pop("BOOKING_TX_BASE_DELAY", None)
