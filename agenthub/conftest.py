"""Pytest configuration for AgentHub tests.

Sets up the test environment before any test module imports the app, so
settings are loaded with test values.
"""

import os


def pytest_configure(config):
    """Configure test environment before any tests run.

    Key test settings:
    - ENVIRONMENT=test (not development) so prod-like checks stay off but
      nothing relies on dev permissiveness
    - A pepper and GitHub client credentials so the OAuth endpoints are live
    - A generous rate limit so ordinary tests are never throttled
    """
    config.addinivalue_line("markers", "security: Security-related tests (required gate)")
    config.addinivalue_line("markers", "slow: Slow-running tests (excluded from fast)")

    os.environ.setdefault("ENVIRONMENT", "test")
    os.environ.setdefault("API_KEY_PEPPER", "test-pepper-0123456789abcdef0123456789abcdef")
    os.environ.setdefault("GITHUB_CLIENT_ID", "test-client-id")
    os.environ.setdefault("GITHUB_CLIENT_SECRET", "test-client-secret")
    os.environ.setdefault("PUBLIC_BASE_URL", "")
    os.environ.setdefault("RATE_LIMIT_RPM", "1000")
