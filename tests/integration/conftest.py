"""Configuration for integration tests."""

import os

import pytest


@pytest.fixture
def redis_url() -> str:
    """URL of a disposable Redis server, from ``BOT_TEST_REDIS_URL``."""
    url = os.getenv("BOT_TEST_REDIS_URL", "")
    if not url:
        pytest.skip("BOT_TEST_REDIS_URL is not set")
    return url
