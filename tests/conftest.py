"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.
"""
import sys
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from linguaspark.extraction.models import (  # noqa: E402
    ContentMetadata,
    ContentQuality,
    ExtractedContent,
)
from linguaspark.extraction.retry_policy import BoundedRetryPolicy  # noqa: E402
from linguaspark.extraction.session_manager import ExtractionSessionManager  # noqa: E402
from linguaspark.extraction.session_store import InMemorySessionStore  # noqa: E402
from tests.helpers import FakeClock  # noqa: E402


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests (in-process, no network)")
    config.addinivalue_line("markers", "smoke: CLI smoke tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemorySessionStore()


@pytest.fixture
def manager(store, clock):
    """Session manager with an in-memory store, fake clock and a cap of 3 retries."""
    return ExtractionSessionManager(store, BoundedRetryPolicy(max_retries=3), clock=clock)


@pytest.fixture
def sample_content():
    """Provide sample extracted content for testing."""
    return ExtractedContent(
        text="The city council approved a new bike lane network on Tuesday.",
        title="City approves bike lanes",
        metadata=ContentMetadata(
            source_url="https://example.com/a",
            domain="example.com",
            author="J. Reporter",
        ),
        quality=ContentQuality(word_count=11, reading_time=1, suitability_score=0.8),
    )


@pytest.fixture
def sample_lesson():
    """Provide a sample generated lesson for testing."""
    return {
        "lessonTitle": "Cycling in the City",
        "lessonType": "discussion",
        "studentLevel": "B1",
        "targetLanguage": "english",
        "sections": {
            "warmup": ["Do you ride a bike?"],
            "vocabulary": [{"word": "council", "meaning": "elected local government"}],
        },
    }
