"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.
"""
import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests (filesystem round trips)")
    config.addinivalue_line("markers", "slow: Slow tests")
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
def now():
    """A fixed review time."""
    return datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def sample_markdown():
    """A document with three flashcards and some surrounding prose."""
    return """# Networking

Some notes about protocols.

- What does TCP stand for?
    Transmission Control Protocol
- Name the first two OSI layers
    - **Physical**
    - **Data Link**
- A bullet without an answer
1. What port does HTTPS use?
    443
"""


@pytest.fixture
def study_folder(tmp_path, sample_markdown):
    """A study folder with two documents."""
    folder = tmp_path / "notes"
    folder.mkdir()
    (folder / "networking.md").write_text(sample_markdown, encoding="utf-8")
    (folder / "math.md").write_text("- What is 2+2?\n    - 4\n", encoding="utf-8")
    return folder


@pytest.fixture
def evaluation_payload():
    """An evaluation as returned by a provider (camelCase JSON)."""
    return {
        "suggestedRating": 3,
        "overallScore": 82,
        "accuracy": {"level": "mostly_correct", "explanation": "Core idea is right."},
        "completeness": {"level": "missing_key_detail", "missingPoints": ["Mention the handshake"]},
        "clarity": {"level": "clear", "suggestion": None},
        "reasoning": {"level": "sound", "explanation": "Good causal chain."},
        "structure": {"level": "appropriate", "feedback": "Concise."},
        "keywordAnalysis": {
            "expectedKeywords": ["Physical", "Data Link"],
            "foundKeywords": ["Physical"],
            "missingKeywords": ["Data Link"],
            "keywordScore": 50,
        },
        "improvements": ["Name both layers"],
        "strengths": ["Correct first layer"],
    }
