"""Pytest configuration and shared fixtures."""
from __future__ import annotations

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))


@pytest.fixture(autouse=True)
def _fresh_settings():
    """Every test sees settings rebuilt from the current environment."""
    from taskhub.config import reset_settings
    reset_settings()
    yield
    reset_settings()
