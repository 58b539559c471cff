"""Shared fixtures."""

from __future__ import annotations

from typing import Iterator
from unittest.mock import Mock, patch

import pytest


@pytest.fixture(autouse=True)
def clipboard() -> Iterator[Mock]:
    """Keep tests away from the real clipboard."""
    with patch("texcycle.core.pyperclip.copy") as mock_copy:
        yield mock_copy
