"""Pytest configuration and shared fixtures."""

from __future__ import annotations

# Re-export all fixtures from fixtures modules
from tests.fixtures.identity import *  # noqa: F401, F403
from tests.fixtures.stores import *  # noqa: F401, F403
