"""Pytest configuration for the kodrdriv-mcp test suite.

Async tests use pytest-asyncio (``@pytest.mark.asyncio``).
"""
from __future__ import annotations

import os

import pytest

from kodrdriv_mcp.core.logging_config import get_logger


@pytest.fixture(autouse=True)
def _restore_process_state():
    """Keep cwd and the shared operation logger's handlers as they were."""
    cwd = os.getcwd()
    handlers = list(get_logger().handlers)
    yield
    os.chdir(cwd)
    get_logger().handlers[:] = handlers
