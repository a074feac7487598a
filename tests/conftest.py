"""
Echo Test Configuration
-----------------------
Shared fixtures and configuration for all tests.

Providers are in-process fakes except in test_stdio_provider.py, which
spawns a small MCP server with the running interpreter. No test reaches
the network.
"""

import logging
import os
import sys
from pathlib import Path

import pytest

# Add project root and this directory to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))
sys.path.insert(0, str(Path(__file__).parent))

from fakes import files_connection, handles_for, mail_connection  # noqa: E402
from tools.policy import PolicyConfig  # noqa: E402


@pytest.fixture(autouse=True)
def isolate_logging():
    """Keep echo.* records flowing to caplog without touching real handlers."""
    logger = logging.getLogger("echo")
    previous = logger.level
    logger.setLevel(logging.DEBUG)
    yield
    logger.setLevel(previous)


@pytest.fixture(autouse=True)
def block_planner_credentials(monkeypatch):
    """Tests never see a real API key."""
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)


@pytest.fixture(autouse=True)
def clean_echo_environment(monkeypatch):
    """ECHO_* overrides from the developer shell never leak into config tests."""
    for name in list(os.environ):
        if name.upper().startswith("ECHO_"):
            monkeypatch.delenv(name)


@pytest.fixture(scope="session")
def project_root():
    """Return the project root path."""
    return PROJECT_ROOT


@pytest.fixture
def mail():
    return mail_connection()


@pytest.fixture
def files():
    return files_connection()


@pytest.fixture
def handles(files, mail):
    """Two providers: filesystem first, then gmail."""
    return handles_for(files, mail)


@pytest.fixture
def policy_config():
    return PolicyConfig(
        validating={"quality_check"},
        gated={"create_draft", "send_email"},
    )
