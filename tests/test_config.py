from __future__ import annotations

import logging
import os

from kodrdriv_mcp.core.config import Settings
from kodrdriv_mcp.core.logging_config import OPERATION_LOGGER_NAME, get_logger, log_mcp_call, setup_logging

_ENV_KEYS = (
    "KODRDRIV_MCP_LOG_LEVEL",
    "KODRDRIV_MCP_LOG_DIR",
    "KODRDRIV_MCP_HOST",
    "KODRDRIV_MCP_PORT",
    "KODRDRIV_MCP_TOKEN",
    "KODRDRIV_MCP_POLL_INTERVAL",
    "KODRDRIV_MCP_CLEAR_LOGS_ON_LAUNCH",
)


def test_defaults(monkeypatch):
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    settings = Settings.from_env()
    assert settings.host == "127.0.0.1"
    assert settings.port == 18791
    assert settings.mcp_token is None
    assert settings.poll_interval == 2.0
    assert settings.clear_logs_on_launch is False
    assert settings.log_dir.endswith(os.path.join(".kodrdriv", ".logs"))


def test_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("KODRDRIV_MCP_LOG_DIR", str(tmp_path))
    monkeypatch.setenv("KODRDRIV_MCP_PORT", "9000")
    monkeypatch.setenv("KODRDRIV_MCP_TOKEN", "tok")
    monkeypatch.setenv("KODRDRIV_MCP_POLL_INTERVAL", "0.5")
    monkeypatch.setenv("KODRDRIV_MCP_CLEAR_LOGS_ON_LAUNCH", "yes")
    settings = Settings.from_env()
    assert settings.log_dir == str(tmp_path)
    assert settings.port == 9000
    assert settings.mcp_token == "tok"
    assert settings.poll_interval == 0.5
    assert settings.clear_logs_on_launch is True


def test_empty_token_means_no_auth(monkeypatch):
    monkeypatch.setenv("KODRDRIV_MCP_TOKEN", "")
    assert Settings.from_env().mcp_token is None


def test_operation_logger_passes_info():
    assert get_logger().name == OPERATION_LOGGER_NAME
    assert get_logger().isEnabledFor(logging.INFO)


def test_setup_logging_writes_files(tmp_path):
    root = logging.getLogger()
    saved_root = list(root.handlers)
    saved_level = root.level
    try:
        setup_logging(str(tmp_path), "debug")
        log_mcp_call(method="tools/list", params={})
        for handler in logging.getLogger("kodrdriv_mcp._mcp_calls").handlers:
            handler.flush()
        assert (tmp_path / "mcp-calls.log").read_text(encoding="utf-8").strip()
    finally:
        for handler in logging.getLogger("kodrdriv_mcp._mcp_calls").handlers:
            handler.close()
        logging.getLogger("kodrdriv_mcp._mcp_calls").handlers.clear()
        for handler in root.handlers:
            if handler not in saved_root:
                handler.close()
        root.handlers[:] = saved_root
        root.setLevel(saved_level)
