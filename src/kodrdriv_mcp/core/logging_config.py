"""Centralized logging configuration for kodrdriv-mcp.

Sets up Python's logging system to write to a console stream and a
rotating log file in the configured log directory. Also provides the
shared ``kodrdriv`` logger that wrapped operations write their output
to, and a dedicated JSONL logger for MCP calls.

Log directory structure::

    ~/.kodrdriv/.logs/
    ├── kodrdriv-mcp.log          # All Python logger output (rotating)
    └── mcp-calls.log             # Every MCP JSON-RPC request/response (JSONL)
"""
from __future__ import annotations

import glob
import json
import logging
import logging.handlers
import os
import sys
import time
from pathlib import Path
from typing import Any, Optional

# Module-level log directory, set by setup_logging()
_log_dir: Optional[str] = None

# Name of the logger wrapped operations log through. Log capture attaches
# its handler here, so everything an operation reports flows past it.
OPERATION_LOGGER_NAME = "kodrdriv"

# Dedicated logger for structured MCP call records
mcp_call_logger = logging.getLogger("kodrdriv_mcp._mcp_calls")


def get_logger() -> logging.Logger:
    """Return the process-wide logger that operations write to."""
    op_logger = logging.getLogger(OPERATION_LOGGER_NAME)
    if op_logger.level == logging.NOTSET:
        op_logger.setLevel(logging.INFO)
    return op_logger


def get_log_dir() -> str:
    """Return the configured log directory, falling back to default."""
    if _log_dir:
        return _log_dir
    default = str(Path(os.path.expanduser("~")) / ".kodrdriv" / ".logs")
    return os.getenv("KODRDRIV_MCP_LOG_DIR", default)


def clear_logs(log_dir: str) -> None:
    """Remove ``*.log`` and ``*.jsonl`` files from the log directory.

    Called **before** any handlers are attached so there are no
    open-file conflicts.
    """
    if not os.path.isdir(log_dir):
        return
    for pattern in ("*.log", "*.jsonl"):
        for path in glob.glob(os.path.join(log_dir, pattern)):
            try:
                os.remove(path)
            except OSError:
                pass


def setup_logging(
    log_dir: str,
    log_level: str = "info",
    *,
    clear_on_launch: bool = False,
    console_stream: Any = None,
) -> None:
    """Configure the logging system with both console and file handlers.

    This should be called once at application startup. In stdio mode the
    caller passes ``sys.stderr`` as *console_stream*; stdout belongs to the
    JSON-RPC stream there.
    """
    global _log_dir
    _log_dir = log_dir

    if clear_on_launch:
        clear_logs(log_dir)

    os.makedirs(log_dir, exist_ok=True)

    level = getattr(logging, log_level.upper(), logging.INFO)

    # ── Root logger: console + rotating file ─────────────────
    root = logging.getLogger()
    root.setLevel(level)

    # Clear any existing handlers (avoid duplicate output on re-init)
    root.handlers.clear()

    fmt = logging.Formatter(
        "%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )

    console_handler = logging.StreamHandler(console_stream or sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(fmt)
    root.addHandler(console_handler)

    # Rotating file handler for the main log
    main_log_path = os.path.join(log_dir, "kodrdriv-mcp.log")
    file_handler = logging.handlers.RotatingFileHandler(
        main_log_path,
        maxBytes=10 * 1024 * 1024,  # 10 MB
        backupCount=5,
        encoding="utf-8",
    )
    file_handler.setLevel(logging.DEBUG)  # Capture everything to file
    file_handler.setFormatter(fmt)
    root.addHandler(file_handler)

    # Operations log at INFO even when the console is quieter, so capture
    # always sees their progress lines.
    get_logger().setLevel(logging.INFO)

    # ── MCP calls logger (JSONL) ─────────────────────────────
    _setup_jsonl_logger(
        mcp_call_logger,
        os.path.join(log_dir, "mcp-calls.log"),
    )

    logging.getLogger("kodrdriv_mcp").info(
        "Logging initialized: log_dir=%s, level=%s", log_dir, log_level
    )


def _setup_jsonl_logger(logger_instance: logging.Logger, path: str) -> None:
    """Configure a logger to write raw JSONL messages to a rotating file."""
    logger_instance.setLevel(logging.INFO)
    logger_instance.propagate = False  # Don't bubble up to root
    logger_instance.handlers.clear()

    handler = logging.handlers.RotatingFileHandler(
        path,
        maxBytes=10 * 1024 * 1024,  # 10 MB
        backupCount=5,
        encoding="utf-8",
    )
    # Raw formatter; message is already JSON
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger_instance.addHandler(handler)


# ── Structured logging helpers ───────────────────────────────


def log_mcp_call(
    method: str,
    params: dict[str, Any],
    result: Any = None,
    error: str | None = None,
    duration_ms: float | None = None,
    tool_name: str | None = None,
    tool_args: dict[str, Any] | None = None,
) -> None:
    """Log an MCP JSON-RPC call to the dedicated MCP calls log."""
    record: dict[str, Any] = {
        "ts": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
        "method": method,
    }
    if tool_name:
        record["tool"] = tool_name
    if tool_args is not None:
        # Truncate large args for readability
        args_str = json.dumps(tool_args, default=str)
        record["tool_args"] = tool_args if len(args_str) < 10000 else args_str[:10000] + "…(truncated)"
    if duration_ms is not None:
        record["duration_ms"] = round(duration_ms, 1)
    if error:
        record["error"] = error[:5000]
    elif result is not None:
        result_str = json.dumps(result, default=str)
        if len(result_str) > 10000:
            record["result_preview"] = result_str[:10000] + "..."
        else:
            record["result"] = result
    try:
        mcp_call_logger.info(json.dumps(record, default=str))
    except Exception:  # noqa: BLE001
        pass


def get_mcp_log_path() -> str:
    """Return the path to the MCP calls log file."""
    return os.path.join(get_log_dir(), "mcp-calls.log")
