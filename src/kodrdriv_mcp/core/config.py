from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

@dataclass
class Settings:
    log_level: str
    log_dir: str
    host: str
    port: int
    mcp_token: str | None
    poll_interval: float
    clear_logs_on_launch: bool

    @staticmethod
    def from_env() -> "Settings":
        default_log_dir = str(Path(os.path.expanduser("~")) / ".kodrdriv" / ".logs")
        return Settings(
            log_level=os.getenv("KODRDRIV_MCP_LOG_LEVEL", "info"),
            log_dir=os.getenv("KODRDRIV_MCP_LOG_DIR") or default_log_dir,
            host=os.getenv("KODRDRIV_MCP_HOST", "127.0.0.1"),
            port=int(os.getenv("KODRDRIV_MCP_PORT", "18791")),
            mcp_token=os.getenv("KODRDRIV_MCP_TOKEN") or None,
            poll_interval=float(os.getenv("KODRDRIV_MCP_POLL_INTERVAL", "2")),
            clear_logs_on_launch=os.getenv("KODRDRIV_MCP_CLEAR_LOGS_ON_LAUNCH", "false").lower() in {"1", "true", "yes"},
        )
