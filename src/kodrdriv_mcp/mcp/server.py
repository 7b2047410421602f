"""HTTP transport: a FastAPI app serving MCP JSON-RPC on ``POST /mcp``.

Plain request/response HTTP has no way to push progress to the client,
so tool calls here report progress through the callback channel, which
writes it to the server log.
"""
from __future__ import annotations

import logging
import os
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Request
from pydantic import BaseModel

from kodrdriv_mcp import __version__
from kodrdriv_mcp.core.config import Settings
from kodrdriv_mcp.mcp.protocol import MCPProtocolHandler

logger = logging.getLogger("kodrdriv_mcp.server")


class HealthResponse(BaseModel):
    status: str
    version: str


def _log_progress(progress: int, total: Optional[int], message: str, new_logs: Optional[list[str]] = None) -> None:
    logger.info("Progress %s/%s: %s", progress, total if total is not None else "?", message)
    for line in new_logs or []:
        logger.debug("  %s", line)


def create_app(settings: Optional[Settings] = None, handler: Optional[MCPProtocolHandler] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    mcp_handler = handler or MCPProtocolHandler(
        working_directory=os.getcwd(),
        poll_interval=settings.poll_interval,
    )

    app = FastAPI(title="kodrdriv-mcp", version=__version__)

    @app.get("/health", response_model=HealthResponse)
    def health() -> HealthResponse:
        return HealthResponse(status="ok", version=__version__)

    @app.post("/mcp")
    async def mcp_jsonrpc(request: Request) -> dict[str, Any]:
        """MCP JSON-RPC endpoint."""
        # Optional token auth
        if settings.mcp_token:
            token = request.headers.get("x-mcp-token")
            auth = request.headers.get("authorization", "")
            if not token and auth.lower().startswith("bearer "):
                token = auth.split(" ", 1)[1]
            if token != settings.mcp_token:
                raise HTTPException(status_code=401, detail="Invalid MCP token")

        try:
            body = await request.json()
        except ValueError as exc:
            raise HTTPException(status_code=400, detail="Invalid JSON body") from exc
        if not isinstance(body, dict):
            raise HTTPException(status_code=400, detail="Expected a JSON-RPC object")
        return await mcp_handler.handle_request(body, progress_callback=_log_progress)

    return app
