"""MCP JSON-RPC protocol handler.

Transport-independent: the stdio loop and the HTTP endpoint both feed
decoded request bodies into :meth:`MCPProtocolHandler.handle_request`.
Transports that can push messages to the client pass a
``send_notification`` coroutine; progress for ``tools/call`` requests
carrying ``_meta.progressToken`` is delivered through it. Transports that
cannot push pass a ``progress_callback`` instead.
"""
from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, Dict, Optional

from kodrdriv_mcp import __version__
from kodrdriv_mcp.core.executor import DEFAULT_POLL_INTERVAL, ExecutionContext
from kodrdriv_mcp.core.logging_config import log_mcp_call
from kodrdriv_mcp.core.notifications import ProgressCallback, SendNotification
from kodrdriv_mcp.mcp.tools import TOOL_EXECUTORS, TOOLS, ToolExecutor

logger = logging.getLogger("kodrdriv_mcp.mcp.protocol")

PROTOCOL_VERSION = "2025-03-26"


class MethodNotFound(ValueError):
    pass


class MCPProtocolHandler:
    """Handles MCP JSON-RPC requests and dispatches tool calls."""

    def __init__(
        self,
        working_directory: str,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        tools: Optional[list[dict[str, Any]]] = None,
        executors: Optional[Dict[str, ToolExecutor]] = None,
    ) -> None:
        self.working_directory = working_directory
        self.poll_interval = poll_interval
        self.tools = tools if tools is not None else TOOLS
        self.executors = executors if executors is not None else TOOL_EXECUTORS
        # Runs change the process cwd and share the operation logger, so only
        # one tool call executes at a time.
        self._run_lock = asyncio.Lock()

    async def handle_request(
        self,
        body: dict[str, Any],
        send_notification: Optional[SendNotification] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> dict[str, Any]:
        """Process a single JSON-RPC request and return a JSON-RPC response.

        Returns ``{}`` for notifications (requests without an ``id``).
        """
        jsonrpc = body.get("jsonrpc", "2.0")
        method = body.get("method", "")
        params = body.get("params") or {}
        req_id = body.get("id")

        logger.info("MCP request: method=%s id=%s", method, req_id)
        log_mcp_call(method=method, params=params)

        try:
            result = await self._dispatch(method, params, send_notification, progress_callback)
        except MethodNotFound as exc:
            return self._error_response(req_id, -32601, str(exc))
        except Exception as exc:  # noqa: BLE001
            logger.error("MCP method %s failed: %s", method, exc)
            return self._error_response(req_id, -32603, str(exc))

        if req_id is None:
            return {}

        return {"jsonrpc": jsonrpc, "id": req_id, "result": result}

    async def _dispatch(
        self,
        method: str,
        params: dict[str, Any],
        send_notification: Optional[SendNotification],
        progress_callback: Optional[ProgressCallback],
    ) -> Any:
        if method == "initialize":
            return self._handle_initialize(params)
        if method in ("initialized", "notifications/initialized", "notifications/cancelled"):
            return {}
        if method == "tools/list":
            return {"tools": self.tools}
        if method == "tools/call":
            return await self._handle_tools_call(params, send_notification, progress_callback)
        if method == "ping":
            return {}
        raise MethodNotFound(f"Unknown method: {method}")

    def _handle_initialize(self, params: dict[str, Any]) -> dict[str, Any]:
        return {
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": {"tools": {"listChanged": False}},
            "serverInfo": {"name": "kodrdriv-mcp", "version": __version__},
        }

    async def _handle_tools_call(
        self,
        params: dict[str, Any],
        send_notification: Optional[SendNotification],
        progress_callback: Optional[ProgressCallback],
    ) -> dict[str, Any]:
        name = params.get("name", "")
        arguments = params.get("arguments") or {}
        progress_token = (params.get("_meta") or {}).get("progressToken")
        logger.info("MCP tools/call: %s args=%s", name, json.dumps(arguments, default=str)[:200])

        executor = self.executors.get(name)
        if executor is None:
            return {
                "content": [{"type": "text", "text": f"Error: Unknown tool: {name}"}],
                "isError": True,
            }

        context = ExecutionContext(
            working_directory=self.working_directory,
            send_notification=send_notification,
            progress_token=progress_token,
            progress_callback=progress_callback,
            poll_interval=self.poll_interval,
        )
        async with self._run_lock:
            t0 = time.monotonic()
            run = await executor(arguments, context)
        payload = run.to_dict()
        log_mcp_call(
            method="tools/call",
            params={"name": name},
            result=payload if run.success else None,
            error=None if run.success else run.error,
            duration_ms=(time.monotonic() - t0) * 1000,
            tool_name=name,
            tool_args=arguments,
        )
        return {
            "content": [{"type": "text", "text": json.dumps(payload, indent=2, default=str)}],
            "isError": not run.success,
        }

    @staticmethod
    def _error_response(req_id: Any, code: int, message: str) -> dict[str, Any]:
        return {"jsonrpc": "2.0", "id": req_id, "error": {"code": code, "message": message}}
