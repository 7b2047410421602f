"""stdio transport: newline-delimited JSON-RPC on stdin/stdout.

Requests are handled as separate tasks so a long tool call does not
block pings or other requests. Tool calls themselves run one at a time
(see :class:`MCPProtocolHandler`). Progress notifications are written to
stdout between responses.
"""
from __future__ import annotations

import asyncio
import json
import logging
import sys
from typing import Any, Optional, Set, TextIO

from kodrdriv_mcp.mcp.protocol import MCPProtocolHandler

logger = logging.getLogger("kodrdriv_mcp.stdio")


class StdioServer:
    def __init__(
        self,
        handler: MCPProtocolHandler,
        reader: Optional[TextIO] = None,
        writer: Optional[TextIO] = None,
    ) -> None:
        self.handler = handler
        self.reader = reader or sys.stdin
        self.writer = writer or sys.stdout
        self._tasks: Set["asyncio.Task[None]"] = set()

    def write_message(self, message: dict[str, Any]) -> None:
        self.writer.write(json.dumps(message, default=str) + "\n")
        self.writer.flush()

    async def send_notification(self, notification: dict[str, Any]) -> None:
        self.write_message({"jsonrpc": "2.0", **notification})

    async def _handle_line(self, line: str) -> None:
        try:
            body = json.loads(line)
        except json.JSONDecodeError as exc:
            self.write_message(MCPProtocolHandler._error_response(None, -32700, f"Parse error: {exc}"))
            return
        if not isinstance(body, dict):
            self.write_message(MCPProtocolHandler._error_response(None, -32600, "Invalid request"))
            return
        response = await self.handler.handle_request(body, send_notification=self.send_notification)
        if response:
            self.write_message(response)

    async def serve(self) -> None:
        """Read requests until EOF, then wait for in-flight ones to finish."""
        logger.info("stdio transport ready")
        while True:
            line = await asyncio.to_thread(self.reader.readline)
            if not line:
                break
            line = line.strip()
            if not line:
                continue
            task = asyncio.create_task(self._handle_line(line))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        logger.info("stdio transport closed")
