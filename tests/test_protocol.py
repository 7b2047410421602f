"""Tests for the MCP protocol handler and its transports."""
from __future__ import annotations

import asyncio
import io
import json
import os

import pytest
from fastapi.testclient import TestClient

from kodrdriv_mcp import __version__
from kodrdriv_mcp.core.config import Settings
from kodrdriv_mcp.core.executor import ExecutionContext, execute_command
from kodrdriv_mcp.core.logging_config import get_logger
from kodrdriv_mcp.mcp.protocol import MCPProtocolHandler
from kodrdriv_mcp.mcp.server import create_app
from kodrdriv_mcp.mcp.stdio import StdioServer
from kodrdriv_mcp.mcp.tools import TOOL_EXECUTORS, TOOLS


async def _fake_tool(args, context: ExecutionContext):
    async def operation(config):
        get_logger().info("[1/1] demo: Running")
        await asyncio.sleep(0.03)
        if args.get("fail"):
            raise RuntimeError("demo failed")
        return {"ok": True}

    return await execute_command(args, context, operation)


def _handler() -> MCPProtocolHandler:
    return MCPProtocolHandler(
        working_directory=".",
        poll_interval=0.01,
        tools=[{"name": "demo", "description": "demo", "inputSchema": {"type": "object", "properties": {}}}],
        executors={"demo": _fake_tool},
    )


def _settings(**overrides) -> Settings:
    values = dict(
        log_level="info",
        log_dir="/tmp/kodrdriv-mcp-test-logs",
        host="127.0.0.1",
        port=0,
        mcp_token=None,
        poll_interval=0.01,
        clear_logs_on_launch=False,
    )
    values.update(overrides)
    return Settings(**values)


def test_every_tool_has_an_executor():
    assert {tool["name"] for tool in TOOLS} == set(TOOL_EXECUTORS)


class TestHandler:
    @pytest.mark.asyncio
    async def test_initialize(self):
        resp = await _handler().handle_request({"jsonrpc": "2.0", "id": 1, "method": "initialize", "params": {}})
        assert resp["result"]["serverInfo"] == {"name": "kodrdriv-mcp", "version": __version__}

    @pytest.mark.asyncio
    async def test_notification_gets_empty_response(self):
        assert await _handler().handle_request({"jsonrpc": "2.0", "method": "notifications/initialized"}) == {}

    @pytest.mark.asyncio
    async def test_tools_list(self):
        resp = await _handler().handle_request({"jsonrpc": "2.0", "id": 2, "method": "tools/list"})
        assert [t["name"] for t in resp["result"]["tools"]] == ["demo"]

    @pytest.mark.asyncio
    async def test_unknown_method(self):
        resp = await _handler().handle_request({"jsonrpc": "2.0", "id": 3, "method": "resources/list"})
        assert resp["error"]["code"] == -32601

    @pytest.mark.asyncio
    async def test_unknown_tool(self):
        resp = await _handler().handle_request(
            {"jsonrpc": "2.0", "id": 4, "method": "tools/call", "params": {"name": "nope"}}
        )
        assert resp["result"]["isError"] is True

    @pytest.mark.asyncio
    async def test_tool_call_with_progress_token(self):
        sent = []

        async def send(notification):
            sent.append(notification)

        resp = await _handler().handle_request(
            {
                "jsonrpc": "2.0",
                "id": 5,
                "method": "tools/call",
                "params": {"name": "demo", "arguments": {}, "_meta": {"progressToken": "p-1"}},
            },
            send_notification=send,
        )
        await asyncio.sleep(0)
        payload = json.loads(resp["result"]["content"][0]["text"])
        assert resp["result"]["isError"] is False
        assert payload["data"]["result"] == {"ok": True}
        assert payload["logs"] == ["ℹ️  [1/1] demo: Running"]
        assert sent
        assert all(n["method"] == "notifications/progress" for n in sent)
        assert all(n["params"]["progressToken"] == "p-1" for n in sent)

    @pytest.mark.asyncio
    async def test_no_token_no_push(self):
        sent = []

        async def send(notification):
            sent.append(notification)

        await _handler().handle_request(
            {"jsonrpc": "2.0", "id": 6, "method": "tools/call", "params": {"name": "demo"}},
            send_notification=send,
        )
        await asyncio.sleep(0)
        assert sent == []

    @pytest.mark.asyncio
    async def test_failed_tool_is_error_result(self):
        resp = await _handler().handle_request(
            {"jsonrpc": "2.0", "id": 7, "method": "tools/call", "params": {"name": "demo", "arguments": {"fail": True}}}
        )
        payload = json.loads(resp["result"]["content"][0]["text"])
        assert resp["result"]["isError"] is True
        assert payload["success"] is False
        assert payload["error"] == "demo failed"


class TestHttpServer:
    def test_health(self):
        client = TestClient(create_app(_settings(), handler=_handler()))
        assert client.get("/health").json() == {"status": "ok", "version": __version__}

    def test_tool_call(self):
        client = TestClient(create_app(_settings(), handler=_handler()))
        resp = client.post(
            "/mcp",
            json={"jsonrpc": "2.0", "id": 1, "method": "tools/call", "params": {"name": "demo", "arguments": {}}},
        )
        assert resp.status_code == 200
        assert resp.json()["result"]["isError"] is False

    def test_token_required(self):
        client = TestClient(create_app(_settings(mcp_token="s3cret"), handler=_handler()))
        body = {"jsonrpc": "2.0", "id": 1, "method": "ping"}
        assert client.post("/mcp", json=body).status_code == 401
        assert client.post("/mcp", json=body, headers={"x-mcp-token": "s3cret"}).status_code == 200
        assert client.post("/mcp", json=body, headers={"authorization": "Bearer s3cret"}).status_code == 200

    def test_invalid_json(self):
        client = TestClient(create_app(_settings(), handler=_handler()))
        resp = client.post("/mcp", content=b"{oops", headers={"content-type": "application/json"})
        assert resp.status_code == 400


class TestStdio:
    @pytest.mark.asyncio
    async def test_serves_until_eof(self):
        requests = [
            {"jsonrpc": "2.0", "id": 1, "method": "initialize", "params": {}},
            {"jsonrpc": "2.0", "method": "notifications/initialized"},
            {
                "jsonrpc": "2.0",
                "id": 2,
                "method": "tools/call",
                "params": {"name": "demo", "_meta": {"progressToken": 9}},
            },
        ]
        reader = io.StringIO("".join(json.dumps(r) + "\n" for r in requests) + "not json\n")
        writer = io.StringIO()
        await StdioServer(_handler(), reader, writer).serve()
        await asyncio.sleep(0)

        messages = [json.loads(line) for line in writer.getvalue().splitlines()]
        responses = {m.get("id"): m for m in messages if "id" in m}
        progress = [m for m in messages if m.get("method") == "notifications/progress"]
        assert responses[1]["result"]["protocolVersion"]
        assert responses[2]["result"]["isError"] is False
        assert any(m.get("error", {}).get("code") == -32700 for m in messages)
        assert progress
        assert all(m["jsonrpc"] == "2.0" and m["params"]["progressToken"] == 9 for m in progress)

    @pytest.mark.asyncio
    async def test_overlapping_tool_calls_run_one_at_a_time(self, tmp_path):
        async def labelled_tool(args, context: ExecutionContext):
            async def operation(config):
                get_logger().info("from %s", args["label"])
                await asyncio.sleep(0.03)
                get_logger().info("still %s", args["label"])
                return os.getcwd()

            return await execute_command(args, context, operation)

        handler = MCPProtocolHandler(
            working_directory=".",
            poll_interval=0.01,
            tools=[],
            executors={"labelled": labelled_tool},
        )
        for label in ("a", "b"):
            (tmp_path / label).mkdir()
        requests = [
            {
                "jsonrpc": "2.0",
                "id": label,
                "method": "tools/call",
                "params": {"name": "labelled", "arguments": {"label": label, "directory": str(tmp_path / label)}},
            }
            for label in ("a", "b")
        ]
        requests.append({"jsonrpc": "2.0", "id": "ping", "method": "ping"})
        reader = io.StringIO("".join(json.dumps(r) + "\n" for r in requests))
        writer = io.StringIO()
        cwd = os.getcwd()

        await StdioServer(handler, reader, writer).serve()

        assert os.getcwd() == cwd
        responses = [json.loads(line) for line in writer.getvalue().splitlines() if '"id"' in line]
        order = [m["id"] for m in responses]
        assert order.index("ping") < order.index("a")
        for message in responses:
            if message["id"] == "ping":
                continue
            label = message["id"]
            payload = json.loads(message["result"]["content"][0]["text"])
            assert payload["logs"] == [f"ℹ️  from {label}", f"ℹ️  still {label}"]
            assert payload["data"]["result"] == os.path.realpath(tmp_path / label)
