"""Tests for the chat tool and the MCP registration."""

from __future__ import annotations

import json

import httpx
import pytest
from mcp.server.fastmcp.exceptions import ToolError

from cube_chat_server import (
    EXAMPLE_CONFIG,
    ServerContext,
    create_server,
    new_chat_id,
    run_chat,
)
from cube_client import CubeConfig
from stream_decoder import EMPTY_RESULT_TEXT


CONFIG = CubeConfig(secret="s3cret", tenant_name="cloud", agent_id="2")

STREAM = (
    b'{"role":"assistant","content":"Revenue is up.","isDelta":false}\n'
    b'{"role":"assistant","toolCall":{"name":"cubeSqlApi","result":{}}}\n'
    b'{"role":"assistant","content":"Done","isDelta":false}'
)


def _context(handler) -> ServerContext:
    return ServerContext(config=CONFIG, transport=httpx.MockTransport(handler))


class TestRunChat:
    @pytest.mark.asyncio
    async def test_success_returns_text_and_footer(self):
        context = _context(lambda request: httpx.Response(200, content=STREAM))
        content, footer = await run_chat(context, "How is revenue?", "chat-42")
        assert content.text == (
            "Revenue is up.\n\n🔧 Tool Call: cubeSqlApi - Completed\nDone\n"
        )
        assert "Chat ID: chat-42" in footer.text
        assert "Total messages processed: 3" in footer.text

    @pytest.mark.asyncio
    async def test_generates_chat_id(self):
        bodies = []

        def handler(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(200, content=b"")

        content, footer = await run_chat(_context(handler), "hello")
        chat_id = bodies[0]["chatId"]
        assert chat_id.startswith("chat-")
        assert f"Chat ID: {chat_id}" in footer.text
        assert content.text == EMPTY_RESULT_TEXT
        assert "Total messages processed: 0" in footer.text

    @pytest.mark.asyncio
    async def test_missing_api_key_is_reported_as_text(self, monkeypatch):
        monkeypatch.delenv("CUBE_API_KEY", raising=False)
        monkeypatch.setenv("CUBE_TENANT_NAME", "cloud")
        monkeypatch.setenv("CUBE_AGENT_ID", "2")
        result = await run_chat(ServerContext.from_env(), "hello")
        assert len(result) == 1
        assert result[0].type == "text"
        assert "Set CUBE_API_KEY environment variable" in result[0].text

    @pytest.mark.asyncio
    async def test_upstream_error_is_reported_as_text(self):
        context = _context(lambda request: httpx.Response(503))
        (result,) = await run_chat(context, "hello", "chat-1")
        assert "Cube API error: 503 Service Unavailable" in result.text
        assert "CUBE_TENANT_NAME" in result.text

    @pytest.mark.asyncio
    async def test_network_error_is_reported_as_text(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        (result,) = await run_chat(_context(handler), "hello", "chat-1")
        assert "connection refused" in result.text

    @pytest.mark.asyncio
    async def test_blank_message(self):
        (result,) = await run_chat(ServerContext(config=CONFIG), "   ")
        assert result.text == "❌ Error: message is required."


def test_new_chat_id_is_unique():
    assert len({new_chat_id() for _ in range(100)}) == 100


class TestServerRegistration:
    @pytest.mark.asyncio
    async def test_lists_chat_tool(self):
        server = create_server(ServerContext(config=CONFIG))
        tools = await server.list_tools()
        assert [tool.name for tool in tools] == ["chat"]
        schema = tools[0].inputSchema
        assert schema["required"] == ["message"]
        assert set(schema["properties"]) == {"message", "chatId"}

    @pytest.mark.asyncio
    async def test_lists_resources(self):
        server = create_server(ServerContext(config=CONFIG))
        resources = await server.list_resources()
        assert sorted(str(resource.uri) for resource in resources) == [
            "config://example",
            "info://server",
        ]

    @pytest.mark.asyncio
    async def test_reads_resources(self):
        server = create_server(ServerContext(config=CONFIG))
        (info,) = list(await server.read_resource("info://server"))
        assert info.content.startswith("Cube D3 MCP Server")
        (config,) = list(await server.read_resource("config://example"))
        assert json.loads(config.content) == EXAMPLE_CONFIG

    @pytest.mark.asyncio
    async def test_unknown_tool_fails(self):
        server = create_server(ServerContext(config=CONFIG))
        with pytest.raises(ToolError, match="Unknown tool"):
            await server.call_tool("forecast", {})

    @pytest.mark.asyncio
    async def test_unknown_resource_fails(self):
        server = create_server(ServerContext(config=CONFIG))
        with pytest.raises(Exception, match="Unknown resource"):
            await server.read_resource("info://missing")
