#!/usr/bin/env python3
"""Cube D3 MCP Server - Chat with the Cube AI agent for analytics and data exploration."""

import os
import sys
import json
import time
import uuid
import logging
from dataclasses import dataclass, field
from typing import Annotated, Optional

import httpx
from dotenv import load_dotenv
from mcp.server.fastmcp import FastMCP
from mcp.types import TextContent
from pydantic import Field

from cube_client import ConfigurationError, CubeConfig, UpstreamError, open_chat_stream
from stream_decoder import decode_stream


load_dotenv()

LOG_LEVEL = os.environ.get("MCP_LOG_LEVEL", "WARNING").upper()
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.WARNING),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    stream=sys.stderr,
)
logger = logging.getLogger("cube_chat-server")

SERVER_NAME = "cube-d3-mcp-server"
SERVER_VERSION = "1.0.0"

SERVER_INFO_TEXT = f"""Cube D3 MCP Server
Version: {SERVER_VERSION}
Created for Cube.js enterprise examples

This server provides chat functionality for analytics and data exploration with Cube AI."""

EXAMPLE_CONFIG = {
    "serverName": SERVER_NAME,
    "version": SERVER_VERSION,
    "features": ["chat"],
    "description": "A Cube D3 MCP server for analytics and data exploration",
}

ENV_HELP = """Please ensure your environment variables are set:
- CUBE_API_KEY: Your API key from Admin → Agents → API Key
- CUBE_TENANT_NAME: Your tenant name
- CUBE_AGENT_ID: Your agent ID"""


@dataclass(frozen=True)
class ServerContext:
    """Read-only state shared by every handler, built once at startup."""

    config: CubeConfig
    transport: Optional[httpx.AsyncBaseTransport] = field(default=None, compare=False)

    @classmethod
    def from_env(cls) -> "ServerContext":
        return cls(config=CubeConfig.from_env())


def new_chat_id() -> str:
    return f"chat-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"


def _error_text(exc: Exception) -> list:
    return [TextContent(type="text", text=f"❌ Error calling Cube API: {exc}\n\n{ENV_HELP}")]


async def run_chat(context: ServerContext, message: str, chat_id: Optional[str] = None) -> list:
    if not (message or "").strip():
        return [TextContent(type="text", text="❌ Error: message is required.")]
    chat_id = chat_id or new_chat_id()
    logger.info("Chat %s: sending %d chars to Cube agent", chat_id, len(message))

    try:
        async with open_chat_stream(context.config, chat_id, message, transport=context.transport) as response:
            result = await decode_stream(response.aiter_bytes())
    except ConfigurationError as exc:
        logger.warning("Chat %s: %s", chat_id, exc)
        return _error_text(exc)
    except UpstreamError as exc:
        return _error_text(exc)
    except Exception as exc:
        logger.error("chat failed: %s", exc, exc_info=True)
        return _error_text(exc)

    logger.info("Chat %s: processed %d messages", chat_id, result.message_count)
    footer = (
        "\n\n📊 **Cube D3 Chat Session Complete**\n"
        f"Chat ID: {chat_id}\n"
        f"Total messages processed: {result.message_count}"
    )
    return [
        TextContent(type="text", text=result.text),
        TextContent(type="text", text=footer),
    ]


def create_server(context: ServerContext) -> FastMCP:
    server = FastMCP(
        SERVER_NAME,
        instructions="Chat with the Cube AI agent for analytics and data exploration.",
        stateless_http=True,
    )

    @server.tool()
    async def chat(
        message: Annotated[
            str,
            Field(description="Your question or request for the Cube AI agent (e.g., 'Show me revenue trends for the last 6 months')"),
        ],
        chatId: Annotated[  # noqa: N803
            str,
            Field(description="Unique chat session ID (optional, will be generated if not provided)"),
        ] = "",
    ) -> list[TextContent]:
        """Chat with Cube AI agent for analytics and data exploration. Returns streaming response with AI insights, tool calls, and data visualizations."""
        return await run_chat(context, message, chatId or None)

    @server.resource(
        "info://server",
        name="Server Information",
        description="Basic information about this MCP server",
        mime_type="text/plain",
    )
    def server_info() -> str:
        return SERVER_INFO_TEXT

    @server.resource(
        "config://example",
        name="Example Configuration",
        description="Example configuration data",
        mime_type="application/json",
    )
    def example_config() -> str:
        return json.dumps(EXAMPLE_CONFIG, indent=2)

    return server


def main():
    server = create_server(ServerContext.from_env())
    logger.info("Cube D3 MCP Server running on stdio")
    try:
        server.run(transport="stdio")
    except Exception as exc:
        logger.error("Server error: %s", exc, exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
