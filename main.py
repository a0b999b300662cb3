#!/usr/bin/env python3
"""Cube D3 MCP server exposed via streamable HTTP transport."""

from __future__ import annotations

import os

import uvicorn
from starlette.responses import JSONResponse
from starlette.routing import Route

from cube_chat_server import SERVER_NAME, ServerContext, create_server


mcp = create_server(ServerContext.from_env())
app = mcp.streamable_http_app()


async def health(_request):
    return JSONResponse({"status": "ok", "service": SERVER_NAME})


app.router.routes.append(Route("/health", endpoint=health))


if __name__ == "__main__":
    port = int(os.environ.get("PORT", "8000"))
    uvicorn.run(app, host="0.0.0.0", port=port)
