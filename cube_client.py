"""Cube AI agent client - token issuance and the streaming chat request."""

from __future__ import annotations

import logging
import os
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator

import httpx
import jwt


logger = logging.getLogger("cube_chat-server.client")

DEFAULT_BASE_URL = "https://ai-engineer.cubecloud.dev"
DEFAULT_TIMEOUT_SECONDS = 60.0

TOKEN_ISSUER = "mcp-server"
TOKEN_AUDIENCE = "ai-engineer"
TOKEN_TTL_SECONDS = 60 * 60

CHAT_PATH = "/api/v1/public/{tenant}/agents/{agent_id}/chat/stream-chat-state"


class CubeChatError(Exception):
    """Base class for failures talking to the Cube AI agent."""


class ConfigurationError(CubeChatError):
    """A required setting is missing from the environment."""

    def __init__(self, variable: str, label: str):
        self.variable = variable
        super().__init__(f"Cube {label} not configured. Set {variable} environment variable.")


class UpstreamError(CubeChatError):
    """The Cube API answered with a non-success status."""

    def __init__(self, status_code: int, reason: str):
        self.status_code = status_code
        self.reason = reason
        super().__init__(f"Cube API error: {status_code} {reason}".rstrip())


@dataclass(frozen=True)
class CubeConfig:
    secret: str = ""
    tenant_name: str = ""
    agent_id: str = ""
    base_url: str = DEFAULT_BASE_URL
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS

    @classmethod
    def from_env(cls, environ=None) -> "CubeConfig":
        env = os.environ if environ is None else environ
        return cls(
            secret=env.get("CUBE_API_KEY", "").strip(),
            tenant_name=env.get("CUBE_TENANT_NAME", "").strip(),
            agent_id=env.get("CUBE_AGENT_ID", "").strip(),
            base_url=(env.get("CUBE_BASE_URL", "").strip() or DEFAULT_BASE_URL).rstrip("/"),
            timeout_seconds=float(env.get("CUBE_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS)),
        )

    def chat_url(self) -> str:
        path = CHAT_PATH.format(tenant=self.tenant_name, agent_id=self.agent_id)
        return f"{self.base_url.rstrip('/')}{path}"


def generate_token(config: CubeConfig) -> str:
    """Sign a one-hour bearer token for the Cube public agent API.

    Each call issues a fresh token; tokens are used for a single request.
    """
    if not config.secret:
        raise ConfigurationError("CUBE_API_KEY", "API key")
    if not config.tenant_name:
        raise ConfigurationError("CUBE_TENANT_NAME", "tenant name")
    if not config.agent_id:
        raise ConfigurationError("CUBE_AGENT_ID", "agent ID")

    payload = {
        "iss": TOKEN_ISSUER,
        "aud": TOKEN_AUDIENCE,
        "exp": int(time.time()) + TOKEN_TTL_SECONDS,
    }
    return jwt.encode(payload, config.secret, algorithm="HS256")


@asynccontextmanager
async def open_chat_stream(
    config: CubeConfig,
    chat_id: str,
    message: str,
    transport: httpx.AsyncBaseTransport | None = None,
) -> AsyncIterator[httpx.Response]:
    """POST one chat turn and yield the response with its body still unread.

    Raises UpstreamError on any non-2xx status. The body is consumed by the
    caller through ``response.aiter_bytes()`` while the context is open.
    """
    token = generate_token(config)
    url = config.chat_url()
    headers = {
        "Content-Type": "application/json",
        "Authorization": f"Bearer {token}",
    }
    body = {"chatId": chat_id, "input": message}

    timeout = httpx.Timeout(config.timeout_seconds)
    async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
        logger.debug("POST %s (chatId=%s)", url, chat_id)
        async with client.stream("POST", url, headers=headers, json=body) as response:
            try:
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                logger.error("Cube chat request failed with %s", response.status_code)
                raise UpstreamError(response.status_code, response.reason_phrase) from exc
            yield response
