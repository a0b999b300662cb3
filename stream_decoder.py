"""Incremental decoder for the Cube chat NDJSON stream."""

from __future__ import annotations

import codecs
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterable, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError


logger = logging.getLogger("cube_chat-server.stream")

EMPTY_RESULT_TEXT = "Chat completed with no visible content"


class ToolCall(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: Optional[str] = None
    result: Any = None

    @property
    def completed(self) -> bool:
        return self.result is not None


class StreamMessage(BaseModel):
    """One record of the stream-chat-state response.

    Every field is optional; a message may carry only a tool call, only
    content, or neither.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    role: Optional[str] = None
    content: Any = None
    is_delta: Optional[bool] = Field(default=False, alias="isDelta")
    tool_call: Optional[ToolCall] = Field(default=None, alias="toolCall")

    @property
    def is_assistant_utterance(self) -> bool:
        return self.role == "assistant" and bool(self.content) and not self.is_delta


class ParseError(ValueError):
    """A single stream line that is not a valid message."""

    def __init__(self, line: str, error: Exception):
        self.line = line
        self.error = error
        super().__init__(f"Failed to parse message: {error}")


def parse_line(line: str) -> StreamMessage:
    try:
        return StreamMessage.model_validate_json(line)
    except ValidationError as exc:
        raise ParseError(line, exc) from exc


def format_tool_call(tool_call: ToolCall) -> str:
    status = "Completed" if tool_call.completed else "In Progress"
    return f"\n🔧 Tool Call: {tool_call.name} - {status}\n"


@dataclass
class AccumulatedResult:
    fragments: list[str] = field(default_factory=list)
    messages: list[StreamMessage] = field(default_factory=list)

    @property
    def message_count(self) -> int:
        return len(self.messages)

    @property
    def text(self) -> str:
        return "".join(self.fragments) or EMPTY_RESULT_TEXT


class StreamDecoder:
    """Line-buffering state machine over arbitrary chunk boundaries.

    ``feed`` may be called with any split of the byte stream; only complete
    lines are parsed. ``finish`` parses the trailing unterminated line, if
    any, and returns the accumulated result.
    """

    def __init__(self):
        self._pending = ""
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._result = AccumulatedResult()
        self._finished = False

    @property
    def pending(self) -> str:
        return self._pending

    def feed(self, chunk: Union[bytes, str]) -> None:
        if self._finished:
            raise RuntimeError("feed() called after finish()")
        if isinstance(chunk, bytes):
            chunk = self._decoder.decode(chunk)
        lines = (self._pending + chunk).split("\n")
        self._pending = lines.pop()
        for line in lines:
            self._process_line(line)

    def finish(self) -> AccumulatedResult:
        if not self._finished:
            self._finished = True
            tail = self._pending + self._decoder.decode(b"", final=True)
            self._pending = ""
            self._process_line(tail)
        return self._result

    def _process_line(self, line: str) -> None:
        if not line.strip():
            return
        try:
            message = parse_line(line)
        except ParseError as exc:
            logger.warning("%s Line: %s", exc, line)
            return

        self._result.messages.append(message)
        if message.is_assistant_utterance:
            self._result.fragments.append(f"{message.content}\n")
        if message.tool_call is not None:
            self._result.fragments.append(format_tool_call(message.tool_call))


async def decode_stream(chunks: AsyncIterable[Union[bytes, str]]) -> AccumulatedResult:
    decoder = StreamDecoder()
    async for chunk in chunks:
        decoder.feed(chunk)
    return decoder.finish()
