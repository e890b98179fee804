"""Protocol layer: assistant stream-json lines in, user turns out."""

from __future__ import annotations

import json
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

MessageType = Literal["assistant", "result", "error", "system", "user"]


class ContentBlock(BaseModel):
    """One block of assistant content: `text` or `tool_use`."""

    model_config = ConfigDict(extra="ignore")

    type: str
    text: str | None = None
    id: str | None = None
    name: str | None = None
    input: dict[str, Any] = Field(default_factory=dict)


class AssistantMessage(BaseModel):
    """Parsed form of one stdout line; transient, never stored."""

    model_config = ConfigDict(extra="ignore")

    type: str
    session_id: str | None = None
    subtype: str | None = None
    result: str | None = None
    message: Any = None

    @property
    def blocks(self) -> list[ContentBlock]:
        if not isinstance(self.message, dict):
            return []
        raw_blocks = self.message.get("content")
        if isinstance(raw_blocks, str):
            return [ContentBlock(type="text", text=raw_blocks)]
        if not isinstance(raw_blocks, list):
            return []
        blocks: list[ContentBlock] = []
        for item in raw_blocks:
            if not isinstance(item, dict):
                continue
            try:
                blocks.append(ContentBlock.model_validate(item))
            except ValidationError:
                continue
        return blocks

    @property
    def text(self) -> str:
        return "".join(block.text or "" for block in self.blocks if block.type == "text")

    @property
    def tool_uses(self) -> list[ContentBlock]:
        return [block for block in self.blocks if block.type == "tool_use" and block.name]

    @property
    def error_text(self) -> str:
        if self.result:
            return self.result
        if isinstance(self.message, str):
            return self.message
        if isinstance(self.message, dict):
            return str(self.message.get("message") or self.message.get("content") or "")
        return ""


def parse_line(line: str) -> AssistantMessage | None:
    """Return the parsed message, or None when the line is not a protocol object."""
    try:
        decoded = json.loads(line)
    except json.JSONDecodeError:
        return None
    if not isinstance(decoded, dict) or not isinstance(decoded.get("type"), str):
        return None
    try:
        return AssistantMessage.model_validate(decoded)
    except ValidationError:
        return None


def encode_user_turn(content: str) -> bytes:
    """Newline-terminated stream-json user turn for the assistant's stdin."""
    payload = {
        "type": "user",
        "message": {"role": "user", "content": content},
    }
    return (json.dumps(payload, ensure_ascii=False) + "\n").encode("utf-8")
