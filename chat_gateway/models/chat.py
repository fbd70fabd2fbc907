from enum import StrEnum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class Role(StrEnum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"

    @classmethod
    def coerce(cls, value: object) -> "Role":
        """Map free-form role input onto the closed enum, defaulting to ``user``."""
        normalized = str(value if value is not None else "").strip().lower()
        try:
            return cls(normalized)
        except ValueError:
            return cls.USER


class Message(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Role = Role.USER
    content: str = Field(min_length=1)

    def as_provider_dict(self) -> dict[str, str]:
        return {"role": self.role.value, "content": self.content}


class ChatRequest(BaseModel):
    """Provider-agnostic request envelope handed to a chat adapter."""

    model_config = ConfigDict(frozen=True)

    messages: tuple[Message, ...]
    provider: str
    model: str | None = None
    tools: tuple[Any, ...] = ()
    tool_infos: tuple[Any, ...] = ()
    options: dict[str, Any] = Field(default_factory=dict)
    criteria: tuple[Any, ...] = ()
    metadata: dict[str, Any] = Field(default_factory=dict)
    response_format: dict[str, Any] | None = None
    tool_choice: Literal["auto", "none", "required"] = "auto"

    def provider_messages(self) -> list[dict[str, str]]:
        return [message.as_provider_dict() for message in self.messages]
