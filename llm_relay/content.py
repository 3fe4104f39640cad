"""Request and turn content normalization.

Caller input for the user turn arrives in one of three shapes, decided
once here rather than re-probed by every provider:

- TextInput: a plain string
- PartsInput: an ordered list of typed content parts
- MessageInput: a message-like mapping/object carrying ``content``

build_user_content() folds any of these plus attachments into the value
that is both sent to the model and persisted as conversation history:
plain text stays a string; anything structured becomes a list of parts.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field, replace
from typing import Any, Literal

from llm_relay.attachments import Attachment, normalize_attachments

Role = Literal["user", "assistant"]
TurnContent = str | list[dict[str, Any]]


@dataclass(frozen=True)
class TextInput:
    text: str


@dataclass(frozen=True)
class PartsInput:
    parts: tuple[Any, ...]


@dataclass(frozen=True)
class MessageInput:
    content: Any
    extras: dict[str, Any] = field(default_factory=dict)


UserInput = TextInput | PartsInput | MessageInput


def classify_user_input(user: Any) -> UserInput | None:
    """Decide which input shape user is. Returns None for no input."""
    if user is None:
        return None
    if isinstance(user, str):
        return TextInput(user)
    if isinstance(user, list | tuple):
        return PartsInput(tuple(user))
    if isinstance(user, dict):
        if "content" not in user:
            return None
        extras = {k: v for k, v in user.items() if k not in ("content", "role")}
        return MessageInput(user["content"], extras)
    content = getattr(user, "content", None)
    if content is not None:
        return MessageInput(content)
    return None


def _as_parts(content: Any) -> list[Any]:
    if isinstance(content, list | tuple):
        return list(content)
    if isinstance(content, str) and content:
        return [{"type": "text", "text": content}]
    return []


def build_user_content(
    user: Any,
    attachments: list[Attachment | dict[str, Any]] | None = None,
    *,
    allow_video: bool = True,
    provider: str = "provider",
) -> TurnContent | None:
    """Return the user turn content, or None when there is nothing to send."""
    parts = normalize_attachments(attachments, allow_video=allow_video, provider=provider)
    shaped = classify_user_input(user)

    match shaped:
        case TextInput(text=text):
            if not parts:
                return text or None
            return [*_as_parts(text), *parts]
        case PartsInput(parts=given):
            combined = [*given, *parts]
            return combined or None
        case MessageInput(content=content):
            if not parts and isinstance(content, str):
                return content or None
            combined = [*_as_parts(content), *parts]
            return combined or None
        case _:
            return parts or None


@dataclass(frozen=True)
class ConversationTurn:
    """One persisted message in a conversation."""

    role: Role
    content: TurnContent

    @property
    def is_persistable(self) -> bool:
        return bool(self.role) and self.content is not None and self.content != "" and self.content != []

    def to_message(self) -> dict[str, Any]:
        return {"role": self.role, "content": self.content}

    def content_as_text(self) -> str:
        """Content as a string; structured content is JSON-encoded."""
        if isinstance(self.content, str):
            return self.content
        return json.dumps(self.content)


def coerce_turn(message: Any) -> ConversationTurn:
    """Turn a prior-message value into a ConversationTurn.

    Accepts ConversationTurn, {"role", "content"} mappings and objects with
    role/content attributes. Anything else is kept as a JSON-encoded user
    turn so no context is silently lost.
    """
    if isinstance(message, ConversationTurn):
        return message
    if isinstance(message, dict):
        role, content = message.get("role"), message.get("content")
    else:
        role, content = getattr(message, "role", None), getattr(message, "content", None)

    if role and content:
        return ConversationTurn(role="assistant" if role in ("assistant", "ai") else "user", content=content)
    if isinstance(message, dict):
        return ConversationTurn(role="user", content=json.dumps(message, default=str))
    return ConversationTurn(role="user", content=str(message))


@dataclass(frozen=True)
class AskRequest:
    """A logical "ask" call, independent of any provider's wire format.

    Attributes:
        system: Optional system prompt
        user: New user input (string, list of parts, or message-like)
        messages: Prior conversation turns, oldest first
        attachments: Images/videos appended to the user turn
    """

    system: str | None = None
    user: Any = None
    messages: tuple[Any, ...] = ()
    attachments: tuple[Attachment | dict[str, Any], ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "messages", tuple(self.messages or ()))
        object.__setattr__(self, "attachments", tuple(self.attachments or ()))

    def with_history(self, turns: list[ConversationTurn]) -> AskRequest:
        """Return a copy with turns placed before any existing prior messages."""
        return replace(self, messages=(*turns, *self.messages))

    def prior_turns(self) -> list[ConversationTurn]:
        return [coerce_turn(m) for m in self.messages]
