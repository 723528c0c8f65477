"""Outbound chat boundary used by the dispatcher and the confirmation flow."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum

from .domain.actions import Action


class Reaction(str, Enum):
    SEEN = "👀"
    NO_RESULT = "🤷‍♂"


@dataclass(slots=True, frozen=True)
class ChatTarget:
    """Where a message goes: the chat, its forum thread and the message replied to."""

    chat_id: int
    thread_id: int | None = None
    message_id: int | None = None


@dataclass(slots=True, frozen=True)
class Button:
    label: str
    action: Action


@dataclass(slots=True)
class Prompt:
    text: str
    buttons: list[list[Button]] = field(default_factory=list)


class Notifier(ABC):
    """Delivers prompts; message wording is decided by the caller."""

    @abstractmethod
    async def send(self, target: ChatTarget, prompt: Prompt) -> int | None:
        """Send a prompt and return the new message id when known."""

    @abstractmethod
    async def replace(self, target: ChatTarget, message_id: int | None, prompt: Prompt) -> int | None:
        """Remove ``message_id`` (if any) and send ``prompt`` in its place."""

    @abstractmethod
    async def react(self, target: ChatTarget, reaction: Reaction) -> None:
        """Set a reaction on ``target.message_id``."""
