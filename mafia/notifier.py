"""Outbound boundary: what the game needs from a messaging transport."""

import uuid
from dataclasses import dataclass, field
from typing import Optional, Protocol


@dataclass(frozen=True)
class ActionButton:
    id: str
    label: str
    style: str = "primary"  # primary | secondary | danger


@dataclass(frozen=True)
class ActionMenu:
    """Interactive buttons for the transport to render. Clicks come back as intents."""

    id: str
    description: str
    actions: tuple[ActionButton, ...]
    expires_at: Optional[int] = None  # epoch ms


class Notifier(Protocol):
    """Implemented by the messaging transport."""

    async def create_group(self, origin_group_id: str, name: str) -> str:
        """Create the lobby conversation and return its id."""
        ...

    async def add_members(self, conversation_id: str, player_ids: list[str]) -> None:
        ...

    async def send_group(self, conversation_id: str, text: str) -> None:
        ...

    async def send_direct(self, player_id: str, text: str) -> None:
        ...

    async def send_actions(self, conversation_id: str, menu: ActionMenu) -> None:
        ...


@dataclass
class OutboundMessage:
    """One message the game asked the transport to deliver."""

    kind: str  # group | direct | actions
    conversation_id: str
    text: str
    menu: Optional[ActionMenu] = None


@dataclass
class OutboxNotifier:
    """In-memory transport: records every outbound effect instead of delivering it."""

    messages: list[OutboundMessage] = field(default_factory=list)
    members: dict[str, set[str]] = field(default_factory=dict)

    async def create_group(self, origin_group_id: str, name: str) -> str:
        conversation_id = f"lobby-{uuid.uuid4().hex[:12]}"
        self.members[conversation_id] = set()
        return conversation_id

    async def add_members(self, conversation_id: str, player_ids: list[str]) -> None:
        self.members.setdefault(conversation_id, set()).update(player_ids)

    async def send_group(self, conversation_id: str, text: str) -> None:
        self.messages.append(OutboundMessage(kind="group", conversation_id=conversation_id, text=text))

    async def send_direct(self, player_id: str, text: str) -> None:
        self.messages.append(OutboundMessage(kind="direct", conversation_id=player_id, text=text))

    async def send_actions(self, conversation_id: str, menu: ActionMenu) -> None:
        self.messages.append(
            OutboundMessage(kind="actions", conversation_id=conversation_id, text=menu.description, menu=menu)
        )

    def drain(self) -> list[OutboundMessage]:
        """Return and forget everything recorded so far."""
        drained, self.messages = self.messages, []
        return drained

    def texts(self, conversation_id: Optional[str] = None) -> list[str]:
        return [
            m.text for m in self.messages
            if conversation_id is None or m.conversation_id == conversation_id
        ]
