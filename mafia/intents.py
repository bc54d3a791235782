"""
Intent dispatcher: the single entry point for player commands.

The transport parses a chat command or a button click into an Intent and
hands it to IntentHandler.handle. Every rejection comes back as a failed
Outcome; nothing raised by the engine reaches the transport.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from mafia.errors import (
    ErrorCode,
    GameError,
    MissingArgument,
    OnCooldown,
    WrongConversation,
)
from mafia.flow import GameFlow

logger = logging.getLogger(__name__)


class IntentKind(str, Enum):
    START = "start"
    JOIN = "join"
    TASK = "task"
    KILL = "kill"
    VOTE = "vote"
    CANCEL = "cancel"


class ConversationKind(str, Enum):
    DIRECT = "DIRECT"
    GROUP = "GROUP"


class IntentSource(str, Enum):
    COMMAND = "COMMAND"
    BUTTON = "BUTTON"


@dataclass(frozen=True)
class Intent:
    """A parsed player command."""

    actor_id: str
    actor_name: str
    kind: IntentKind
    conversation_id: str
    conversation_kind: ConversationKind = ConversationKind.GROUP
    args: tuple[str, ...] = ()
    source: IntentSource = IntentSource.COMMAND

    @property
    def argument(self) -> str:
        return " ".join(self.args).strip()

    @property
    def is_direct(self) -> bool:
        return self.conversation_kind == ConversationKind.DIRECT


@dataclass
class Outcome:
    """Reply to one intent. error is set only when ok is False."""

    ok: bool
    message: str
    error: Optional[ErrorCode] = None
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def success(cls, message: str, **data: Any) -> "Outcome":
        return cls(ok=True, message=message, data=data)

    @classmethod
    def failure(cls, err: GameError) -> "Outcome":
        data: dict[str, Any] = {}
        if isinstance(err, OnCooldown):
            data["remaining_ms"] = err.remaining_ms
        return cls(ok=False, message=err.message, error=err.code, data=data)


class IntentHandler:
    """Routes intents to the game flow under the game lock."""

    def __init__(self, flow: GameFlow) -> None:
        self.flow = flow
        self.engine = flow.engine
        self._handlers = {
            IntentKind.START: self._start,
            IntentKind.JOIN: self._join,
            IntentKind.TASK: self._task,
            IntentKind.KILL: self._kill,
            IntentKind.VOTE: self._vote,
            IntentKind.CANCEL: self._cancel,
        }

    async def handle(self, intent: Intent) -> Outcome:
        handler = self._handlers[intent.kind]
        async with self.flow.lock:
            try:
                return await handler(intent)
            except GameError as e:
                logger.info("Rejected %s from %s: %s", intent.kind.value, intent.actor_id, e.message)
                return Outcome.failure(e)

    async def _start(self, intent: Intent) -> Outcome:
        if intent.is_direct:
            raise WrongConversation("Start a game from a group chat, not in private messages.")
        await self.flow.start_lobby(intent.conversation_id, intent.actor_id, intent.actor_name)
        return Outcome.success(
            "🚀 Lobby created! Others can join from this group.",
            lobby_id=self.engine.lobby_id,
            join_deadline=self.engine.join_deadline,
        )

    async def _join(self, intent: Intent) -> Outcome:
        if intent.is_direct:
            raise WrongConversation("Join from the game group, not in private messages.")
        lobby_id = self.engine.lobby_id
        if intent.source == IntentSource.BUTTON:
            if intent.conversation_id not in (lobby_id, self.engine.origin_group_id):
                raise WrongConversation("This join button belongs to another game.")
            replace = True
        else:
            if lobby_id is None or intent.conversation_id != lobby_id:
                raise WrongConversation("Use the Join button in the group, or /join inside the lobby.")
            replace = False

        result = await self.flow.join(intent.actor_id, intent.actor_name, replace=replace)
        if result.already_joined:
            return Outcome.success("✅ You're already in the game!", already_joined=True)
        players = self.engine.get_players()
        return Outcome.success(
            f"✅ You joined the game! Players: {', '.join(p.name for p in players)} "
            f"({len(players)}/{self.engine.config.max_players})",
            evicted=result.evicted.id if result.evicted else None,
        )

    async def _task(self, intent: Intent) -> Outcome:
        if intent.is_direct:
            raise WrongConversation(
                "Task submissions should be done in the game lobby group, not in private messages."
            )
        answer = intent.argument
        if not answer:
            raise MissingArgument("Usage: /task <answer>")
        if self.engine.complete_task(intent.actor_id, answer):
            task = self.engine.current_task(intent.actor_id)
            return Outcome.success("✅ Task completed!", correct=True, next_task=task.question if task else None)
        return Outcome.success("❌ Task answer incorrect. Try again.", correct=False)

    async def _kill(self, intent: Intent) -> Outcome:
        if not intent.is_direct:
            raise WrongConversation("Kill commands can only be used in private messages (DMs).")
        target = intent.argument
        if not target:
            targets = self.engine.kill_targets()
            if not targets:
                return Outcome.success("❌ No players left to kill.", targets=[])
            names = ", ".join(p.name for p in targets)
            return Outcome.success(
                f"🔪 Available targets: {names}\n\nUse: kill <name>",
                targets=[p.id for p in targets],
            )
        result = self.engine.attempt_kill(intent.actor_id, target)
        await self.flow.on_kill(result)
        return Outcome.success(
            result.message,
            success=result.success,
            target_id=result.target_id,
            attempts_left=result.attempts_left,
        )

    async def _vote(self, intent: Intent) -> Outcome:
        target = intent.argument
        if not target:
            raise MissingArgument("Usage: /vote <name>")
        if not self.engine.cast_vote(intent.actor_id, target):
            return Outcome.success("You have already voted this round.", counted=False)
        player = self.engine.find_player(target)
        await self.flow.on_vote()
        return Outcome.success(f"🗳️ Vote cast for {player.name if player else target}.", counted=True)

    async def _cancel(self, intent: Intent) -> Outcome:
        await self.flow.cancel_game()
        return Outcome.success("❌ Game cancelled.")
