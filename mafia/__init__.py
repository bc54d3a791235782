"""Game core for group-chat Mafia."""

from mafia.config import GameConfig
from mafia.engine import GameEngine
from mafia.errors import ErrorCode, GameError
from mafia.flow import GameFlow
from mafia.intents import ConversationKind, Intent, IntentHandler, IntentKind, IntentSource, Outcome
from mafia.notifier import ActionButton, ActionMenu, Notifier, OutboxNotifier
from mafia.rules import Phase, Role, TaskType
from mafia.state import Game, Player, Task
from mafia.tasks import generate_task, validate_answer
from mafia.timers import PhaseTimers

__all__ = [
    "GameConfig",
    "GameEngine",
    "ErrorCode",
    "GameError",
    "GameFlow",
    "ConversationKind",
    "Intent",
    "IntentHandler",
    "IntentKind",
    "IntentSource",
    "Outcome",
    "ActionButton",
    "ActionMenu",
    "Notifier",
    "OutboxNotifier",
    "Phase",
    "Role",
    "TaskType",
    "Game",
    "Player",
    "Task",
    "generate_task",
    "validate_answer",
    "PhaseTimers",
]
