"""
mafia.errors: rejected-command exceptions
=========================================

Every failure the engine can report is a GameError subclass carrying an
ErrorCode. None of them are fatal: the intent dispatcher turns them into a
failed Outcome and the transport shows the message to the player.
"""

from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    INVALID_PHASE = "INVALID_PHASE"
    LOBBY_FULL = "LOBBY_FULL"
    ALREADY_ACTIVE = "ALREADY_ACTIVE"
    ALREADY_ASSIGNED = "ALREADY_ASSIGNED"
    PLAYER_NOT_FOUND = "PLAYER_NOT_FOUND"
    TARGET_NOT_FOUND = "TARGET_NOT_FOUND"
    ON_COOLDOWN = "ON_COOLDOWN"
    ATTEMPTS_EXHAUSTED = "ATTEMPTS_EXHAUSTED"
    NOT_AUTHORIZED = "NOT_AUTHORIZED"
    WRONG_CONVERSATION = "WRONG_CONVERSATION"
    MISSING_ARGUMENT = "MISSING_ARGUMENT"
    TRANSPORT_FAILED = "TRANSPORT_FAILED"


class GameError(Exception):
    """Base exception for all rejected game commands."""

    code: ErrorCode = ErrorCode.INVALID_PHASE

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class InvalidPhase(GameError):
    """Action attempted outside the phase in which it is legal."""

    code = ErrorCode.INVALID_PHASE


class LobbyFull(GameError):
    code = ErrorCode.LOBBY_FULL


class AlreadyActive(GameError):
    """A game is already running; a new lobby cannot be created."""

    code = ErrorCode.ALREADY_ACTIVE


class AlreadyAssigned(GameError):
    code = ErrorCode.ALREADY_ASSIGNED


class PlayerNotFound(GameError):
    """The acting player is not part of the game."""

    code = ErrorCode.PLAYER_NOT_FOUND

    def __init__(self, player_id: str, message: Optional[str] = None):
        self.player_id = player_id
        super().__init__(message or "You are not part of an active game.")


class TargetNotFound(GameError):
    """The target reference does not resolve to exactly one eligible player."""

    code = ErrorCode.TARGET_NOT_FOUND

    def __init__(self, target_ref: str, message: Optional[str] = None):
        self.target_ref = target_ref
        super().__init__(message or f"Player '{target_ref}' not found.")


class OnCooldown(GameError):
    code = ErrorCode.ON_COOLDOWN

    def __init__(self, remaining_ms: int):
        self.remaining_ms = remaining_ms
        seconds = -(-remaining_ms // 1000)
        super().__init__(f"Kill on cooldown. Wait {seconds} seconds.")


class AttemptsExhausted(GameError):
    code = ErrorCode.ATTEMPTS_EXHAUSTED

    def __init__(self, max_attempts: int):
        self.max_attempts = max_attempts
        super().__init__(f"No kill attempts left ({max_attempts} used).")


class NotAuthorized(GameError):
    """Actor's role or status does not allow the action."""

    code = ErrorCode.NOT_AUTHORIZED


class WrongConversation(NotAuthorized):
    """Command sent in a conversation where it is not accepted."""

    code = ErrorCode.WRONG_CONVERSATION


class MissingArgument(GameError):
    code = ErrorCode.MISSING_ARGUMENT


class TransportFailure(GameError):
    """The messaging transport could not perform a step the command depends on."""

    code = ErrorCode.TRANSPORT_FAILED
