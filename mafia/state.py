"""Game state types for the group-chat Mafia game."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from mafia.rules import Phase, Role, TaskType, ROUND_PHASE_SET


@dataclass
class Task:
    """One puzzle assigned to a player."""

    id: str
    type: TaskType
    question: str
    answer: str
    completed: bool = False


@dataclass
class Player:
    """A player in the game."""

    id: str
    name: str
    role: Optional[Role] = None
    alive: bool = True
    completed_tasks: int = 0
    kill_attempts: int = 0
    last_kill_attempt: Optional[int] = None  # epoch ms
    voted: bool = False
    vote_target: Optional[str] = None


class EventKind(str, Enum):
    """Type of game event."""

    LOBBY_CREATED = "lobby_created"
    PLAYER_JOINED = "player_joined"
    PLAYER_REMOVED = "player_removed"
    ROLES_ASSIGNED = "roles_assigned"
    PHASE_CHANGE = "phase_change"
    TASK_COMPLETED = "task_completed"
    KILL_ATTEMPT = "kill_attempt"
    KILLED = "killed"
    VOTE = "vote"
    ELIMINATED = "eliminated"
    GAME_END = "game_end"


@dataclass
class Event:
    """A single game event for history."""

    kind: EventKind
    round_index: int
    phase: Phase
    message: str
    player_id: Optional[str] = None
    target_id: Optional[str] = None
    extra: Optional[dict] = None


@dataclass
class Game:
    """Full state of the one active game."""

    phase: Phase = Phase.IDLE
    lobby_id: Optional[str] = None
    origin_group_id: Optional[str] = None
    players: dict[str, Player] = field(default_factory=dict)  # join order
    round: int = 0
    join_deadline: Optional[int] = None  # epoch ms
    current_phase_deadline: Optional[int] = None  # epoch ms
    impostor_id: Optional[str] = None
    eliminated_players: set[str] = field(default_factory=set)
    kill_cooldown_ms: int = 0
    kill_success_chance: float = 0.0
    max_kill_attempts: int = 0
    task_assignments: dict[str, list[Task]] = field(default_factory=dict)
    winner: Optional[Role] = None
    resolved_voting_round: int = 0
    events: list[Event] = field(default_factory=list)

    @property
    def phase_label(self) -> str:
        """Round-scoped phase name, e.g. ROUND_1_TASKS."""
        if self.phase in ROUND_PHASE_SET:
            return f"ROUND_{self.round}_{self.phase.value}"
        return self.phase.value

    def get_alive_players(self) -> list[Player]:
        """Return list of alive players in join order."""
        return [p for p in self.players.values() if p.alive]

    def get_player(self, player_id: str) -> Optional[Player]:
        """Return player by id or None."""
        return self.players.get(player_id)

    def get_impostor(self) -> Optional[Player]:
        if self.impostor_id is None:
            return None
        return self.players.get(self.impostor_id)


@dataclass(frozen=True)
class VoteResult:
    """Votes received by one target in the current round."""

    target_id: str
    votes: int


@dataclass(frozen=True)
class AddPlayerResult:
    player: Player
    already_joined: bool = False
    evicted: Optional[Player] = None


@dataclass(frozen=True)
class KillResult:
    """Outcome of a resolved kill attempt (hit or miss)."""

    success: bool
    target_id: str
    target_name: str
    message: str
    attempts_used: int
    attempts_left: int


@dataclass(frozen=True)
class VotingOutcome:
    results: list[VoteResult]
    majority: int
    eliminated: Optional[Player] = None

    @property
    def revealed_role(self) -> Optional[Role]:
        return self.eliminated.role if self.eliminated else None


@dataclass(frozen=True)
class WinCheck:
    game_ended: bool
    winner: Optional[Role] = None
