"""Pydantic request/response models for the API."""

from pydantic import BaseModel, Field, field_validator

from mafia.intents import ConversationKind, IntentKind, IntentSource

# Validation constants (no magic numbers in validation)
MAX_PLAYER_NAME_LENGTH = 50
MAX_ARGUMENT_LENGTH = 200


class IntentRequest(BaseModel):
    """Body for POST /intents: one parsed command or button click."""

    actor_id: str = Field(..., min_length=1)
    actor_name: str = Field(..., min_length=1, max_length=MAX_PLAYER_NAME_LENGTH)
    kind: IntentKind
    conversation_id: str = Field(..., min_length=1)
    conversation_kind: ConversationKind = Field(default=ConversationKind.GROUP)
    args: list[str] = Field(default_factory=list, description="Command arguments, joined with spaces")
    source: IntentSource = Field(default=IntentSource.COMMAND)

    @field_validator("actor_name")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("actor_name must not be blank")
        return v

    @field_validator("args")
    @classmethod
    def args_bounded(cls, v: list[str]) -> list[str]:
        if sum(len(a) for a in v) > MAX_ARGUMENT_LENGTH:
            raise ValueError(f"args must total at most {MAX_ARGUMENT_LENGTH} characters")
        return v


class OutcomeResponse(BaseModel):
    """Reply to an intent. A rejected command is ok=false, not an HTTP error."""

    ok: bool
    message: str
    error: str | None = Field(default=None, description="Error code when ok is false")
    data: dict = Field(default_factory=dict)


class PlayerPublic(BaseModel):
    """Player as shown to clients: role only revealed on death."""

    id: str
    name: str
    alive: bool
    completed_tasks: int = 0
    voted: bool = False
    role: str | None = Field(default=None, description="Only set when not alive (revealed on death)")


class EventPublic(BaseModel):
    kind: str
    round_index: int
    phase: str
    message: str
    player_id: str | None = None
    target_id: str | None = None


class GameStateResponse(BaseModel):
    """Public game state for GET /game."""

    phase: str
    phase_label: str
    round: int
    lobby_id: str | None = None
    origin_group_id: str | None = None
    players: list[PlayerPublic]
    events: list[EventPublic]
    time_remaining_ms: int | None = Field(default=None, description="Until the current phase deadline")
    join_time_remaining_ms: int | None = Field(default=None, description="Until the join window closes")


class VotePublic(BaseModel):
    target_id: str
    target_name: str
    votes: int


class VoteTallyResponse(BaseModel):
    round: int
    majority: int
    results: list[VotePublic]


class TaskPublic(BaseModel):
    """A task without its answer."""

    id: str
    type: str
    question: str
    completed: bool


class OutboundMessagePublic(BaseModel):
    kind: str
    conversation_id: str
    text: str
    actions: list[dict] = Field(default_factory=list)
    expires_at: int | None = None


def game_state_to_public(
    game,
    time_remaining_ms: int | None = None,
    join_time_remaining_ms: int | None = None,
) -> GameStateResponse:
    """Build public response from a Game snapshot; hide roles of alive players."""
    players_public = [
        PlayerPublic(
            id=p.id,
            name=p.name,
            alive=p.alive,
            completed_tasks=p.completed_tasks,
            voted=p.voted,
            role=p.role.value if p.role and not p.alive else None,
        )
        for p in game.players.values()
    ]
    events_public = [
        EventPublic(
            kind=e.kind.value,
            round_index=e.round_index,
            phase=e.phase.value,
            message=e.message,
            player_id=e.player_id,
            target_id=e.target_id,
        )
        for e in game.events
    ]
    return GameStateResponse(
        phase=game.phase.value,
        phase_label=game.phase_label,
        round=game.round,
        lobby_id=game.lobby_id,
        origin_group_id=game.origin_group_id,
        players=players_public,
        events=events_public,
        time_remaining_ms=time_remaining_ms,
        join_time_remaining_ms=join_time_remaining_ms,
    )
