"""FastAPI app: submit intents, read game state, drain outbound messages."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from api import game_store
from api.models import (
    GameStateResponse,
    IntentRequest,
    OutboundMessagePublic,
    OutcomeResponse,
    TaskPublic,
    VotePublic,
    VoteTallyResponse,
    game_state_to_public,
)
from mafia.config import GameConfig
from mafia.intents import Intent

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    config = GameConfig.from_env()
    game_store.create(config)
    logger.info("Game runtime ready (max_players=%s, max_rounds=%s)", config.max_players, config.max_rounds)
    yield
    game_store.reset()


app = FastAPI(title="Group Mafia API", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _runtime() -> game_store.Runtime:
    runtime = game_store.get()
    if runtime is None:
        raise HTTPException(503, "Game runtime not started")
    return runtime


@app.get("/health", tags=["System"], summary="Health check")
def health():
    return {"status": "ok"}


@app.get("/game", response_model=GameStateResponse, tags=["Game"], summary="Get game state")
async def get_game():
    """Current game with roles hidden for alive players."""
    engine = _runtime().engine
    return game_state_to_public(
        engine.snapshot(),
        time_remaining_ms=engine.time_remaining_ms(),
        join_time_remaining_ms=engine.join_time_remaining_ms(),
    )


@app.get("/game/votes", response_model=VoteTallyResponse, tags=["Game"], summary="Current vote tally")
async def get_votes():
    engine = _runtime().engine
    results = []
    for r in engine.get_vote_results():
        target = engine.get_player(r.target_id)
        results.append(
            VotePublic(target_id=r.target_id, target_name=target.name if target else r.target_id, votes=r.votes)
        )
    return VoteTallyResponse(round=engine.round, majority=engine.majority_threshold(), results=results)


@app.get(
    "/game/players/{player_id}/tasks",
    response_model=list[TaskPublic],
    tags=["Game"],
    summary="Tasks assigned to a player this round",
)
async def get_player_tasks(player_id: str):
    engine = _runtime().engine
    if engine.get_player(player_id) is None:
        raise HTTPException(404, "Player not found")
    return [
        TaskPublic(id=t.id, type=t.type.value, question=t.question, completed=t.completed)
        for t in engine.get_tasks_for_player(player_id)
    ]


@app.post("/intents", response_model=OutcomeResponse, tags=["Game"], summary="Submit a player intent")
async def submit_intent(body: IntentRequest):
    """Run one command. Rejections come back as ok=false with an error code."""
    intent = Intent(
        actor_id=body.actor_id,
        actor_name=body.actor_name,
        kind=body.kind,
        conversation_id=body.conversation_id,
        conversation_kind=body.conversation_kind,
        args=tuple(body.args),
        source=body.source,
    )
    outcome = await _runtime().handler.handle(intent)
    return OutcomeResponse(
        ok=outcome.ok,
        message=outcome.message,
        error=outcome.error.value if outcome.error else None,
        data=outcome.data,
    )


@app.get("/outbox", response_model=list[OutboundMessagePublic], tags=["Transport"], summary="Drain outbound messages")
async def drain_outbox():
    """Return and forget every message the game asked the transport to deliver."""
    drained = []
    for m in _runtime().outbox.drain():
        drained.append(
            OutboundMessagePublic(
                kind=m.kind,
                conversation_id=m.conversation_id,
                text=m.text,
                actions=[{"id": a.id, "label": a.label, "style": a.style} for a in m.menu.actions] if m.menu else [],
                expires_at=m.menu.expires_at if m.menu else None,
            )
        )
    return drained


@app.get("/settings/config", response_model=dict, tags=["Settings"], summary="Get game configuration")
def get_config():
    """Return the rule values this server runs with."""
    return _runtime().engine.config.to_dict()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("api.main:app", host="0.0.0.0", port=8000, reload=False)
