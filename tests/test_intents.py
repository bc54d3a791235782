"""Tests for intent routing and conversation rules."""

import asyncio

from mafia.config import GameConfig
from mafia.engine import GameEngine
from mafia.errors import ErrorCode
from mafia.flow import GameFlow
from mafia.intents import ConversationKind, Intent, IntentHandler, IntentKind, IntentSource
from mafia.notifier import OutboxNotifier
from mafia.rules import Phase

DIRECT = ConversationKind.DIRECT
NAMES = {"p0": "Alice", "p1": "Bob", "p2": "Carol", "p3": "Dave"}


class FakeClock:
    def __init__(self, now: int = 1_000_000):
        self.now = now

    def __call__(self) -> int:
        return self.now


def _handler(**overrides) -> IntentHandler:
    engine = GameEngine(config=GameConfig(**overrides), clock=FakeClock(), seed=5)
    return IntentHandler(GameFlow(engine, OutboxNotifier()))


def _intent(actor: str, kind: IntentKind, conversation: str, *args: str, **kwargs) -> Intent:
    return Intent(
        actor_id=actor,
        actor_name=NAMES.get(actor, actor),
        kind=kind,
        conversation_id=conversation,
        args=args,
        **kwargs,
    )


async def _started(handler: IntentHandler) -> str:
    """Start a 3-player game. Returns the lobby id."""
    outcome = await handler.handle(_intent("p0", IntentKind.START, "origin"))
    assert outcome.ok
    lobby = outcome.data["lobby_id"]
    for pid in ("p1", "p2"):
        assert (await handler.handle(_intent(pid, IntentKind.JOIN, lobby))).ok
    return lobby


def _crew(handler: IntentHandler) -> list[str]:
    return [p.id for p in handler.engine.get_players() if p.id != handler.engine.impostor_id]


def test_start_creates_lobby():
    async def scenario():
        handler = _handler()
        outcome = await handler.handle(_intent("p0", IntentKind.START, "origin"))
        assert outcome.ok
        assert outcome.error is None
        assert outcome.data["lobby_id"] == handler.engine.lobby_id
        assert handler.engine.phase == Phase.WAITING_FOR_PLAYERS

        again = await handler.handle(_intent("p1", IntentKind.START, "origin"))
        assert not again.ok
        assert again.error == ErrorCode.ALREADY_ACTIVE

    asyncio.run(scenario())


def test_start_and_join_rejected_in_dm():
    async def scenario():
        handler = _handler()
        outcome = await handler.handle(_intent("p0", IntentKind.START, "p0", conversation_kind=DIRECT))
        assert outcome.error == ErrorCode.WRONG_CONVERSATION
        assert handler.engine.phase == Phase.IDLE

        await handler.handle(_intent("p0", IntentKind.START, "origin"))
        outcome = await handler.handle(_intent("p1", IntentKind.JOIN, "p1", conversation_kind=DIRECT))
        assert outcome.error == ErrorCode.WRONG_CONVERSATION

    asyncio.run(scenario())


def test_join_command_only_inside_lobby():
    async def scenario():
        handler = _handler()
        await handler.handle(_intent("p0", IntentKind.START, "origin"))
        outcome = await handler.handle(_intent("p1", IntentKind.JOIN, "origin"))
        assert outcome.error == ErrorCode.WRONG_CONVERSATION

        outcome = await handler.handle(_intent("p1", IntentKind.JOIN, handler.engine.lobby_id))
        assert outcome.ok
        assert "Players: Alice, Bob (2/6)" in outcome.message

        again = await handler.handle(_intent("p1", IntentKind.JOIN, handler.engine.lobby_id))
        assert again.ok
        assert again.data["already_joined"] is True

    asyncio.run(scenario())


def test_join_button_works_from_origin_and_replaces():
    async def scenario():
        handler = _handler(max_players=3)
        await handler.handle(_intent("p0", IntentKind.START, "origin"))
        handler.engine.add_player("p1", "Bob")
        handler.engine.add_player("p2", "Carol")
        outcome = await handler.handle(_intent("p3", IntentKind.JOIN, "origin", source=IntentSource.BUTTON))
        assert outcome.ok
        assert outcome.data["evicted"] == "p0"
        assert handler.engine.phase == Phase.TASKS

    asyncio.run(scenario())


def test_join_button_from_unrelated_group():
    async def scenario():
        handler = _handler()
        await handler.handle(_intent("p0", IntentKind.START, "origin"))
        outcome = await handler.handle(_intent("p1", IntentKind.JOIN, "elsewhere", source=IntentSource.BUTTON))
        assert outcome.error == ErrorCode.WRONG_CONVERSATION

    asyncio.run(scenario())


def test_full_lobby_rejects_command_join():
    async def scenario():
        handler = _handler(max_players=3)
        await handler.handle(_intent("p0", IntentKind.START, "origin"))
        lobby = handler.engine.lobby_id
        handler.engine.add_player("p1", "Bob")
        handler.engine.add_player("p2", "Carol")
        outcome = await handler.handle(_intent("p3", IntentKind.JOIN, lobby))
        assert outcome.error == ErrorCode.LOBBY_FULL
        assert len(handler.engine.get_players()) == 3

    asyncio.run(scenario())


def test_task_rules():
    async def scenario():
        handler = _handler(max_players=3)
        lobby = await _started(handler)
        player = _crew(handler)[0]

        outcome = await handler.handle(_intent(player, IntentKind.TASK, player, "1", conversation_kind=DIRECT))
        assert outcome.error == ErrorCode.WRONG_CONVERSATION

        outcome = await handler.handle(_intent(player, IntentKind.TASK, lobby))
        assert outcome.error == ErrorCode.MISSING_ARGUMENT

        outcome = await handler.handle(_intent(player, IntentKind.TASK, lobby, "definitely", "wrong"))
        assert outcome.ok
        assert outcome.data["correct"] is False

        task = handler.engine.current_task(player)
        outcome = await handler.handle(_intent(player, IntentKind.TASK, lobby, *task.answer.split()))
        assert outcome.ok
        assert outcome.message == "✅ Task completed!"
        assert outcome.data["correct"] is True
        assert handler.engine.get_player(player).completed_tasks == 1

    asyncio.run(scenario())


def test_task_from_stranger():
    async def scenario():
        handler = _handler(max_players=3)
        lobby = await _started(handler)
        outcome = await handler.handle(_intent("p9", IntentKind.TASK, lobby, "1234"))
        assert outcome.error == ErrorCode.PLAYER_NOT_FOUND

    asyncio.run(scenario())


def test_kill_only_in_dm():
    async def scenario():
        handler = _handler(max_players=3)
        lobby = await _started(handler)
        impostor = handler.engine.impostor_id
        outcome = await handler.handle(_intent(impostor, IntentKind.KILL, lobby, "Bob"))
        assert outcome.error == ErrorCode.WRONG_CONVERSATION

    asyncio.run(scenario())


def test_kill_without_target_lists_targets():
    async def scenario():
        handler = _handler(max_players=3)
        await _started(handler)
        impostor = handler.engine.impostor_id
        outcome = await handler.handle(_intent(impostor, IntentKind.KILL, impostor, conversation_kind=DIRECT))
        assert outcome.ok
        assert outcome.data["targets"] == _crew(handler)
        assert "Available targets" in outcome.message

    asyncio.run(scenario())


def test_kill_and_cooldown():
    async def scenario():
        handler = _handler(max_players=3, kill_success_chance=0.0)
        await _started(handler)
        impostor = handler.engine.impostor_id
        target = handler.engine.get_player(_crew(handler)[0]).name
        outcome = await handler.handle(_intent(impostor, IntentKind.KILL, impostor, target, conversation_kind=DIRECT))
        assert outcome.ok
        assert outcome.data["success"] is False
        assert outcome.data["attempts_left"] == 2

        outcome = await handler.handle(_intent(impostor, IntentKind.KILL, impostor, target, conversation_kind=DIRECT))
        assert not outcome.ok
        assert outcome.error == ErrorCode.ON_COOLDOWN
        assert outcome.data["remaining_ms"] == handler.engine.config.kill_cooldown_ms

    asyncio.run(scenario())


def test_crew_cannot_kill():
    async def scenario():
        handler = _handler(max_players=3)
        await _started(handler)
        crew = _crew(handler)
        outcome = await handler.handle(_intent(crew[0], IntentKind.KILL, crew[0], crew[1], conversation_kind=DIRECT))
        assert outcome.error == ErrorCode.NOT_AUTHORIZED

    asyncio.run(scenario())


def test_successful_kill_schedules_discussion():
    async def scenario():
        handler = _handler(max_players=3, kill_success_chance=1.0)
        await _started(handler)
        impostor = handler.engine.impostor_id
        victim = _crew(handler)[0]
        outcome = await handler.handle(_intent(impostor, IntentKind.KILL, impostor, victim, conversation_kind=DIRECT))
        assert outcome.data["success"] is True
        assert not handler.engine.get_player(victim).alive
        assert handler.flow.timers.active("round-1-kill-advance")

    asyncio.run(scenario())


def test_vote_rules():
    async def scenario():
        handler = _handler(max_players=3, max_rounds=2)
        lobby = await _started(handler)
        engine = handler.engine
        engine.advance_phase()
        engine.advance_phase()
        assert engine.phase == Phase.VOTING
        a, b = _crew(handler)

        outcome = await handler.handle(_intent(a, IntentKind.VOTE, lobby))
        assert outcome.error == ErrorCode.MISSING_ARGUMENT

        outcome = await handler.handle(_intent(a, IntentKind.VOTE, lobby, "nobody"))
        assert outcome.error == ErrorCode.TARGET_NOT_FOUND

        target_name = engine.get_player(b).name
        outcome = await handler.handle(_intent(a, IntentKind.VOTE, lobby, target_name))
        assert outcome.ok
        assert outcome.data["counted"] is True
        assert target_name in outcome.message

        outcome = await handler.handle(_intent(a, IntentKind.VOTE, lobby, engine.impostor_id))
        assert outcome.ok
        assert outcome.data["counted"] is False
        assert [(r.target_id, r.votes) for r in engine.get_vote_results()] == [(b, 1)]

    asyncio.run(scenario())


def test_last_vote_resolves_round():
    async def scenario():
        handler = _handler(max_players=3, max_rounds=1)
        lobby = await _started(handler)
        engine = handler.engine
        engine.advance_phase()
        engine.advance_phase()
        a, b = _crew(handler)
        impostor = engine.impostor_id
        a_name = engine.get_player(a).name
        for voter, target in ((a, b), (b, a), (impostor, a)):
            assert (await handler.handle(_intent(voter, IntentKind.VOTE, lobby, target))).ok
        texts = handler.flow.notifier.texts(lobby)
        assert f"❌ {a_name} was eliminated.\n\nThey were a TOWN." in texts
        # single round: the impostor survived the vote
        assert texts[-1].startswith("🔥 MAFIA WINS! Survived all 1 rounds.")
        assert engine.phase == Phase.IDLE
        assert engine.get_players() == []

    asyncio.run(scenario())


def test_cancel_rules():
    async def scenario():
        handler = _handler(max_players=3)
        outcome = await handler.handle(_intent("p0", IntentKind.CANCEL, "origin"))
        assert outcome.error == ErrorCode.INVALID_PHASE

        await handler.handle(_intent("p0", IntentKind.START, "origin"))
        outcome = await handler.handle(_intent("p0", IntentKind.CANCEL, handler.engine.lobby_id))
        assert outcome.ok
        assert handler.engine.phase == Phase.IDLE

        lobby = await _started(handler)
        outcome = await handler.handle(_intent("p0", IntentKind.CANCEL, lobby))
        assert outcome.error == ErrorCode.INVALID_PHASE
        assert handler.engine.phase == Phase.TASKS

    asyncio.run(scenario())


class NoGroupsNotifier(OutboxNotifier):
    async def create_group(self, origin_group_id, name):
        raise ConnectionError("group creation refused")


def test_start_reports_lobby_creation_failure():
    async def scenario():
        engine = GameEngine(config=GameConfig(), clock=FakeClock(), seed=5)
        handler = IntentHandler(GameFlow(engine, NoGroupsNotifier()))
        outcome = await handler.handle(_intent("p0", IntentKind.START, "origin"))
        assert not outcome.ok
        assert outcome.error == ErrorCode.TRANSPORT_FAILED
        assert "lobby" in outcome.message
        assert engine.phase == Phase.IDLE
        assert not engine.is_active

    asyncio.run(scenario())
