"""
Phase driver: announces phases, paces task delivery and schedules the timers
that move the engine forward.

Every step here expects the caller to hold GameFlow.lock. Intents take it in
IntentHandler.handle; timer callbacks are wrapped with _locked so they take it
themselves. A timer that lost a race (its phase already advanced) sees a
different phase or round when it finally runs and does nothing.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from mafia.engine import LOBBY_PHASES, GameEngine
from mafia.errors import AlreadyActive, InvalidPhase, TransportFailure
from mafia.notifier import ActionButton, ActionMenu, Notifier
from mafia.rules import Phase, Role
from mafia.state import AddPlayerResult, KillResult
from mafia.timers import now_ms

logger = logging.getLogger(__name__)

JOIN_WINDOW_KEY = "join-window"
LOBBY_NAME = "Mafia Lobby"


def round_key(round_number: int, name: str) -> str:
    """Timer key scoped to one round, e.g. round-1-voting."""
    return f"round-{round_number}-{name}"


def _seconds(ms: int) -> int:
    return -(-ms // 1000)


class GameFlow:
    """Drives one game from lobby to cleanup on top of a GameEngine."""

    def __init__(self, engine: GameEngine, notifier: Notifier) -> None:
        self.engine = engine
        self.config = engine.config
        self.timers = engine.timers
        self.notifier = notifier
        self.lock = asyncio.Lock()

    # -- lobby -----------------------------------------------------------

    async def start_lobby(self, origin_group_id: str, starter_id: str, starter_name: str) -> AddPlayerResult:
        """Create the lobby group, seat the starter and open the join window."""
        if self.engine.is_active:
            raise AlreadyActive("A game is already in progress.")
        try:
            lobby_id = await self.notifier.create_group(origin_group_id, LOBBY_NAME)
        except Exception as e:
            logger.warning("Failed to create lobby group from %s: %s", origin_group_id, e)
            raise TransportFailure("Could not create the game lobby. Please try again.") from e
        self.engine.create_lobby(origin_group_id, lobby_id=lobby_id)
        join_deadline = self.engine.open_lobby()
        result = self.engine.add_player(starter_id, starter_name)
        await self._add_member(starter_id)

        await self._send_join_menu(
            f"🚀 MAFIA Game Lobby Created!\n\n"
            f"Up to {self.config.max_players} players may join within "
            f"{_seconds(self.config.join_window_duration_ms)} seconds."
        )
        await self._send_actions(
            lobby_id,
            ActionMenu(
                id=f"cancel-game-{now_ms()}",
                description="🎮 Lobby open. You can cancel the game before it starts:",
                actions=(ActionButton(id="cancel-game", label="❌ Cancel Game", style="danger"),),
                expires_at=join_deadline,
            ),
        )
        self.timers.schedule(
            JOIN_WINDOW_KEY,
            self.config.join_window_duration_ms,
            self._locked(self._on_join_window_closed),
        )
        return result

    async def join(self, player_id: str, name: str, replace: bool = False) -> AddPlayerResult:
        result = self.engine.add_player(player_id, name, replace=replace)
        if result.already_joined:
            return result
        await self._add_member(player_id)

        if result.evicted is not None:
            await self._send_direct(
                result.evicted.id,
                "⚠️ You were removed from the lobby to make room for a new player.\n\n"
                "You can join again if there's space.",
            )
            await self._send_lobby(f"⚠️ {result.evicted.name} was removed to make room for {name}.")

        players = self.engine.get_players()
        status = f"Players: {', '.join(p.name for p in players)} ({len(players)}/{self.config.max_players})"
        await self._send_join_menu(f"🚀 MAFIA LOBBY\n\n{status}")
        remaining = self.engine.join_time_remaining_ms()
        if remaining is not None:
            await self._send_lobby(f"⏰ Time remaining to start: {_seconds(remaining)} seconds\n\n{status}")

        if len(players) >= self.config.max_players:
            self.timers.cancel(JOIN_WINDOW_KEY)
            await self.start_game()
        return result

    async def cancel_game(self) -> None:
        if not self.engine.is_active:
            raise InvalidPhase("There is no game to cancel.")
        if self.engine.phase not in LOBBY_PHASES:
            raise InvalidPhase("Cannot cancel game. Game has already started.")
        await self._send_lobby("❌ Game cancelled by player.")
        self.engine.cleanup()

    async def _on_join_window_closed(self) -> None:
        if self.engine.phase != Phase.WAITING_FOR_PLAYERS:
            return
        if self.engine.can_start_game():
            await self.start_game()
            return
        await self._send_lobby("Not enough players joined. Game cancelled.")
        self.engine.cleanup()

    # -- rounds ----------------------------------------------------------

    async def start_game(self) -> None:
        players = self.engine.assign_roles()
        for p in players:
            if p.role == Role.IMPOSTOR:
                text = "🔪 You are the MAFIA.\n\nEliminate the town without getting voted out. Fake your tasks."
            else:
                text = "🛠️ You are TOWN.\n\nComplete your tasks and vote out the mafia."
            await self._send_direct(p.id, text)
        await self._send_lobby("Roles assigned.\n\nRound 1 is starting.")
        self.engine.start_round(1)
        await self._start_task_phase(1)

    async def _start_task_phase(self, round_number: int) -> None:
        window = self.config.task_window_ms
        if self.config.merge_task_and_kill:
            title = f"🛠️🔪 Round {round_number} — Task & Kill Phase"
        else:
            title = f"🛠️ Round {round_number} — Task Phase"
        await self._send_lobby(
            f"{title}\n\n"
            f"Complete your assigned tasks: /task <answer>\n"
            f"Phase duration: {_seconds(window)} seconds."
        )
        self.timers.schedule(
            round_key(round_number, "tasks"),
            window,
            self._locked(self._on_task_phase_timeout, round_number),
        )
        self._schedule_task_dispatch(round_number, window)
        if self.config.merge_task_and_kill:
            await self._brief_impostor(round_number)

    def _schedule_task_dispatch(self, round_number: int, window_ms: int) -> None:
        """Spread task announcements so the last one goes out before the dispatch buffer."""
        queue = [
            (p.id, index)
            for p in self.engine.get_alive_players()
            for index in range(self.config.tasks_per_player)
        ]
        if not queue:
            return
        available = max(0, window_ms - self.config.task_dispatch_buffer_ms)
        interval = available // len(queue)
        for i, (player_id, index) in enumerate(queue):
            self.timers.schedule(
                round_key(round_number, f"dispatch-{i}"),
                i * interval,
                self._locked(self._dispatch_task, round_number, player_id, index),
                record_deadline=False,
            )

    async def _dispatch_task(self, round_number: int, player_id: str, index: int) -> None:
        if self.engine.round != round_number or not self.engine.is_task_phase():
            return
        player = self.engine.get_player(player_id)
        task = self.engine.get_task_for_player(player_id, index)
        if player is None or not player.alive or task is None:
            return
        await self._send_lobby(
            f"@{player.name}\n\n"
            f"🛠️ Task {index + 1}/{self.config.tasks_per_player}:\n\n"
            f"{task.question}\n\n"
            f"Submit your answer: /task <answer>"
        )

    async def _brief_impostor(self, round_number: int) -> None:
        impostor = self.engine.get_player(self.engine.impostor_id or "")
        if impostor is None or not impostor.alive:
            return
        if self.config.merge_task_and_kill:
            heading = f"Round {round_number} — Task & Kill Phase\n\nYou must fake complete tasks while also attempting kills."
            window = self.config.task_window_ms
        else:
            heading = f"Round {round_number} — Kill Phase"
            window = self.config.kill_phase_duration_ms
        await self._send_direct(
            impostor.id,
            f"{heading}\n\n"
            f"Success chance: {self.config.kill_success_chance * 100:.0f}%\n"
            f"Max attempts: {self.config.max_kill_attempts} (used: {impostor.kill_attempts})\n"
            f"Cooldown: {_seconds(self.config.kill_cooldown_ms)} seconds per attempt\n"
            f"Phase duration: {_seconds(window)} seconds\n\n"
            f"Select a target using the buttons below, or send: kill <name>",
        )
        targets = self.engine.kill_targets()
        if not targets:
            return
        await self._send_actions(
            impostor.id,
            ActionMenu(
                id=f"kill-menu-{round_number}-{now_ms()}",
                description="🔪 Select a target to kill:\n\nClick a button below to attempt a kill.",
                actions=tuple(
                    ActionButton(id=f"kill-{p.id}", label=f"🔪 {p.name}", style="danger")
                    for p in targets
                ),
                expires_at=self.engine.current_phase_deadline,
            ),
        )

    async def _on_task_phase_timeout(self, round_number: int) -> None:
        if self.engine.round != round_number or self.engine.phase != Phase.TASKS:
            return
        self.engine.advance_phase()
        if self.engine.phase == Phase.KILL:
            await self._start_kill_phase(round_number)
        else:
            await self._start_discussion(round_number)

    async def _start_kill_phase(self, round_number: int) -> None:
        await self._send_lobby(
            f"🔪 Round {round_number} — Kill Phase\n\n"
            f"The mafia is on the hunt. {_seconds(self.config.kill_phase_duration_ms)} seconds."
        )
        self.timers.schedule(
            round_key(round_number, "kill"),
            self.config.kill_phase_duration_ms,
            self._locked(self._on_kill_phase_timeout, round_number),
        )
        await self._brief_impostor(round_number)

    async def _on_kill_phase_timeout(self, round_number: int) -> None:
        if self.engine.round != round_number or self.engine.phase != Phase.KILL:
            return
        self.engine.advance_phase()
        await self._start_discussion(round_number)

    async def on_kill(self, result: KillResult) -> None:
        """After a successful kill: announce, check the win, cut the kill window short."""
        if not result.success:
            return
        await self._send_lobby(result.message)
        win = self.engine.check_win_condition()
        if win.game_ended:
            await self._end_game(win.winner)
            return

        round_number = self.engine.round
        self.timers.cancel(round_key(round_number, "tasks"))
        self.timers.cancel(round_key(round_number, "kill"))
        self.timers.cancel_prefix(round_key(round_number, "dispatch-"))
        self.timers.schedule(
            round_key(round_number, "kill-advance"),
            self.config.kill_advance_delay_ms,
            self._locked(self._on_kill_advance, round_number, self.engine.phase),
        )

    async def _on_kill_advance(self, round_number: int, phase: Phase) -> None:
        if self.engine.round != round_number or self.engine.phase != phase:
            return
        while self.engine.phase != Phase.DISCUSSION:
            self.engine.advance_phase()
        await self._start_discussion(round_number)

    async def _start_discussion(self, round_number: int) -> None:
        await self._send_lobby(
            f"💬 Discussion Phase — {_seconds(self.config.discussion_phase_duration_ms)} seconds.\n\nTalk freely."
        )
        self.timers.schedule(
            round_key(round_number, "discussion"),
            self.config.discussion_phase_duration_ms,
            self._locked(self._on_discussion_timeout, round_number),
        )

    async def _on_discussion_timeout(self, round_number: int) -> None:
        if self.engine.round != round_number or self.engine.phase != Phase.DISCUSSION:
            return
        self.engine.advance_phase()
        await self._start_voting(round_number)

    async def _start_voting(self, round_number: int) -> None:
        await self._send_lobby(
            f"🗳️ Voting Phase — {_seconds(self.config.voting_phase_duration_ms)} seconds.\n\n"
            f"Vote to eliminate a player: /vote <name>"
        )
        self.timers.schedule(
            round_key(round_number, "voting"),
            self.config.voting_phase_duration_ms,
            self._locked(self._on_voting_timeout, round_number),
        )
        lobby_id = self.engine.lobby_id
        if lobby_id:
            await self._send_actions(
                lobby_id,
                ActionMenu(
                    id=f"vote-menu-{round_number}-{now_ms()}",
                    description="🗳️ Vote to eliminate a player:",
                    actions=tuple(
                        ActionButton(id=f"vote-{p.id}", label=f"🗳️ {p.name}")
                        for p in self.engine.get_alive_players()
                    ),
                    expires_at=self.engine.current_phase_deadline,
                ),
            )

    async def on_vote(self) -> None:
        """Resolve voting early once every alive player has voted."""
        if self.engine.phase != Phase.VOTING:
            return
        if all(p.voted for p in self.engine.get_alive_players()):
            round_number = self.engine.round
            self.timers.cancel(round_key(round_number, "voting"))
            await self._process_voting(round_number)

    async def _on_voting_timeout(self, round_number: int) -> None:
        if self.engine.round != round_number or self.engine.phase != Phase.VOTING:
            return
        await self._process_voting(round_number)

    async def _process_voting(self, round_number: int) -> None:
        outcome = self.engine.process_voting()
        if not outcome.results:
            await self._send_lobby("No votes cast. No one eliminated.")
        elif outcome.eliminated is not None:
            if outcome.revealed_role == Role.IMPOSTOR:
                emoji, role_text = "🔥", "MAFIA"
            else:
                emoji, role_text = "❌", "TOWN"
            await self._send_lobby(
                f"{emoji} {outcome.eliminated.name} was eliminated.\n\nThey were a {role_text}."
            )
        else:
            await self._send_lobby("Tie or no majority. No one eliminated.")

        win = self.engine.check_win_condition()
        if win.game_ended:
            await self._end_game(win.winner)
            return
        self.engine.advance_phase()
        if self.engine.phase == Phase.TASKS:
            await self._start_task_phase(self.engine.round)

    async def _end_game(self, winner: Optional[Role]) -> None:
        impostor = self.engine.get_player(self.engine.impostor_id or "")
        crew_left = any(p.role == Role.CREW for p in self.engine.get_alive_players())
        self.engine.end_game(winner)

        if winner == Role.CREW:
            text = "🏆 TOWN WINS! Mafia was eliminated."
        elif crew_left:
            text = f"🔥 MAFIA WINS! Survived all {self.config.max_rounds} rounds."
        else:
            text = "🔥 MAFIA WINS! The town has fallen."
        if impostor is not None:
            text += f"\n\nThe mafia was {impostor.name}."
        await self._send_lobby(text)
        self.engine.cleanup()

    # -- helpers ---------------------------------------------------------

    def _locked(self, step: Callable[..., Awaitable[None]], *args) -> Callable[[], Awaitable[None]]:
        """Wrap a flow step as a timer callback that holds the game lock."""
        async def run() -> None:
            async with self.lock:
                await step(*args)
        return run

    async def _send_join_menu(self, message: str) -> None:
        origin = self.engine.origin_group_id
        if not origin:
            return
        await self._send_actions(
            origin,
            ActionMenu(
                id=f"join-lobby-{now_ms()}",
                description=message,
                actions=(ActionButton(id="join-game", label="🚀 Join Game"),),
                expires_at=self.engine.join_deadline,
            ),
        )

    async def _send_lobby(self, text: str) -> None:
        lobby_id = self.engine.lobby_id
        if not lobby_id:
            return
        try:
            await self.notifier.send_group(lobby_id, text)
        except Exception as e:
            logger.warning("Failed to send to lobby %s: %s", lobby_id, e)

    async def _send_direct(self, player_id: str, text: str) -> None:
        try:
            await self.notifier.send_direct(player_id, text)
        except Exception as e:
            logger.warning("Failed to send DM to %s: %s", player_id, e)

    async def _send_actions(self, conversation_id: str, menu: ActionMenu) -> None:
        try:
            await self.notifier.send_actions(conversation_id, menu)
        except Exception as e:
            logger.warning("Failed to send actions to %s, falling back to text: %s", conversation_id, e)
            try:
                if conversation_id in (self.engine.lobby_id, self.engine.origin_group_id):
                    await self.notifier.send_group(conversation_id, menu.description)
                else:
                    await self.notifier.send_direct(conversation_id, menu.description)
            except Exception as fallback_error:
                logger.warning("Failed to send fallback text to %s: %s", conversation_id, fallback_error)

    async def _add_member(self, player_id: str) -> None:
        lobby_id = self.engine.lobby_id
        if not lobby_id:
            return
        try:
            await self.notifier.add_members(lobby_id, [player_id])
        except Exception as e:
            # Member might already be in the group
            logger.debug("Could not add %s to lobby %s: %s", player_id, lobby_id, e)
