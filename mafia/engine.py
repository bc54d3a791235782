"""Game engine: the round state machine. No I/O, no waiting."""

import copy
import logging
import math
import random
import uuid
from typing import Callable, Optional

from mafia.config import GameConfig
from mafia.errors import (
    AlreadyActive,
    AlreadyAssigned,
    AttemptsExhausted,
    InvalidPhase,
    LobbyFull,
    NotAuthorized,
    OnCooldown,
    PlayerNotFound,
    TargetNotFound,
)
from mafia.rules import MERGED_ROUND_PHASES, ROUND_PHASES, Phase, Role
from mafia.state import (
    AddPlayerResult,
    Event,
    EventKind,
    Game,
    KillResult,
    Player,
    Task,
    VoteResult,
    VotingOutcome,
    WinCheck,
)
from mafia.tasks import generate_task, validate_answer
from mafia.timers import PhaseTimers, now_ms

logger = logging.getLogger(__name__)

LOBBY_PHASES = (Phase.LOBBY_CREATED, Phase.WAITING_FOR_PLAYERS)


class GameEngine:
    """
    Owns the one active Game. All mutation goes through these methods; readers
    get copies. Rejected commands raise a GameError subclass.

    rng drives role assignment, task generation and kill draws; pass a seeded
    random.Random (or seed) for reproducible games.
    """

    def __init__(
        self,
        config: Optional[GameConfig] = None,
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], int]] = None,
        timers: Optional[PhaseTimers] = None,
        seed: Optional[int] = None,
    ) -> None:
        self.config = config or GameConfig()
        self._rng = rng or random.Random(seed)
        self._clock = clock or now_ms
        self._game = Game()
        self.timers = timers or PhaseTimers(clock=self._clock)
        self.timers.bind(self._set_phase_deadline)

    # -- read-only views -------------------------------------------------

    @property
    def phase(self) -> Phase:
        return self._game.phase

    @property
    def round(self) -> int:
        return self._game.round

    @property
    def phase_label(self) -> str:
        return self._game.phase_label

    @property
    def lobby_id(self) -> Optional[str]:
        return self._game.lobby_id

    @property
    def origin_group_id(self) -> Optional[str]:
        return self._game.origin_group_id

    @property
    def impostor_id(self) -> Optional[str]:
        return self._game.impostor_id

    @property
    def current_phase_deadline(self) -> Optional[int]:
        return self._game.current_phase_deadline

    @property
    def join_deadline(self) -> Optional[int]:
        return self._game.join_deadline

    @property
    def is_active(self) -> bool:
        return self._game.phase != Phase.IDLE

    def snapshot(self) -> Game:
        """Deep copy of the whole game."""
        return copy.deepcopy(self._game)

    def get_player(self, player_id: str) -> Optional[Player]:
        player = self._game.get_player(player_id)
        return copy.copy(player) if player else None

    def get_players(self) -> list[Player]:
        """All players in join order, eliminated ones included."""
        return [copy.copy(p) for p in self._game.players.values()]

    def get_alive_players(self) -> list[Player]:
        return [copy.copy(p) for p in self._game.get_alive_players()]

    def find_player(self, ref: str) -> Optional[Player]:
        """Resolve ref against id or display name; None if unknown or ambiguous."""
        try:
            return copy.copy(self._resolve(ref))
        except TargetNotFound:
            return None

    def kill_targets(self) -> list[Player]:
        """Alive players the impostor may target."""
        return [
            copy.copy(p)
            for p in self._game.get_alive_players()
            if p.id != self._game.impostor_id
        ]

    def is_task_phase(self) -> bool:
        return self._game.phase == Phase.TASKS

    def is_kill_phase(self) -> bool:
        if self._game.phase == Phase.KILL:
            return True
        return self._game.phase == Phase.TASKS and self.config.merge_task_and_kill

    def time_remaining_ms(self) -> Optional[int]:
        deadline = self._game.current_phase_deadline
        if deadline is None:
            return None
        return max(0, deadline - self._clock())

    def join_time_remaining_ms(self) -> Optional[int]:
        deadline = self._game.join_deadline
        if deadline is None:
            return None
        return max(0, deadline - self._clock())

    def round_phases(self) -> tuple[Phase, ...]:
        return MERGED_ROUND_PHASES if self.config.merge_task_and_kill else ROUND_PHASES

    # -- lobby -----------------------------------------------------------

    def create_lobby(self, origin_group_id: str, lobby_id: Optional[str] = None) -> str:
        """Start a fresh game from origin_group_id. Returns the lobby id."""
        if self.is_active:
            raise AlreadyActive("A game is already in progress.")
        self._game = Game(
            phase=Phase.LOBBY_CREATED,
            origin_group_id=origin_group_id,
            lobby_id=lobby_id or f"lobby-{uuid.uuid4().hex[:12]}",
            kill_cooldown_ms=self.config.kill_cooldown_ms,
            kill_success_chance=self.config.kill_success_chance,
            max_kill_attempts=self.config.max_kill_attempts,
        )
        self._emit(EventKind.LOBBY_CREATED, f"Lobby created from {origin_group_id}.")
        logger.info("Lobby %s created from %s", self._game.lobby_id, origin_group_id)
        return self._game.lobby_id

    def open_lobby(self, join_window_ms: Optional[int] = None) -> int:
        """Start accepting players. Returns the join deadline (epoch ms)."""
        self._require_phase(Phase.LOBBY_CREATED, "The lobby is not waiting to open.")
        window = self.config.join_window_duration_ms if join_window_ms is None else join_window_ms
        self._game.join_deadline = self._clock() + window
        self._set_phase(Phase.WAITING_FOR_PLAYERS)
        return self._game.join_deadline

    def add_player(self, player_id: str, name: str, replace: bool = False) -> AddPlayerResult:
        """
        Add a player to the lobby. Joining twice is a no-op success. When the
        lobby is full, replace=True evicts the first-joined player instead of
        failing with LobbyFull.
        """
        self._require_phase(
            Phase.WAITING_FOR_PLAYERS,
            "Cannot join at this time. The game may be full or already in progress.",
        )
        players = self._game.players
        existing = players.get(player_id)
        if existing is not None:
            return AddPlayerResult(player=copy.copy(existing), already_joined=True)

        evicted: Optional[Player] = None
        if len(players) >= self.config.max_players:
            if not replace:
                raise LobbyFull(f"The lobby is full ({self.config.max_players} players).")
            first_id = next(iter(players))
            evicted = players.pop(first_id)
            self._emit(
                EventKind.PLAYER_REMOVED,
                f"{evicted.name} was removed to make room for {name}.",
                player_id=evicted.id,
            )

        player = Player(id=player_id, name=name)
        players[player_id] = player
        self._emit(EventKind.PLAYER_JOINED, f"{name} joined.", player_id=player_id)
        return AddPlayerResult(player=copy.copy(player), evicted=evicted)

    def remove_player(self, player_id: str) -> Player:
        if self._game.phase not in LOBBY_PHASES:
            raise InvalidPhase("Players can only leave before the game starts.")
        player = self._game.players.pop(player_id, None)
        if player is None:
            raise PlayerNotFound(player_id)
        self._emit(EventKind.PLAYER_REMOVED, f"{player.name} left.", player_id=player_id)
        return player

    def can_start_game(self) -> bool:
        return (
            self._game.phase == Phase.WAITING_FOR_PLAYERS
            and len(self._game.get_alive_players()) >= self.config.min_players_to_start
        )

    def assign_roles(self) -> list[Player]:
        """Pick exactly one impostor uniformly at random; everyone else is crew."""
        if self._game.impostor_id is not None:
            raise AlreadyAssigned("Roles have already been assigned.")
        self._require_phase(Phase.WAITING_FOR_PLAYERS, "Roles can only be assigned from the lobby.")
        if not self.can_start_game():
            raise InvalidPhase(
                f"At least {self.config.min_players_to_start} players are needed to start."
            )
        alive = self._game.get_alive_players()
        impostor = self._rng.choice(alive)
        for p in alive:
            p.role = Role.IMPOSTOR if p.id == impostor.id else Role.CREW
        self._game.impostor_id = impostor.id
        self._game.join_deadline = None
        self._emit(EventKind.ROLES_ASSIGNED, f"Roles assigned to {len(alive)} players.")
        self._set_phase(Phase.ASSIGN_ROLES)
        return [copy.copy(p) for p in alive]

    # -- rounds ----------------------------------------------------------

    def start_round(self, round_number: int) -> None:
        """Enter round_number's task phase with fresh tasks for every alive player."""
        game = self._game
        first_round = game.phase == Phase.ASSIGN_ROLES and round_number == 1
        next_round = game.phase == Phase.VOTING and round_number == game.round + 1
        if not (first_round or next_round):
            raise InvalidPhase(f"Round {round_number} cannot start from {game.phase_label}.")
        if round_number > self.config.max_rounds:
            raise InvalidPhase(f"The game has only {self.config.max_rounds} rounds.")

        game.round = round_number
        game.task_assignments = {}
        for p in game.get_alive_players():
            game.task_assignments[p.id] = [
                generate_task(self._rng) for _ in range(self.config.tasks_per_player)
            ]
            # kill_attempts is a per-game budget and carries over
            p.voted = False
            p.vote_target = None
            p.last_kill_attempt = None
        self._set_phase(Phase.TASKS)

    def advance_phase(self) -> Phase:
        """
        Move strictly forward. Does not decide timing: callers are a fired
        timer or an early-completion trigger. Returns the new phase.
        """
        game = self._game
        if game.phase == Phase.LOBBY_CREATED:
            self.open_lobby()
        elif game.phase == Phase.ASSIGN_ROLES:
            self.start_round(1)
        elif game.phase == Phase.VOTING:
            if game.round < self.config.max_rounds:
                self.start_round(game.round + 1)
            else:
                win = self.check_win_condition()
                self.end_game(win.winner or Role.IMPOSTOR)
        elif game.phase in (Phase.TASKS, Phase.KILL, Phase.DISCUSSION):
            sequence = self.round_phases()
            nxt = sequence[sequence.index(game.phase) + 1]
            if nxt == Phase.VOTING:
                self._reset_votes()
            self._set_phase(nxt)
        else:
            raise InvalidPhase(f"No phase follows {game.phase_label}.")
        return game.phase

    def end_game(self, winner: Optional[Role]) -> None:
        if not self.is_active:
            raise InvalidPhase("There is no game to end.")
        self.timers.cancel_all()
        self._game.winner = winner
        self._game.current_phase_deadline = None
        self._set_phase(Phase.GAME_END)
        self._emit(
            EventKind.GAME_END,
            f"Game over. Winner: {winner.value if winner else 'none'}.",
            extra={"winner": winner.value if winner else None},
        )

    def cleanup(self) -> None:
        """Drop all game state and timers. Safe to call repeatedly."""
        self.timers.cancel_all()
        if self._game.phase != Phase.IDLE:
            logger.info("Cleaning up game in lobby %s", self._game.lobby_id)
        self._game = Game()

    # -- tasks -----------------------------------------------------------

    def get_task_for_player(self, player_id: str, index: int) -> Optional[Task]:
        tasks = self._game.task_assignments.get(player_id)
        if not tasks or not 0 <= index < len(tasks):
            return None
        return copy.copy(tasks[index])

    def get_tasks_for_player(self, player_id: str) -> list[Task]:
        return [copy.copy(t) for t in self._game.task_assignments.get(player_id, [])]

    def current_task(self, player_id: str) -> Optional[Task]:
        task = self._next_incomplete_task(player_id)
        return copy.copy(task) if task else None

    def complete_task(self, player_id: str, answer: str) -> bool:
        """Check answer against the player's earliest incomplete task."""
        if not self.is_task_phase():
            raise InvalidPhase("Tasks can only be submitted during the task phase.")
        player = self._require_alive_player(player_id)
        task = self._next_incomplete_task(player_id)
        if task is None or not validate_answer(task, answer):
            return False
        task.completed = True
        player.completed_tasks += 1
        self._emit(
            EventKind.TASK_COMPLETED,
            f"{player.name} completed a task.",
            player_id=player_id,
            extra={"task_id": task.id},
        )
        return True

    # -- kills -----------------------------------------------------------

    def attempt_kill(self, killer_id: str, target_ref: str) -> KillResult:
        """
        Impostor kill attempt. Each resolved attempt (hit or miss) consumes one
        attempt and restarts the cooldown; rejected attempts change nothing.
        """
        game = self._game
        if not self.is_kill_phase():
            raise InvalidPhase("Kills are only possible during the kill phase.")
        killer = self._require_player(killer_id)
        if killer.id != game.impostor_id:
            raise NotAuthorized("Only the impostor can kill.")
        if not killer.alive:
            raise NotAuthorized("You have been eliminated.")
        if killer.kill_attempts >= game.max_kill_attempts:
            raise AttemptsExhausted(game.max_kill_attempts)

        now = self._clock()
        if killer.last_kill_attempt is not None:
            elapsed = now - killer.last_kill_attempt
            if elapsed < game.kill_cooldown_ms:
                raise OnCooldown(game.kill_cooldown_ms - elapsed)

        target = self._resolve(target_ref)
        if target.id == killer.id:
            raise TargetNotFound(target_ref, "You cannot target yourself.")
        if not target.alive:
            raise TargetNotFound(target_ref, f"{target.name} is already eliminated.")

        killer.kill_attempts += 1
        killer.last_kill_attempt = now
        success = self._rng.random() < game.kill_success_chance
        attempts_left = game.max_kill_attempts - killer.kill_attempts
        self._emit(
            EventKind.KILL_ATTEMPT,
            "Kill attempt.",
            # history is public; the killer stays anonymous
            target_id=target.id,
            extra={"success": success},
        )

        if success:
            self._eliminate(target, EventKind.KILLED, f"{target.name} was killed.")
            message = f"🔪 {target.name} was eliminated by the mafia."
        else:
            message = (
                f"❌ Kill attempt on {target.name} failed. "
                f"{attempts_left} attempt(s) left."
            )
        return KillResult(
            success=success,
            target_id=target.id,
            target_name=target.name,
            message=message,
            attempts_used=killer.kill_attempts,
            attempts_left=attempts_left,
        )

    # -- votes -----------------------------------------------------------

    def cast_vote(self, voter_id: str, target_ref: str) -> bool:
        """Record a vote. A second vote in the same round returns False and changes nothing."""
        if self._game.phase != Phase.VOTING:
            raise InvalidPhase("Voting is not open.")
        voter = self._require_alive_player(voter_id)
        if voter.voted:
            return False
        target = self._resolve(target_ref)
        if not target.alive:
            raise TargetNotFound(target_ref, f"{target.name} is already eliminated.")
        voter.voted = True
        voter.vote_target = target.id
        self._emit(EventKind.VOTE, f"{voter.name} voted.", player_id=voter.id, target_id=target.id)
        return True

    def get_vote_results(self) -> list[VoteResult]:
        """
        Tally this round's votes, most votes first. Voters are scanned in join
        order and the sort is stable, so tied targets keep the join order of
        their first voter.
        """
        counts: dict[str, int] = {}
        for p in self._game.get_alive_players():
            if p.voted and p.vote_target:
                counts[p.vote_target] = counts.get(p.vote_target, 0) + 1
        results = [VoteResult(target_id=t, votes=c) for t, c in counts.items()]
        return sorted(results, key=lambda r: r.votes, reverse=True)

    def majority_threshold(self) -> int:
        return math.ceil(len(self._game.get_alive_players()) / 2)

    def process_voting(self) -> VotingOutcome:
        """
        Resolve the round's vote. The leader is eliminated iff it has at least
        ceil(alive / 2) votes and strictly more than the runner-up.
        """
        game = self._game
        if game.phase != Phase.VOTING:
            raise InvalidPhase("Voting is not open.")
        if game.resolved_voting_round == game.round:
            raise InvalidPhase(f"Votes for round {game.round} were already counted.")

        results = self.get_vote_results()
        majority = self.majority_threshold()
        eliminated: Optional[Player] = None
        if results:
            top = results[0]
            clear_leader = len(results) == 1 or top.votes > results[1].votes
            if clear_leader and top.votes >= majority:
                target = game.players[top.target_id]
                self._eliminate(target, EventKind.ELIMINATED, f"{target.name} was eliminated by vote.")
                eliminated = copy.copy(target)
        game.resolved_voting_round = game.round
        return VotingOutcome(results=results, majority=majority, eliminated=eliminated)

    def eliminate_player(self, player_id: str) -> Player:
        player = self._require_player(player_id)
        if player.alive:
            self._eliminate(player, EventKind.ELIMINATED, f"{player.name} was eliminated.")
        return copy.copy(player)

    def check_win_condition(self) -> WinCheck:
        """Crew wins once the impostor is dead; impostor wins with no crew left or rounds exhausted."""
        game = self._game
        impostor = game.get_impostor()
        if impostor is None:
            return WinCheck(game_ended=False)
        if not impostor.alive:
            return WinCheck(game_ended=True, winner=Role.CREW)
        crew_alive = [p for p in game.get_alive_players() if p.role == Role.CREW]
        if not crew_alive:
            return WinCheck(game_ended=True, winner=Role.IMPOSTOR)
        if game.round >= self.config.max_rounds and game.resolved_voting_round >= self.config.max_rounds:
            return WinCheck(game_ended=True, winner=Role.IMPOSTOR)
        return WinCheck(game_ended=False)

    # -- internals -------------------------------------------------------

    def _emit(
        self,
        kind: EventKind,
        message: str,
        player_id: Optional[str] = None,
        target_id: Optional[str] = None,
        extra: Optional[dict] = None,
    ) -> None:
        """Append event to the game history."""
        self._game.events.append(
            Event(
                kind=kind,
                round_index=self._game.round,
                phase=self._game.phase,
                message=message,
                player_id=player_id,
                target_id=target_id,
                extra=extra,
            )
        )

    def _set_phase(self, phase: Phase) -> None:
        self._game.phase = phase
        self._emit(EventKind.PHASE_CHANGE, f"Phase: {self._game.phase_label}.")
        logger.info("Game phase -> %s", self._game.phase_label)

    def _set_phase_deadline(self, deadline: Optional[int]) -> None:
        self._game.current_phase_deadline = deadline

    def _require_phase(self, phase: Phase, message: str) -> None:
        if self._game.phase != phase:
            raise InvalidPhase(message)

    def _require_player(self, player_id: str) -> Player:
        player = self._game.get_player(player_id)
        if player is None:
            raise PlayerNotFound(player_id)
        return player

    def _require_alive_player(self, player_id: str) -> Player:
        player = self._require_player(player_id)
        if not player.alive:
            raise NotAuthorized("You have been eliminated.")
        return player

    def _resolve(self, ref: str) -> Player:
        """Match ref to exactly one player by id, then by display name (case-insensitive)."""
        key = (ref or "").strip().lstrip("@").strip()
        if not key:
            raise TargetNotFound(ref or "", "No target given.")
        players = self._game.players
        if key in players:
            return players[key]
        lowered = key.lower()
        by_id = [p for p in players.values() if p.id.lower() == lowered]
        if len(by_id) == 1:
            return by_id[0]
        by_name = [p for p in players.values() if p.name.lower() == lowered]
        if len(by_name) == 1:
            return by_name[0]
        if len(by_name) > 1:
            raise TargetNotFound(ref, f"'{key}' matches more than one player. Use their id.")
        raise TargetNotFound(ref)

    def _next_incomplete_task(self, player_id: str) -> Optional[Task]:
        for task in self._game.task_assignments.get(player_id, []):
            if not task.completed:
                return task
        return None

    def _reset_votes(self) -> None:
        for p in self._game.get_alive_players():
            p.voted = False
            p.vote_target = None

    def _eliminate(self, player: Player, kind: EventKind, message: str) -> None:
        player.alive = False
        self._game.eliminated_players.add(player.id)
        self._emit(
            kind,
            message,
            target_id=player.id,
            extra={"role": player.role.value if player.role else None},
        )
