"""Deployment configuration: rule defaults overridable from the environment."""

import os
from dataclasses import dataclass, fields

from mafia import rules

# Environment variables are MAFIA_<FIELD NAME IN UPPER CASE>, e.g. MAFIA_MAX_PLAYERS
ENV_PREFIX = "MAFIA_"

_TRUE_VALUES = ("1", "true", "yes", "on")


@dataclass(frozen=True)
class GameConfig:
    """Tunables for one deployment. Every game copies what it needs at lobby creation."""

    max_players: int = rules.MAX_PLAYERS
    min_players_to_start: int = rules.MIN_PLAYERS_TO_START
    max_rounds: int = rules.MAX_ROUNDS
    kill_cooldown_ms: int = rules.KILL_COOLDOWN_MS
    kill_success_chance: float = rules.KILL_SUCCESS_CHANCE
    max_kill_attempts: int = rules.MAX_KILL_ATTEMPTS
    task_phase_duration_ms: int = rules.TASK_PHASE_DURATION_MS
    kill_phase_duration_ms: int = rules.KILL_PHASE_DURATION_MS
    discussion_phase_duration_ms: int = rules.DISCUSSION_PHASE_DURATION_MS
    voting_phase_duration_ms: int = rules.VOTING_PHASE_DURATION_MS
    join_window_duration_ms: int = rules.JOIN_WINDOW_DURATION_MS
    tasks_per_player: int = rules.TASKS_PER_PLAYER
    task_dispatch_buffer_ms: int = rules.TASK_DISPATCH_BUFFER_MS
    kill_advance_delay_ms: int = rules.KILL_ADVANCE_DELAY_MS
    merge_task_and_kill: bool = rules.MERGE_TASK_AND_KILL

    def __post_init__(self) -> None:
        if self.min_players_to_start < 2:
            raise ValueError("min_players_to_start must be at least 2")
        if self.max_players < self.min_players_to_start:
            raise ValueError("max_players must be >= min_players_to_start")
        if self.max_rounds < 1:
            raise ValueError("max_rounds must be at least 1")
        if not 0.0 <= self.kill_success_chance <= 1.0:
            raise ValueError("kill_success_chance must be between 0 and 1")
        if self.tasks_per_player < 1:
            raise ValueError("tasks_per_player must be at least 1")

    @property
    def task_window_ms(self) -> int:
        """Length of the window in which tasks are accepted."""
        if self.merge_task_and_kill:
            return max(self.task_phase_duration_ms, self.kill_phase_duration_ms)
        return self.task_phase_duration_ms

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "GameConfig":
        """Build config from MAFIA_* variables; unset ones keep the defaults."""
        env = os.environ if environ is None else environ
        overrides = {}
        for f in fields(cls):
            raw = env.get(ENV_PREFIX + f.name.upper())
            if raw is None or raw.strip() == "":
                continue
            raw = raw.strip()
            if f.type in (bool, "bool"):
                overrides[f.name] = raw.lower() in _TRUE_VALUES
            elif f.type in (float, "float"):
                overrides[f.name] = float(raw)
            else:
                overrides[f.name] = int(raw)
        return cls(**overrides)

    def to_dict(self) -> dict:
        return {f.name: getattr(self, f.name) for f in fields(self)}
