"""Game rules and constants for the group-chat Mafia game."""

from enum import Enum


class Role(str, Enum):
    """Player roles in the game."""

    CREW = "CREW"
    IMPOSTOR = "IMPOSTOR"


class Phase(str, Enum):
    """Current game phase. Round phases are scoped by Game.round."""

    IDLE = "IDLE"
    LOBBY_CREATED = "LOBBY_CREATED"
    WAITING_FOR_PLAYERS = "WAITING_FOR_PLAYERS"
    ASSIGN_ROLES = "ASSIGN_ROLES"
    TASKS = "TASKS"
    KILL = "KILL"
    DISCUSSION = "DISCUSSION"
    VOTING = "VOTING"
    GAME_END = "GAME_END"


class TaskType(str, Enum):
    """Puzzle kinds handed out during the task phase."""

    PIN = "PIN"
    WORD = "WORD"
    MATH = "MATH"
    UNSCRAMBLE = "UNSCRAMBLE"
    COUNT = "COUNT"


# Order of phases within a round (tasks -> kill -> discussion -> vote -> next round tasks)
ROUND_PHASES = (Phase.TASKS, Phase.KILL, Phase.DISCUSSION, Phase.VOTING)

# Tasks and kills share one window in the merged variant
MERGED_ROUND_PHASES = (Phase.TASKS, Phase.DISCUSSION, Phase.VOTING)

# Phases in which a round is running
ROUND_PHASE_SET = frozenset(ROUND_PHASES)

# Player limits
MAX_PLAYERS = 6
MIN_PLAYERS_TO_START = 3
MAX_ROUNDS = 1

# Impostor kill settings
KILL_COOLDOWN_MS = 15 * 1000
KILL_SUCCESS_CHANCE = 0.5
MAX_KILL_ATTEMPTS = 3

# Phase durations
TASK_PHASE_DURATION_MS = 60 * 1000
KILL_PHASE_DURATION_MS = 60 * 1000
DISCUSSION_PHASE_DURATION_MS = 45 * 1000
VOTING_PHASE_DURATION_MS = 60 * 1000
JOIN_WINDOW_DURATION_MS = 60 * 1000

# Tasks handed to every alive player each round
TASKS_PER_PLAYER = 2

# All task announcements go out at least this long before the task phase ends
TASK_DISPATCH_BUFFER_MS = 15 * 1000

# Pause between a successful kill and the start of discussion
KILL_ADVANCE_DELAY_MS = 2 * 1000

# Tasks and kill attempts run in one concurrent phase
MERGE_TASK_AND_KILL = True
