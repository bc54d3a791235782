"""Task generator: small puzzles each carrying its own answer."""

import random
import time
from typing import Callable, Optional

from mafia.rules import TaskType
from mafia.state import Task

WORDS = (
    "equilibrium",
    "xenolith",
    "protocol",
    "algorithm",
    "synthesis",
    "quantum",
    "momentum",
    "velocity",
    "architecture",
    "compilation",
)

# (scrambled, answer)
SCRAMBLED_WORDS = (
    ("ILPA", "PAL"),
    ("GHTI", "THIG"),
    ("UJMP", "JUMP"),
    ("EKBI", "BIKE"),
    ("AEPS", "SPEA"),
)

COUNT_TEXT = "protocol"


def _task_id(kind: TaskType, rng: random.Random) -> str:
    return f"{kind.value.lower()}-{int(time.time() * 1000)}-{rng.getrandbits(48):012x}"


def _pin(rng: random.Random) -> Task:
    pin = str(rng.randint(1000, 9999))
    return Task(
        id=_task_id(TaskType.PIN, rng),
        type=TaskType.PIN,
        question=f"Enter PIN: {pin}",
        answer=pin,
    )


def _word(rng: random.Random) -> Task:
    word = rng.choice(WORDS)
    return Task(
        id=_task_id(TaskType.WORD, rng),
        type=TaskType.WORD,
        question=f"Type this word: {word}",
        answer=word.lower(),
    )


def _math(rng: random.Random) -> Task:
    a = rng.randint(10, 109)
    b = rng.randint(1, 50)
    operation = "+" if rng.random() > 0.5 else "-"
    answer = a + b if operation == "+" else a - b
    return Task(
        id=_task_id(TaskType.MATH, rng),
        type=TaskType.MATH,
        question=f"Solve: {a} {operation} {b}",
        answer=str(answer),
    )


def _unscramble(rng: random.Random) -> Task:
    scrambled, answer = rng.choice(SCRAMBLED_WORDS)
    return Task(
        id=_task_id(TaskType.UNSCRAMBLE, rng),
        type=TaskType.UNSCRAMBLE,
        question=f"Unscramble: {scrambled} → ?",
        answer=answer.lower(),
    )


def _count(rng: random.Random) -> Task:
    return Task(
        id=_task_id(TaskType.COUNT, rng),
        type=TaskType.COUNT,
        question=f'Count letters: How many letters in "{COUNT_TEXT}"?',
        answer=str(len(COUNT_TEXT)),
    )


GENERATORS: dict[TaskType, Callable[[random.Random], Task]] = {
    TaskType.PIN: _pin,
    TaskType.WORD: _word,
    TaskType.MATH: _math,
    TaskType.UNSCRAMBLE: _unscramble,
    TaskType.COUNT: _count,
}


def generate_task(rng: Optional[random.Random] = None) -> Task:
    """Return one task from a uniformly chosen generator."""
    rng = rng or random.Random()
    kind = rng.choice(list(GENERATORS))
    return GENERATORS[kind](rng)


def validate_answer(task: Task, answer: str) -> bool:
    """True if answer matches the task's answer, ignoring case and surrounding whitespace."""
    return answer.strip().lower() == task.answer.strip().lower()
