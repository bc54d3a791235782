"""In-memory runtime holder: the one engine, its flow and the recording transport."""

import random
from dataclasses import dataclass

from mafia.config import GameConfig
from mafia.engine import GameEngine
from mafia.flow import GameFlow
from mafia.intents import IntentHandler
from mafia.notifier import OutboxNotifier


@dataclass
class Runtime:
    engine: GameEngine
    flow: GameFlow
    handler: IntentHandler
    outbox: OutboxNotifier


_runtime: Runtime | None = None


def create(config: GameConfig | None = None, seed: int | None = None) -> Runtime:
    """Build a fresh runtime, replacing any existing one."""
    global _runtime
    reset()
    engine = GameEngine(config=config, rng=random.Random(seed))
    outbox = OutboxNotifier()
    flow = GameFlow(engine, outbox)
    _runtime = Runtime(engine=engine, flow=flow, handler=IntentHandler(flow), outbox=outbox)
    return _runtime


def get() -> Runtime | None:
    return _runtime


def reset() -> None:
    """Cancel timers of the current runtime and forget it."""
    global _runtime
    if _runtime is not None:
        _runtime.engine.cleanup()
    _runtime = None
