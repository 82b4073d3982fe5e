import logging
import random
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional

from .scoring import Side

logger = logging.getLogger(__name__)

OBSTRUCTION_DURATION_SEC = 3.0


class Effect(str, Enum):
    SHAKE = 'SHAKE'
    SPIN = 'SPIN'
    SKEW = 'SKEW'
    BLUR = 'BLUR'
    INVERT = 'INVERT'
    GRAYSCALE = 'GRAYSCALE'
    SEPIA = 'SEPIA'
    ONION_RAIN = 'ONION_RAIN'


EFFECTS = tuple(Effect)


def parse_effect(name: str) -> Optional[Effect]:
    try:
        return Effect(str(name).upper())
    except ValueError:
        return None


def random_effect(rng: Optional[random.Random] = None) -> Effect:
    return (rng or random).choice(EFFECTS)


@dataclass
class ObstructionState:
    active_effect: Optional[Effect] = None
    expires_at: Optional[float] = None

    def current(self, now: float) -> Optional[Effect]:
        """Active effect at ``now``; a lapsed effect reads as none."""
        if self.active_effect is None or self.expires_at is None or self.expires_at <= now:
            return None
        return self.active_effect

    def clear(self) -> None:
        self.active_effect = None
        self.expires_at = None


class ObstructionEngine:
    """One obstruction slot per side. New effects replace, never stack."""

    def __init__(self, duration: float = OBSTRUCTION_DURATION_SEC, rng: Optional[random.Random] = None):
        self.duration = duration
        self.rng = rng or random.Random()
        self.states: Dict[Side, ObstructionState] = {side: ObstructionState() for side in Side}

    def apply_effect(self, side: Side, effect: Effect, now: float) -> ObstructionState:
        state = self.states[side]
        state.active_effect = effect
        state.expires_at = now + self.duration
        logger.info(f"[obstruct] side={side.value} effect={effect.value} expires_at={state.expires_at:.3f}")
        return state

    def apply_random_effect(self, side: Side, now: float) -> Effect:
        effect = random_effect(self.rng)
        self.apply_effect(side, effect, now)
        return effect

    def active(self, side: Side, now: float) -> Optional[Effect]:
        return self.states[side].current(now)

    def tick(self, now: float) -> List[Side]:
        cleared = []
        for side, state in self.states.items():
            if state.active_effect is not None and state.expires_at is not None and state.expires_at <= now:
                state.clear()
                cleared.append(side)
        return cleared

    def reset(self) -> None:
        for state in self.states.values():
            state.clear()
