from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Tuple

from .puzzle import Outcome

WIN_THRESHOLD = 5
COMBO_THRESHOLD = 2


class Side(str, Enum):
    LOCAL = 'local'
    REMOTE = 'remote'

    @property
    def other(self) -> 'Side':
        return Side.REMOTE if self is Side.LOCAL else Side.LOCAL


def advance_combo(combo: int, outcome: Outcome, threshold: int = COMBO_THRESHOLD) -> Tuple[int, bool]:
    """Return ``(new_combo, obstruct_opponent)`` after one verification.

    Shared by the client scoreboard and the server referee so both sides
    count combos the same way.
    """
    if outcome is not Outcome.CORRECT:
        return 0, False
    combo += 1
    if combo >= threshold:
        return 0, True
    return combo, False


@dataclass(frozen=True)
class VerificationResult:
    side: Side
    outcome: Outcome
    score: int
    obstruct_opponent: bool
    won: bool


@dataclass
class ScoreBoard:
    win_threshold: int = WIN_THRESHOLD
    combo_threshold: int = COMBO_THRESHOLD
    scores: Dict[Side, int] = field(default_factory=lambda: {Side.LOCAL: 0, Side.REMOTE: 0})
    combos: Dict[Side, int] = field(default_factory=lambda: {Side.LOCAL: 0, Side.REMOTE: 0})

    def apply_verification(self, side: Side, outcome: Outcome, reported_score: Optional[int] = None) -> VerificationResult:
        """Score one verification for ``side``.

        ``reported_score`` is the server's count for an ONLINE match; it
        replaces the local +1 so a duplicated confirmation cannot double-count.
        """
        if outcome is Outcome.CORRECT:
            if reported_score is None:
                self.scores[side] += 1
            else:
                self.set_score(side, reported_score)
        self.combos[side], obstruct = advance_combo(self.combos[side], outcome, self.combo_threshold)
        return VerificationResult(
            side=side,
            outcome=outcome,
            score=self.scores[side],
            obstruct_opponent=obstruct,
            won=self.has_won(side),
        )

    def set_score(self, side: Side, score: int) -> int:
        # Remote-reported scores can arrive late or duplicated; never go backwards
        self.scores[side] = max(self.scores[side], max(0, int(score)))
        return self.scores[side]

    def reset_combo(self, side: Side) -> None:
        self.combos[side] = 0

    def has_won(self, side: Side) -> bool:
        return self.scores[side] >= self.win_threshold

    def to_dict(self) -> dict:
        return {
            'scores': {side.value: v for side, v in self.scores.items()},
            'combos': {side.value: v for side, v in self.combos.items()},
            'win_threshold': self.win_threshold,
        }
