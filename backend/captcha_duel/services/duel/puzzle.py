import random
from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, List, Optional, Sequence, Set, Tuple

from .catalog import ImageCatalog

GRID_SIZE = 9
MAX_CORRECT = 3


class Outcome(str, Enum):
    CORRECT = 'CORRECT'
    WRONG = 'WRONG'


@dataclass
class Puzzle:
    """One challenge for one side of the duel.

    ``correct_indices`` is derived from the catalog and never travels over
    the wire; ``selection`` accumulates the player's toggles.
    """
    target_label: str
    images: Tuple[str, ...]
    correct_indices: FrozenSet[int]
    selection: Set[int] = field(default_factory=set)

    @classmethod
    def from_wire(cls, catalog: ImageCatalog, target: str, images: Sequence[str]) -> 'Puzzle':
        images = tuple(images)
        return cls(target, images, frozenset(catalog.correct_indices(images, target)))

    @property
    def size(self) -> int:
        return len(self.images)

    @property
    def is_degenerate(self) -> bool:
        return not self.correct_indices

    def remaining(self) -> Set[int]:
        return set(self.correct_indices) - self.selection

    def wrong_candidates(self) -> Set[int]:
        return set(range(self.size)) - set(self.correct_indices) - self.selection

    def toggle(self, index: int) -> bool:
        """Flip ``index`` in the selection. Returns False for an invalid index."""
        if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index < self.size:
            return False
        self.selection ^= {index}
        return True

    def clear_selection(self) -> None:
        self.selection = set()

    def verify(self) -> Outcome:
        # Exact set match; no partial credit
        if self.selection == set(self.correct_indices):
            return Outcome.CORRECT
        return Outcome.WRONG

    def same_challenge(self, other: Optional['Puzzle']) -> bool:
        return other is not None and other.target_label == self.target_label and other.images == self.images

    def to_dict(self, reveal: bool = False) -> dict:
        data = {
            'target': self.target_label,
            'images': list(self.images),
            'selection': sorted(self.selection),
        }
        if reveal:
            data['correct_indices'] = sorted(self.correct_indices)
        return data


def _build(catalog: ImageCatalog, rng: random.Random, grid_size: int) -> Puzzle:
    label = rng.choice(catalog.label_pool)
    tagged = catalog.tagged(label)
    fillers = catalog.untagged(label)

    picked: List[str] = []
    if tagged:
        count = rng.randint(1, max(1, min(MAX_CORRECT, len(tagged), grid_size - 1)))
        picked = [img.url for img in rng.sample(tagged, count)]

    need = grid_size - len(picked)
    if need > 0 and fillers:
        if len(fillers) >= need:
            picked += [img.url for img in rng.sample(fillers, need)]
        else:
            picked += [img.url for img in rng.choices(fillers, k=need)]

    rng.shuffle(picked)
    return Puzzle.from_wire(catalog, label, picked)


def generate_puzzle(
    catalog: ImageCatalog,
    rng: Optional[random.Random] = None,
    grid_size: int = GRID_SIZE,
    previous: Optional[Puzzle] = None,
    attempts: int = 5,
) -> Puzzle:
    """Build a fresh puzzle from the catalog.

    - 1..3 matching images (never the whole grid) when the label has any
    - the rest is filled with non-matching images, then shuffled
    - a label with no matching images yields a puzzle with no correct answer
    - when ``previous`` is given, retries so the new puzzle differs from it
    """
    rng = rng or random.Random()
    puzzle = _build(catalog, rng, grid_size)
    for _ in range(attempts):
        if not puzzle.same_challenge(previous):
            break
        puzzle = _build(catalog, rng, grid_size)
    return puzzle
