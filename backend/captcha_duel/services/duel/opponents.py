"""The opposing side of a duel.

Both implementations answer the same questions (what is the opponent's
puzzle, what has it selected) and react to the same hooks. Neither owns any
state the session could disagree with: puzzles, scores and obstructions all
live on the session, and opponents change them only through the session's
``opponent_*`` transition methods.
"""

import logging
import random
from typing import TYPE_CHECKING, Callable, List, Optional

from .protocol import Message, SelectImage, Verify
from .scoring import Side

if TYPE_CHECKING:
    from .session import Session

logger = logging.getLogger(__name__)

CPU_PLAYER_ID = 'cpu'


class Opponent:
    kind = 'opponent'
    reports_progress = True
    reports_selection = True
    receives_obstruction = True
    tick_interval: Optional[float] = None

    def __init__(self, player_id: Optional[str] = None):
        self.player_id = player_id
        self.session: Optional['Session'] = None

    def attach(self, session: 'Session') -> None:
        self.session = session

    def on_tick(self, now: float) -> None:
        pass

    def on_local_toggle(self, index: int) -> None:
        pass

    def on_local_verification(self, selection: List[int]) -> None:
        pass

    def current_puzzle_snapshot(self) -> Optional[dict]:
        puzzle = self.session.puzzles.get(Side.REMOTE) if self.session else None
        return puzzle.to_dict() if puzzle else None

    def current_selection_snapshot(self) -> List[int]:
        puzzle = self.session.puzzles.get(Side.REMOTE) if self.session else None
        return sorted(puzzle.selection) if puzzle else []


class RemotePeer(Opponent):
    """A human on the other end of the channel.

    Has no clock of its own. Local intents are forwarded as protocol
    messages; the session applies whatever the server sends back.
    """
    kind = 'remote'

    def __init__(self, send: Callable[[Message], None], player_id: Optional[str] = None):
        super().__init__(player_id)
        self._send = send

    def on_local_toggle(self, index: int) -> None:
        s = self.session
        self._send(SelectImage(room_id=s.room_id, player_id=s.player_id, image_index=index))

    def on_local_verification(self, selection: List[int]) -> None:
        s = self.session
        self._send(Verify(room_id=s.room_id, player_id=s.player_id, selected_indices=tuple(selection)))


class SimulatedPeer(Opponent):
    """CPU opponent driven by a fixed-interval decision loop.

    Each tick it either picks one more correct image (``accuracy``), or, once
    its selection is complete, commits it (``commit_rate``). With
    ``mistake_rate`` it slips a wrong image in right before committing.
    While obstructed it loses half of its ticks.
    """
    kind = 'cpu'
    reports_selection = False

    def __init__(
        self,
        rng: Optional[random.Random] = None,
        interval: float = 0.8,
        accuracy: float = 0.7,
        commit_rate: float = 0.5,
        mistake_rate: float = 0.0,
        obstructed_skip_rate: float = 0.5,
        player_id: str = CPU_PLAYER_ID,
    ):
        super().__init__(player_id)
        self.rng = rng or random.Random()
        self.tick_interval = interval
        self.accuracy = accuracy
        self.commit_rate = commit_rate
        self.mistake_rate = mistake_rate
        self.obstructed_skip_rate = obstructed_skip_rate

    def on_tick(self, now: float) -> None:
        s = self.session
        if s is None or not s.is_playing:
            return
        if s.obstruction_active(Side.REMOTE, now) and self.rng.random() < self.obstructed_skip_rate:
            logger.debug(f"[cpu-skip] obstructed now={now:.3f}")
            return
        puzzle = s.puzzles[Side.REMOTE]
        if puzzle.is_degenerate:
            s.refresh_puzzle(Side.REMOTE, now=now)
            return
        remaining = puzzle.remaining()
        if remaining:
            if self.rng.random() < self.accuracy:
                s.opponent_toggle(self.rng.choice(sorted(remaining)), now=now)
            return
        if self.rng.random() < self.commit_rate:
            wrong = puzzle.wrong_candidates()
            if wrong and self.mistake_rate > 0 and self.rng.random() < self.mistake_rate:
                s.opponent_toggle(self.rng.choice(sorted(wrong)), now=now)
            s.opponent_verify(now=now)
