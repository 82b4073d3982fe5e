"""Match session state machine.

One ``Session`` is the single owner of everything a client knows about a
match: lifecycle state, both puzzles, the scoreboard, both obstruction slots
and every pending timer. All mutation goes through the methods below, which
are driven by three triggers only:

- user intents (``join_room``, ``select_image``, ``verify`` ...)
- inbound protocol frames (``handle_message``)
- the periodic ``tick(now)`` (CPU loop, obstruction expiry, feedback pop-up)

A transition requested from the wrong state is ignored, never an error, so
late or duplicated frames cannot corrupt a finished or torn-down session.
"""

import logging
import random
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from .catalog import ImageCatalog, default_catalog
from .obstruction import Effect, ObstructionEngine, parse_effect
from .opponents import Opponent, RemotePeer, SimulatedPeer
from .protocol import (
    GameFinished, GameStart, JoinRoom, LeaveRoom, Message, Obstruction,
    OpponentSelect, OpponentUpdate, ProtocolError, RoomAssigned, StatusUpdate,
    UpdatePattern, VerifyFailed, decode,
)
from .puzzle import Outcome, Puzzle, generate_puzzle
from .scoring import ScoreBoard, Side, VerificationResult
from .timers import TimerSet

logger = logging.getLogger(__name__)

LOCAL_CPU_ROOM = 'LOCAL_CPU'
UNKNOWN_OPPONENT_ID = 'opponent'


class GameState(str, Enum):
    LOGIN = 'LOGIN'
    WAITING = 'WAITING'
    PLAYING = 'PLAYING'
    RESULT = 'RESULT'


class Mode(str, Enum):
    CPU = 'CPU'
    ONLINE = 'ONLINE'


class SoundCue(str, Enum):
    START = 'START'
    CORRECT = 'CORRECT'
    WRONG = 'WRONG'
    OBSTRUCTION = 'OBSTRUCTION'
    WIN = 'WIN'
    LOSE = 'LOSE'


@dataclass(frozen=True)
class DuelRules:
    win_threshold: int = 5
    combo_threshold: int = 2
    grid_size: int = 9
    obstruction_duration: float = 3.0
    obstruction_locks_selection: bool = False
    cpu_tick: float = 0.8
    cpu_accuracy: float = 0.7
    cpu_commit_rate: float = 0.5
    cpu_mistake_rate: float = 0.0
    feedback_duration: float = 1.0
    public_room_count: int = 5

    @classmethod
    def from_mapping(cls, cfg: Any) -> 'DuelRules':
        """Build rules from a Flask config (or the ``Config`` class itself)."""
        if hasattr(cfg, 'get'):
            get = cfg.get
        else:
            def get(key, default):
                return getattr(cfg, key, default)
        return cls(
            win_threshold=int(get('WIN_THRESHOLD', 5)),
            combo_threshold=int(get('COMBO_THRESHOLD', 2)),
            grid_size=int(get('GRID_SIZE', 9)),
            obstruction_duration=float(get('OBSTRUCTION_DURATION_SEC', 3.0)),
            obstruction_locks_selection=bool(get('OBSTRUCTION_LOCKS_SELECTION', False)),
            cpu_tick=int(get('CPU_TICK_MS', 800)) / 1000.0,
            cpu_accuracy=float(get('CPU_ACCURACY', 0.7)),
            cpu_commit_rate=float(get('CPU_COMMIT_RATE', 0.5)),
            cpu_mistake_rate=float(get('CPU_MISTAKE_RATE', 0.0)),
            feedback_duration=float(get('FEEDBACK_DURATION_SEC', 1.0)),
            public_room_count=int(get('PUBLIC_ROOM_COUNT', 5)),
        )


class Session:
    # Inbound message type -> handler. Every server->client message has one.
    HANDLERS = {
        RoomAssigned: '_on_room_assigned',
        StatusUpdate: '_on_status_update',
        GameStart: '_on_game_start',
        OpponentSelect: '_on_opponent_select',
        UpdatePattern: '_on_update_pattern',
        VerifyFailed: '_on_verify_failed',
        OpponentUpdate: '_on_opponent_update',
        Obstruction: '_on_obstruction',
        GameFinished: '_on_game_finished',
    }

    def __init__(
        self,
        player_id: Optional[str] = None,
        send: Optional[Callable[[Message], None]] = None,
        catalog: Optional[ImageCatalog] = None,
        rules: Optional[DuelRules] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.rng = rng or random.Random()
        self.player_id = player_id or f"p_{self.rng.randint(0, 999)}"
        self.catalog = catalog or default_catalog
        self.rules = rules or DuelRules()
        self.clock = clock
        self._send = send
        self._listeners: List[Callable[[dict], None]] = []
        self._cue_listeners: List[Callable[[SoundCue], None]] = []
        self.timers = TimerSet()
        self._reset()

    # ---- lifecycle ----

    def _reset(self) -> None:
        self.timers.cancel_all()
        self.state = GameState.LOGIN
        self.mode: Optional[Mode] = None
        self.room_id = ''
        self.winner_id: Optional[str] = None
        self.result_message: Optional[str] = None
        self.status: Optional[str] = None
        self.feedback: Optional[str] = None
        self.puzzles: Dict[Side, Puzzle] = {}
        self.opponent: Optional[Opponent] = None
        self.scoreboard = ScoreBoard(self.rules.win_threshold, self.rules.combo_threshold)
        self.obstructions = ObstructionEngine(self.rules.obstruction_duration, self.rng)

    @property
    def is_playing(self) -> bool:
        return self.state is GameState.PLAYING

    def _now(self, now: Optional[float]) -> float:
        return self.clock() if now is None else now

    def join_room(self, room_id: str, now: Optional[float] = None) -> bool:
        if self.state is not GameState.LOGIN or not room_id:
            return False
        self.mode = Mode.ONLINE
        self.room_id = room_id
        self.opponent = RemotePeer(self.send)
        self.opponent.attach(self)
        self.state = GameState.WAITING
        logger.info(f"[join] player={self.player_id} room={room_id}")
        self.send(JoinRoom(room_id=room_id, player_id=self.player_id))
        self._notify()
        return True

    def join_random_room(self, now: Optional[float] = None) -> bool:
        return self.join_room(f"PUB_{self.rng.randrange(self.rules.public_room_count)}", now=now)

    def start_local_match(self, now: Optional[float] = None) -> bool:
        if self.state is not GameState.LOGIN:
            return False
        now = self._now(now)
        r = self.rules
        self.mode = Mode.CPU
        self.room_id = LOCAL_CPU_ROOM
        self.opponent = SimulatedPeer(
            rng=self.rng,
            interval=r.cpu_tick,
            accuracy=r.cpu_accuracy,
            commit_rate=r.cpu_commit_rate,
            mistake_rate=r.cpu_mistake_rate,
        )
        self.opponent.attach(self)
        self.puzzles = {side: self._new_puzzle() for side in Side}
        self.state = GameState.PLAYING
        self.timers.every('cpu-loop', now, self.opponent.tick_interval, self.opponent.on_tick)
        logger.info(f"[start] mode=CPU player={self.player_id}")
        self._cue(SoundCue.START)
        self._notify()
        return True

    def cancel(self) -> bool:
        """Leave the waiting room. The server is told, but nothing waits for it."""
        if self.state is not GameState.WAITING:
            return False
        self.send(LeaveRoom(room_id=self.room_id, player_id=self.player_id))
        logger.info(f"[cancel] player={self.player_id} room={self.room_id}")
        self._reset()
        self._notify()
        return True

    def go_home(self) -> bool:
        if self.state is not GameState.RESULT:
            return False
        logger.info(f"[home] player={self.player_id} winner={self.winner_id}")
        self._reset()
        self._notify()
        return True

    def _finish(self, winner_id: str, message: Optional[str] = None) -> bool:
        if self.state is not GameState.PLAYING:
            return False
        self.state = GameState.RESULT
        self.winner_id = winner_id
        self.result_message = message
        self.feedback = None
        self.timers.cancel_all()
        logger.info(f"[finish] player={self.player_id} winner={winner_id}")
        self._cue(SoundCue.WIN if winner_id == self.player_id else SoundCue.LOSE)
        return True

    # ---- user intents ----

    def select_image(self, index: int, now: Optional[float] = None) -> bool:
        if self.state is not GameState.PLAYING:
            return False
        now = self._now(now)
        if self.rules.obstruction_locks_selection and self.obstruction_active(Side.LOCAL, now):
            return False
        if not self.puzzles[Side.LOCAL].toggle(index):
            return False
        self.opponent.on_local_toggle(index)
        self._notify()
        return True

    def verify(self, now: Optional[float] = None) -> Optional[Outcome]:
        """Submit the local selection.

        CPU matches are graded here and the outcome returned. ONLINE matches
        send a VERIFY and return None; the server answers with UPDATE_PATTERN
        or VERIFY_FAILED.
        """
        if self.state is not GameState.PLAYING:
            return None
        now = self._now(now)
        puzzle = self.puzzles[Side.LOCAL]
        if self.mode is Mode.ONLINE:
            self.opponent.on_local_verification(sorted(puzzle.selection))
            return None
        outcome = puzzle.verify()
        self._record(Side.LOCAL, outcome, now)
        self._notify()
        return outcome

    def refresh_puzzle(self, side: Side = Side.LOCAL, now: Optional[float] = None) -> bool:
        """Swap in a new challenge without scoring. CPU matches only."""
        if self.state is not GameState.PLAYING or self.mode is not Mode.CPU:
            return False
        self.puzzles[side] = self._new_puzzle(previous=self.puzzles.get(side))
        self.scoreboard.reset_combo(side)
        logger.info(f"[refresh] side={side.value}")
        self._notify()
        return True

    # ---- opponent-side transitions ----

    def opponent_toggle(self, index: int, now: Optional[float] = None) -> bool:
        if self.state is not GameState.PLAYING:
            return False
        if not self.puzzles[Side.REMOTE].toggle(index):
            return False
        self._notify()
        return True

    def opponent_verify(self, now: Optional[float] = None) -> Optional[Outcome]:
        if self.state is not GameState.PLAYING:
            return None
        outcome = self.puzzles[Side.REMOTE].verify()
        self._record(Side.REMOTE, outcome, self._now(now))
        self._notify()
        return outcome

    # ---- shared scoring path ----

    def _new_puzzle(self, previous: Optional[Puzzle] = None) -> Puzzle:
        return generate_puzzle(self.catalog, self.rng, self.rules.grid_size, previous=previous)

    def _record(
        self,
        side: Side,
        outcome: Outcome,
        now: float,
        replacement: Optional[Puzzle] = None,
        reported_score: Optional[int] = None,
    ) -> VerificationResult:
        result = self.scoreboard.apply_verification(side, outcome, reported_score)
        if outcome is Outcome.CORRECT:
            self.puzzles[side] = replacement or self._new_puzzle(previous=self.puzzles.get(side))
        else:
            self.puzzles[side].clear_selection()
        logger.info(
            f"[verify] side={side.value} outcome={outcome.value} score={result.score} "
            f"combo={self.scoreboard.combos[side]}"
        )
        if side is Side.LOCAL:
            self._show_feedback(outcome.value, now)
            self._cue(SoundCue.CORRECT if outcome is Outcome.CORRECT else SoundCue.WRONG)
        if result.obstruct_opponent:
            self._obstruct(side.other, now)
        if result.won:
            self._finish(self._id_of(side))
        return result

    def _id_of(self, side: Side) -> str:
        if side is Side.LOCAL:
            return self.player_id
        return (self.opponent.player_id if self.opponent else None) or UNKNOWN_OPPONENT_ID

    # ---- obstructions ----

    def obstruction_active(self, side: Side, now: Optional[float] = None) -> Optional[Effect]:
        return self.obstructions.active(side, self._now(now))

    def _obstruct(self, side: Side, now: float, effect: Optional[Effect] = None) -> Effect:
        if effect is None:
            effect = self.obstructions.apply_random_effect(side, now)
        else:
            self.obstructions.apply_effect(side, effect, now)
        expires_at = self.obstructions.states[side].expires_at
        self.timers.schedule(f"obstruction:{side.value}", expires_at, self._expire_obstructions)
        if side is Side.LOCAL:
            self._cue(SoundCue.OBSTRUCTION)
        return effect

    def _expire_obstructions(self, now: float) -> None:
        for side in self.obstructions.tick(now):
            logger.info(f"[obstruct-clear] side={side.value}")

    # ---- feedback pop-up ----

    def _show_feedback(self, kind: str, now: float) -> None:
        self.feedback = kind
        self.timers.schedule('feedback', now + self.rules.feedback_duration, self._dismiss_feedback)

    def _dismiss_feedback(self, now: float) -> None:
        self.feedback = None

    # ---- clock ----

    def tick(self, now: Optional[float] = None) -> int:
        """Run every timer that is due. Returns how many fired."""
        now = self._now(now)
        fired = self.timers.fire_due(now)
        cleared = self.obstructions.tick(now)
        if fired or cleared:
            self._notify()
        return fired

    # ---- inbound protocol ----

    def handle_message(self, frame: Any, now: Optional[float] = None) -> bool:
        """Apply one inbound frame. Returns True when state changed.

        Malformed frames are logged and dropped. CPU matches ignore the
        channel entirely.
        """
        if self.mode is not Mode.ONLINE:
            return False
        if isinstance(frame, tuple(self.HANDLERS)):
            message = frame
        else:
            try:
                message = decode(frame)
            except ProtocolError as exc:
                logger.warning(f"[protocol] dropped malformed frame: {exc}")
                return False
        name = self.HANDLERS.get(type(message))
        if name is None:
            logger.warning(f"[protocol] unexpected {message.TYPE} from server")
            return False
        changed = getattr(self, name)(message, self._now(now))
        if changed:
            self._notify()
        return changed

    def _on_room_assigned(self, msg: RoomAssigned, now: float) -> bool:
        if self.state is not GameState.WAITING:
            return False
        self.room_id = msg.room_id
        return True

    def _on_status_update(self, msg: StatusUpdate, now: float) -> bool:
        if self.state is not GameState.WAITING:
            return False
        self.status = msg.status
        return True

    def _on_game_start(self, msg: GameStart, now: float) -> bool:
        if self.state is not GameState.WAITING:
            return False
        self.puzzles = {
            Side.LOCAL: Puzzle.from_wire(self.catalog, msg.target, msg.images),
            Side.REMOTE: Puzzle.from_wire(
                self.catalog,
                msg.opponent_target or msg.target,
                msg.opponent_images or msg.images,
            ),
        }
        if msg.opponent_id:
            self.opponent.player_id = msg.opponent_id
        self.state = GameState.PLAYING
        logger.info(f"[start] mode=ONLINE player={self.player_id} room={self.room_id} opponent={msg.opponent_id}")
        self._cue(SoundCue.START)
        return True

    def _on_opponent_select(self, msg: OpponentSelect, now: float) -> bool:
        if self.state is not GameState.PLAYING or msg.player_id == self.player_id:
            return False
        if not self.opponent.player_id:
            self.opponent.player_id = msg.player_id
        return self.puzzles[Side.REMOTE].toggle(msg.image_index)

    def _on_update_pattern(self, msg: UpdatePattern, now: float) -> bool:
        if self.state is not GameState.PLAYING:
            return False
        return self._confirm_local(msg.target, msg.images, msg.score, now)

    def _confirm_local(self, target: str, images, score: Optional[int], now: float) -> bool:
        if score is not None and score <= self.scoreboard.scores[Side.LOCAL]:
            # Late frame from an earlier correct answer
            return False
        replacement = Puzzle.from_wire(self.catalog, target, images)
        if replacement.same_challenge(self.puzzles.get(Side.LOCAL)):
            return False
        self._record(Side.LOCAL, Outcome.CORRECT, now, replacement=replacement, reported_score=score)
        return True

    def _on_verify_failed(self, msg: VerifyFailed, now: float) -> bool:
        if self.state is not GameState.PLAYING:
            return False
        self._record(Side.LOCAL, Outcome.WRONG, now)
        return True

    def _on_opponent_update(self, msg: OpponentUpdate, now: float) -> bool:
        if self.state is not GameState.PLAYING:
            return False
        if msg.player_id and msg.player_id == self.player_id:
            # Our own progress relayed back
            current = self.puzzles.get(Side.LOCAL)
            target = msg.target or (current.target_label if current else '')
            return self._confirm_local(target, msg.images, msg.score, now)
        if msg.score <= self.scoreboard.scores[Side.REMOTE]:
            return False
        if msg.player_id:
            self.opponent.player_id = msg.player_id
        current = self.puzzles.get(Side.REMOTE)
        target = msg.target or (current.target_label if current else '')
        fresh = Puzzle.from_wire(self.catalog, target, msg.images)
        if not fresh.same_challenge(current):
            self.puzzles[Side.REMOTE] = fresh
        self.scoreboard.set_score(Side.REMOTE, msg.score)
        if self.scoreboard.has_won(Side.REMOTE):
            self._finish(self._id_of(Side.REMOTE))
        return True

    def _on_obstruction(self, msg: Obstruction, now: float) -> bool:
        if self.state is not GameState.PLAYING:
            return False
        effect = parse_effect(msg.effect)
        if effect is None:
            logger.warning(f"[protocol] unknown obstruction effect {msg.effect!r}")
            return False
        self._obstruct(Side.LOCAL, now, effect)
        return True

    def _on_game_finished(self, msg: GameFinished, now: float) -> bool:
        return self._finish(msg.winner_id, msg.message)

    # ---- outbound / observers ----

    def send(self, message: Message) -> None:
        if self._send is None:
            logger.debug(f"[send-skip] no channel for {message.TYPE}")
            return
        try:
            self._send(message)
        except Exception:
            # The transport reconnects on its own; a lost frame is not fatal here
            logger.exception(f"[send-failed] type={message.TYPE}")

    def add_listener(self, listener: Callable[[dict], None]) -> None:
        self._listeners.append(listener)

    def add_cue_listener(self, listener: Callable[[SoundCue], None]) -> None:
        self._cue_listeners.append(listener)

    def _notify(self) -> None:
        if not self._listeners:
            return
        snap = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snap)
            except Exception:
                logger.exception('[listener] snapshot listener failed')

    def _cue(self, cue: SoundCue) -> None:
        for listener in list(self._cue_listeners):
            try:
                listener(cue)
            except Exception:
                logger.exception(f"[listener] cue listener failed cue={cue.value}")

    def _side_snapshot(self, side: Side, now: float) -> dict:
        puzzle = self.puzzles.get(side)
        effect = self.obstructions.active(side, now)
        return {
            'puzzle': puzzle.to_dict() if puzzle else None,
            'score': self.scoreboard.scores[side],
            'combo': self.scoreboard.combos[side],
            'effect': effect.value if effect else None,
        }

    def snapshot(self, now: Optional[float] = None) -> dict:
        now = self._now(now)
        opponent = None
        if self.opponent is not None:
            opponent = self._side_snapshot(Side.REMOTE, now)
            opponent.update({'player_id': self.opponent.player_id, 'kind': self.opponent.kind})
        return {
            'state': self.state.value,
            'mode': self.mode.value if self.mode else None,
            'room_id': self.room_id,
            'player_id': self.player_id,
            'winner_id': self.winner_id,
            'is_winner': (self.winner_id == self.player_id) if self.winner_id else None,
            'result_message': self.result_message,
            'status': self.status,
            'feedback': self.feedback,
            'win_threshold': self.scoreboard.win_threshold,
            'local': self._side_snapshot(Side.LOCAL, now),
            'opponent': opponent,
        }
