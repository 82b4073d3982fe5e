"""Server-side authority for ONLINE matches.

The referee pairs players into rooms, deals puzzles, grades VERIFY requests
and decides obstructions and the winner. Functions here only touch the
database and return an outbox of ``(sid, message)`` pairs; the socket layer
is responsible for delivering them.
"""

import random
import time
from typing import Iterable, List, Optional, Tuple

from captcha_duel import db
from captcha_duel.models import MatchPlayer, MatchRoom, generate_room_code

from .catalog import ImageCatalog, default_catalog
from .obstruction import random_effect
from .protocol import (
    GameFinished, GameStart, Message, Obstruction, OpponentSelect,
    OpponentUpdate, RoomAssigned, StatusUpdate, UpdatePattern, VerifyFailed,
)
from .puzzle import Outcome, Puzzle, generate_puzzle
from .scoring import advance_combo
from .session import DuelRules

Outbox = List[Tuple[str, Message]]

WIN_MESSAGE = 'You are Human!'
FORFEIT_MESSAGE = 'Opponent left the match'

_rng = random.Random()


def _puzzle_of(player: MatchPlayer, catalog: ImageCatalog) -> Puzzle:
    return Puzzle.from_wire(catalog, player.target or '', player.image_list)


def _deal(player: MatchPlayer, rules: DuelRules, catalog: ImageCatalog, previous: Optional[Puzzle] = None) -> Puzzle:
    puzzle = generate_puzzle(catalog, _rng, rules.grid_size, previous=previous)
    player.target = puzzle.target_label
    player.image_list = puzzle.images
    return puzzle


def _game_start_for(player: MatchPlayer, opponent: MatchPlayer) -> GameStart:
    return GameStart(
        target=player.target,
        images=tuple(player.image_list),
        opponent_images=tuple(opponent.image_list),
        opponent_target=opponent.target,
        opponent_id=opponent.player_id,
    )


def _finish(room: MatchRoom, winner_id: str, message: str) -> Outbox:
    room.status = 'finished'
    room.winner_id = winner_id
    room.finished_at = time.time()
    finished = GameFinished(winner_id=winner_id, message=message)
    return [(p.sid, finished) for p in room.players if p.sid and p.connected]


def _start(room: MatchRoom, rules: DuelRules, catalog: ImageCatalog) -> Outbox:
    for p in room.players:
        p.score = 0
        p.combo = 0
        _deal(p, rules, catalog)
    room.status = 'in_progress'
    a, b = room.players[0], room.players[1]
    return [(a.sid, _game_start_for(a, b)), (b.sid, _game_start_for(b, a))]


def join(room_code: Optional[str], player_id: str, sid: str, rules: DuelRules,
         catalog: ImageCatalog = default_catalog) -> Tuple[MatchRoom, Outbox]:
    code = (room_code or generate_room_code()).upper()
    room = MatchRoom.query.filter_by(room_code=code).first()
    if room is None:
        room = MatchRoom(room_code=code, status='waiting')
        db.session.add(room)
    elif room.status == 'finished':
        # Reuse the code for a rematch
        room.players.clear()
        room.status = 'waiting'
        room.winner_id = None
        room.finished_at = None
        db.session.flush()

    outbox: Outbox = []
    player = room.player(player_id)
    if player is not None:
        player.sid = sid
        player.connected = True
        outbox.append((sid, RoomAssigned(room_id=code)))
        if room.status == 'in_progress':
            opponent = room.opponent_of(player_id)
            if opponent is not None:
                outbox.append((sid, _game_start_for(player, opponent)))
        else:
            outbox.append((sid, StatusUpdate(status='waiting_for_opponent')))
        db.session.commit()
        return room, outbox

    if len(room.players) >= 2:
        db.session.commit()
        return room, [(sid, StatusUpdate(status='room_full'))]

    room.players.append(MatchPlayer(player_id=player_id, sid=sid, connected=True, score=0, combo=0))
    outbox.append((sid, RoomAssigned(room_id=code)))
    if len(room.players) == 2:
        outbox += _start(room, rules, catalog)
    else:
        outbox.append((sid, StatusUpdate(status='waiting_for_opponent')))
    db.session.commit()
    return room, outbox


def select(room_code: str, player_id: str, index: int) -> Outbox:
    room = MatchRoom.query.filter_by(room_code=room_code.upper()).first()
    if room is None or room.status != 'in_progress':
        return []
    player = room.player(player_id)
    opponent = room.opponent_of(player_id)
    if player is None or opponent is None or not 0 <= index < len(player.image_list):
        return []
    return [(opponent.sid, OpponentSelect(player_id=player_id, image_index=index))]


def grade(room_code: str, player_id: str, selected: Iterable[int], rules: DuelRules,
          catalog: ImageCatalog = default_catalog) -> Outbox:
    """Grade one VERIFY. Stale requests (room gone or finished) yield nothing."""
    room = MatchRoom.query.filter_by(room_code=room_code.upper()).first()
    if room is None or room.status != 'in_progress':
        return []
    player = room.player(player_id)
    if player is None:
        return []
    opponent = room.opponent_of(player_id)

    puzzle = _puzzle_of(player, catalog)
    for index in set(selected):
        puzzle.toggle(index)
    outcome = puzzle.verify()
    player.combo, obstruct = advance_combo(player.combo or 0, outcome, rules.combo_threshold)

    outbox: Outbox = []
    if outcome is Outcome.WRONG:
        outbox.append((player.sid, VerifyFailed()))
        db.session.commit()
        return outbox

    player.score = (player.score or 0) + 1
    fresh = _deal(player, rules, catalog, previous=puzzle)
    outbox.append((player.sid, UpdatePattern(target=fresh.target_label, images=fresh.images, score=player.score)))
    if opponent is not None:
        outbox.append((opponent.sid, OpponentUpdate(
            images=fresh.images, score=player.score, target=fresh.target_label, player_id=player_id,
        )))
        if obstruct:
            outbox.append((opponent.sid, Obstruction(effect=random_effect(_rng).value)))
    if player.score >= rules.win_threshold:
        outbox += _finish(room, player_id, WIN_MESSAGE)
    db.session.commit()
    return outbox


def _drop(room: MatchRoom, player: MatchPlayer) -> Outbox:
    if room.status == 'waiting':
        room.players.remove(player)
        return []
    player.connected = False
    if room.status == 'in_progress':
        opponent = room.opponent_of(player.player_id)
        if opponent is not None:
            return _finish(room, opponent.player_id, FORFEIT_MESSAGE)
    return []


def leave(room_code: str, player_id: str) -> Outbox:
    room = MatchRoom.query.filter_by(room_code=room_code.upper()).first()
    player = room.player(player_id) if room else None
    if player is None:
        return []
    outbox = _drop(room, player)
    db.session.commit()
    return outbox


def disconnect(sid: str) -> Outbox:
    player = MatchPlayer.query.filter_by(sid=sid, connected=True).first()
    if player is None:
        return []
    outbox = _drop(player.room, player)
    db.session.commit()
    return outbox
