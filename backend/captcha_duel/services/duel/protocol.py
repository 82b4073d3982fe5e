"""Wire protocol for the duel channel.

Every frame is a JSON object ``{"type": ..., "payload": {...}}``. Each message
kind is a small frozen dataclass; ``encode`` and ``decode`` are the only places
that know about the envelope.
"""

import json
from dataclasses import dataclass, fields
from typing import Any, Dict, Optional, Tuple, Type, Union


class ProtocolError(ValueError):
    """Raised when an inbound frame cannot be turned into a message."""


@dataclass(frozen=True)
class JoinRoom:
    TYPE = 'JOIN_ROOM'
    room_id: str
    player_id: str


@dataclass(frozen=True)
class LeaveRoom:
    TYPE = 'LEAVE_ROOM'
    room_id: str
    player_id: str


@dataclass(frozen=True)
class RoomAssigned:
    TYPE = 'ROOM_ASSIGNED'
    room_id: str


@dataclass(frozen=True)
class StatusUpdate:
    TYPE = 'STATUS_UPDATE'
    status: Optional[str] = None


@dataclass(frozen=True)
class GameStart:
    TYPE = 'GAME_START'
    target: str
    images: Tuple[str, ...]
    opponent_images: Optional[Tuple[str, ...]] = None
    opponent_target: Optional[str] = None
    opponent_id: Optional[str] = None


@dataclass(frozen=True)
class SelectImage:
    TYPE = 'SELECT_IMAGE'
    room_id: str
    player_id: str
    image_index: int


@dataclass(frozen=True)
class OpponentSelect:
    TYPE = 'OPPONENT_SELECT'
    player_id: str
    image_index: int


@dataclass(frozen=True)
class Verify:
    TYPE = 'VERIFY'
    room_id: str
    player_id: str
    selected_indices: Tuple[int, ...]


@dataclass(frozen=True)
class UpdatePattern:
    TYPE = 'UPDATE_PATTERN'
    target: str
    images: Tuple[str, ...]
    score: Optional[int] = None


@dataclass(frozen=True)
class VerifyFailed:
    TYPE = 'VERIFY_FAILED'


@dataclass(frozen=True)
class OpponentUpdate:
    TYPE = 'OPPONENT_UPDATE'
    images: Tuple[str, ...]
    score: int
    target: Optional[str] = None
    player_id: Optional[str] = None


@dataclass(frozen=True)
class Obstruction:
    TYPE = 'OBSTRUCTION'
    effect: str


@dataclass(frozen=True)
class GameFinished:
    TYPE = 'GAME_FINISHED'
    winner_id: str
    message: Optional[str] = None


Message = Union[
    JoinRoom, LeaveRoom, RoomAssigned, StatusUpdate, GameStart, SelectImage,
    OpponentSelect, Verify, UpdatePattern, VerifyFailed, OpponentUpdate,
    Obstruction, GameFinished,
]

# Client -> server
OUTBOUND: Tuple[Type, ...] = (JoinRoom, LeaveRoom, SelectImage, Verify)
# Server -> client
INBOUND: Tuple[Type, ...] = (
    RoomAssigned, StatusUpdate, GameStart, OpponentSelect, UpdatePattern,
    VerifyFailed, OpponentUpdate, Obstruction, GameFinished,
)

MESSAGE_TYPES: Dict[str, Type] = {cls.TYPE: cls for cls in OUTBOUND + INBOUND}

# Field name -> expected shape. Anything not listed is a plain string.
_INT_FIELDS = {'image_index', 'score'}
_STR_LIST_FIELDS = {'images', 'opponent_images'}
_INT_LIST_FIELDS = {'selected_indices'}


def _to_wire(value: Any) -> Any:
    if isinstance(value, tuple):
        return list(value)
    return value


def encode(message: Message) -> str:
    payload = {f.name: _to_wire(getattr(message, f.name)) for f in fields(message)}
    payload = {k: v for k, v in payload.items() if v is not None}
    return json.dumps({'type': message.TYPE, 'payload': payload})


def _coerce(name: str, value: Any) -> Any:
    if name in _INT_FIELDS:
        if isinstance(value, bool) or not isinstance(value, int):
            raise ProtocolError(f'{name} must be an integer')
        return value
    if name in _STR_LIST_FIELDS:
        if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
            raise ProtocolError(f'{name} must be a list of strings')
        return tuple(value)
    if name in _INT_LIST_FIELDS:
        if not isinstance(value, list) or any(isinstance(v, bool) or not isinstance(v, int) for v in value):
            raise ProtocolError(f'{name} must be a list of integers')
        return tuple(value)
    if not isinstance(value, str):
        raise ProtocolError(f'{name} must be a string')
    return value


def decode(frame: Union[str, bytes, Dict[str, Any]]) -> Message:
    """Parse a text frame (or an already-parsed envelope) into a message.

    Raises ProtocolError for anything that is not a well-formed envelope of a
    known type. Unknown payload keys are ignored so newer peers can add fields.
    """
    if isinstance(frame, (str, bytes)):
        try:
            frame = json.loads(frame)
        except ValueError as exc:
            raise ProtocolError(f'invalid JSON: {exc}') from exc
    if not isinstance(frame, dict):
        raise ProtocolError('envelope must be an object')
    msg_type = frame.get('type')
    cls = MESSAGE_TYPES.get(msg_type)
    if cls is None:
        raise ProtocolError(f'unknown message type: {msg_type!r}')
    payload = frame.get('payload')
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ProtocolError('payload must be an object')

    kwargs = {}
    for f in fields(cls):
        if f.name not in payload or payload[f.name] is None:
            continue
        kwargs[f.name] = _coerce(f.name, payload[f.name])
    try:
        return cls(**kwargs)
    except TypeError as exc:
        raise ProtocolError(f'{msg_type}: missing field ({exc})') from exc
