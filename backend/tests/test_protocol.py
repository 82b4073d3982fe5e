import json

import pytest

from captcha_duel.services.duel import protocol
from captcha_duel.services.duel.protocol import (
    GameStart, JoinRoom, ProtocolError, StatusUpdate, Verify, VerifyFailed, decode, encode,
)


def test_encode_uses_type_and_payload_envelope():
    frame = json.loads(encode(JoinRoom(room_id='123', player_id='p_1')))
    assert frame == {'type': 'JOIN_ROOM', 'payload': {'room_id': '123', 'player_id': 'p_1'}}


def test_encode_drops_absent_optionals():
    frame = json.loads(encode(GameStart(target='CARS', images=('a', 'b'))))
    assert frame['payload'] == {'target': 'CARS', 'images': ['a', 'b']}


def test_decode_server_frames():
    msg = decode('{"type": "STATUS_UPDATE", "payload": {"status": "waiting_for_opponent"}}')
    assert msg == StatusUpdate(status='waiting_for_opponent')
    assert decode({'type': 'VERIFY_FAILED'}) == VerifyFailed()
    verify = decode({'type': 'VERIFY', 'payload': {'room_id': 'r', 'player_id': 'p', 'selected_indices': [3, 1]}})
    assert verify == Verify(room_id='r', player_id='p', selected_indices=(3, 1))


def test_decode_ignores_unknown_payload_keys():
    msg = decode({'type': 'GAME_FINISHED', 'payload': {'winner_id': 'p_2', 'extra': 1}})
    assert msg.winner_id == 'p_2'


@pytest.mark.parametrize('frame', [
    'not json',
    '[1, 2]',
    {'type': 'NOPE', 'payload': {}},
    {'payload': {}},
    {'type': 'OPPONENT_SELECT', 'payload': {'player_id': 'p'}},
    {'type': 'OPPONENT_SELECT', 'payload': {'player_id': 'p', 'image_index': '3'}},
    {'type': 'GAME_START', 'payload': {'target': 'CARS', 'images': 'a,b'}},
    {'type': 'GAME_START', 'payload': 'oops'},
    {'type': 'VERIFY', 'payload': {'room_id': 'r', 'player_id': 'p', 'selected_indices': [True]}},
])
def test_malformed_frames_raise_protocol_error(frame):
    with pytest.raises(ProtocolError):
        decode(frame)


def test_every_type_is_registered_once():
    types = [cls.TYPE for cls in protocol.OUTBOUND + protocol.INBOUND]
    assert len(types) == len(set(types))
    assert set(protocol.MESSAGE_TYPES) == set(types)
