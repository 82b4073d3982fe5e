from captcha_duel import socketio, socketio_events
from captcha_duel.models import MatchRoom
from captcha_duel.services.duel.catalog import default_catalog
from captcha_duel.services.duel.protocol import (
    GameFinished, GameStart, JoinRoom, LeaveRoom, Obstruction, OpponentSelect,
    OpponentUpdate, RoomAssigned, SelectImage, StatusUpdate, UpdatePattern,
    Verify, VerifyFailed, decode, encode,
)
from captcha_duel.services.duel.scoring import Side
from captcha_duel.services.duel.session import GameState, Session


def _send(client, message):
    client.emit('message', encode(message), namespace='/ws')


def _frames(client):
    return [decode(pkt['args']) for pkt in client.get_received('/ws') if pkt['name'] == 'message']


def _other_client(flask_app):
    return socketio.test_client(flask_app, namespace='/ws')


def _correct(room_code, player_id):
    player = MatchRoom.query.filter_by(room_code=room_code).first().player(player_id)
    return sorted(default_catalog.correct_indices(player.image_list, player.target))


def _pair(flask_app, sio_client, room='duel1'):
    other = _other_client(flask_app)
    _send(sio_client, JoinRoom(room_id=room, player_id='alice'))
    _send(other, JoinRoom(room_id=room, player_id='bob'))
    return other


def test_socket_connect(sio_client):
    # Ensure we are connected to /ws
    if not sio_client.is_connected('/ws'):
        sio_client.connect(namespace='/ws')
    assert sio_client.is_connected('/ws')
    received = sio_client.get_received('/ws')
    assert any(pkt['name'] == 'connected' for pkt in received)


def test_first_joiner_waits(sio_client):
    sio_client.get_received('/ws')
    _send(sio_client, JoinRoom(room_id='lobby1', player_id='alice'))
    assert _frames(sio_client) == [RoomAssigned(room_id='LOBBY1'), StatusUpdate(status='waiting_for_opponent')]
    room = MatchRoom.query.filter_by(room_code='LOBBY1').first()
    assert room.status == 'waiting'


def test_second_joiner_starts_match(flask_app, sio_client):
    sio_client.get_received('/ws')
    other = _pair(flask_app, sio_client)
    alice = _frames(sio_client)
    bob = _frames(other)

    start_a = [f for f in alice if isinstance(f, GameStart)]
    start_b = [f for f in bob if isinstance(f, GameStart)]
    assert len(start_a) == 1 and len(start_b) == 1
    assert start_a[0].opponent_id == 'bob'
    assert start_b[0].opponent_id == 'alice'
    # Each side sees the other's board as its opponent board
    assert start_a[0].opponent_images == start_b[0].images
    assert len(start_a[0].images) == 9
    assert MatchRoom.query.filter_by(room_code='DUEL1').first().status == 'in_progress'


def test_third_joiner_is_turned_away(flask_app, sio_client):
    _pair(flask_app, sio_client)
    third = _other_client(flask_app)
    third.get_received('/ws')
    _send(third, JoinRoom(room_id='duel1', player_id='carol'))
    assert _frames(third) == [StatusUpdate(status='room_full')]


def test_turned_away_joiner_is_not_tracked(flask_app, sio_client):
    other = _pair(flask_app, sio_client)
    third = _other_client(flask_app)
    tracked = len(socketio_events._sid_to_ctx)
    _send(third, JoinRoom(room_id='duel1', player_id='carol'))
    assert len(socketio_events._sid_to_ctx) == tracked

    sio_client.get_received('/ws')
    other.get_received('/ws')
    third.disconnect(namespace='/ws')
    assert _frames(sio_client) == []
    assert _frames(other) == []
    assert MatchRoom.query.filter_by(room_code='DUEL1').first().status == 'in_progress'


def test_select_is_relayed_to_opponent(flask_app, sio_client):
    other = _pair(flask_app, sio_client)
    other.get_received('/ws')
    _send(sio_client, SelectImage(room_id='duel1', player_id='alice', image_index=4))
    assert _frames(other) == [OpponentSelect(player_id='alice', image_index=4)]
    # Out of range indices are dropped
    _send(sio_client, SelectImage(room_id='duel1', player_id='alice', image_index=40))
    assert _frames(other) == []


def test_wrong_verify_fails(flask_app, sio_client):
    _pair(flask_app, sio_client)
    sio_client.get_received('/ws')
    _send(sio_client, Verify(room_id='duel1', player_id='alice', selected_indices=()))
    assert _frames(sio_client) == [VerifyFailed()]


def test_correct_verify_updates_both_players(flask_app, sio_client):
    other = _pair(flask_app, sio_client)
    sio_client.get_received('/ws')
    other.get_received('/ws')

    _send(sio_client, Verify(room_id='duel1', player_id='alice', selected_indices=tuple(_correct('DUEL1', 'alice'))))
    mine = _frames(sio_client)
    theirs = _frames(other)
    assert len(mine) == 1 and isinstance(mine[0], UpdatePattern)
    assert mine[0].score == 1
    assert theirs == [OpponentUpdate(images=mine[0].images, score=1, target=mine[0].target, player_id='alice')]

    # Second in a row obstructs the opponent
    _send(sio_client, Verify(room_id='duel1', player_id='alice', selected_indices=tuple(_correct('DUEL1', 'alice'))))
    theirs = _frames(other)
    assert any(isinstance(f, Obstruction) for f in theirs)


def test_fifth_correct_finishes_match(flask_app, sio_client, client):
    other = _pair(flask_app, sio_client)
    for _ in range(5):
        _send(sio_client, Verify(room_id='duel1', player_id='alice', selected_indices=tuple(_correct('DUEL1', 'alice'))))
    assert GameFinished(winner_id='alice', message='You are Human!') in _frames(sio_client)
    assert GameFinished(winner_id='alice', message='You are Human!') in _frames(other)

    state = client.get('/api/rooms/duel1/state').get_json()
    assert state['status'] == 'finished'
    assert state['winner_id'] == 'alice'
    scores = {p['player_id']: p['score'] for p in state['players']}
    assert scores == {'alice': 5, 'bob': 0}

    # Late verify on a finished room is ignored
    other.get_received('/ws')
    _send(other, Verify(room_id='duel1', player_id='bob', selected_indices=()))
    assert _frames(other) == []


def test_disconnect_mid_match_forfeits(flask_app, sio_client):
    other = _pair(flask_app, sio_client)
    other.get_received('/ws')
    sio_client.disconnect(namespace='/ws')
    assert _frames(other) == [GameFinished(winner_id='bob', message='Opponent left the match')]


def test_leave_while_waiting_frees_the_seat(flask_app, sio_client):
    _send(sio_client, JoinRoom(room_id='solo', player_id='alice'))
    _send(sio_client, LeaveRoom(room_id='solo', player_id='alice'))
    room = MatchRoom.query.filter_by(room_code='SOLO').first()
    assert room.players == []


def test_malformed_frame_gets_error(sio_client):
    sio_client.get_received('/ws')
    sio_client.emit('message', '{"type": "VERIFY"}', namespace='/ws')
    received = sio_client.get_received('/ws')
    assert [pkt['name'] for pkt in received] == ['error']


def test_server_frames_are_rejected_from_clients(sio_client):
    sio_client.get_received('/ws')
    _send(sio_client, GameFinished(winner_id='alice'))
    received = sio_client.get_received('/ws')
    assert [pkt['name'] for pkt in received] == ['error']


def test_client_session_plays_against_server(flask_app, sio_client):
    """Drive a real client Session through the relay, feeding frames back by hand."""
    other = _other_client(flask_app)
    session = Session(player_id='alice', send=lambda m: _send(sio_client, m))
    sio_client.get_received('/ws')

    def pump():
        for pkt in sio_client.get_received('/ws'):
            if pkt['name'] == 'message':
                session.handle_message(pkt['args'])

    session.join_room('e2e')
    _send(other, JoinRoom(room_id='e2e', player_id='bob'))
    pump()
    assert session.state is GameState.PLAYING
    assert session.room_id == 'E2E'
    assert session.opponent.player_id == 'bob'

    for idx in sorted(session.puzzles[Side.LOCAL].correct_indices):
        session.select_image(idx)
    session.verify()
    pump()
    assert session.scoreboard.scores[Side.LOCAL] == 1
    assert session.puzzles[Side.LOCAL].selection == set()
