from captcha_duel import db
from captcha_duel.config import Config
from captcha_duel.models import MatchPlayer, MatchRoom, generate_room_code
from captcha_duel.services.duel import referee
from captcha_duel.services.duel.catalog import default_catalog
from captcha_duel.services.duel.protocol import GameStart, RoomAssigned, StatusUpdate
from captcha_duel.services.duel.session import DuelRules


def test_index(client):
    res = client.get('/')
    assert res.status_code == 200
    assert b'running' in res.data


def test_unknown_room_is_404(client):
    res = client.get('/api/rooms/NOPE/state')
    assert res.status_code == 404


def test_room_state_reports_players_and_rules(client):
    room = MatchRoom(room_code='ABC123', status='waiting')
    room.players.append(MatchPlayer(player_id='alice', sid='s1', score=2, combo=1))
    db.session.add(room)
    db.session.commit()

    res = client.get('/api/rooms/abc123/state')
    assert res.status_code == 200
    data = res.get_json()
    assert data['room_code'] == 'ABC123'
    assert data['players'][0]['player_id'] == 'alice'
    assert data['players'][0]['score'] == 2
    assert data['rules']['win_threshold'] == 5
    assert data['rules']['grid_size'] == 9


def test_recent_lists_finished_matches(client):
    done = MatchRoom(room_code='DONE1', status='finished', winner_id='bob', finished_at=10.0)
    done.players.append(MatchPlayer(player_id='bob', score=5))
    live = MatchRoom(room_code='LIVE1', status='in_progress')
    db.session.add_all([done, live])
    db.session.commit()

    data = client.get('/api/rooms/recent').get_json()
    assert [r['room_code'] for r in data] == ['DONE1']
    assert data[0]['scores'] == {'bob': 5}


def test_referee_join_without_code_assigns_one(flask_app):
    room, outbox = referee.join(None, 'alice', 'sid-a', DuelRules())
    assert len(room.room_code) == 6
    assert outbox == [
        ('sid-a', RoomAssigned(room_id=room.room_code)),
        ('sid-a', StatusUpdate(status='waiting_for_opponent')),
    ]
    assert generate_room_code() != room.room_code


def test_referee_rejoin_resends_board(flask_app):
    rules = DuelRules()
    referee.join('r1', 'alice', 'sid-a', rules)
    referee.join('r1', 'bob', 'sid-b', rules)
    _, outbox = referee.join('r1', 'alice', 'sid-a2', rules)
    assert outbox[0] == ('sid-a2', RoomAssigned(room_id='R1'))
    sid, start = outbox[1]
    assert sid == 'sid-a2'
    assert isinstance(start, GameStart)
    assert start.opponent_id == 'bob'


def test_finished_room_code_can_be_reused(flask_app):
    rules = DuelRules(win_threshold=1)
    referee.join('again', 'alice', 'sid-a', rules)
    referee.join('again', 'bob', 'sid-b', rules)
    room = MatchRoom.query.filter_by(room_code='AGAIN').first()
    alice = room.player('alice')
    correct = default_catalog.correct_indices(alice.image_list, alice.target)
    referee.grade('again', 'alice', correct, rules)
    assert room.status == 'finished'

    room, outbox = referee.join('again', 'carol', 'sid-c', rules)
    assert room.status == 'waiting'
    assert [p.player_id for p in room.players] == ['carol']
    assert room.winner_id is None


def test_default_config_ships_inside_the_package():
    rules = DuelRules.from_mapping(Config)
    assert rules.win_threshold == 5
    assert rules.combo_threshold == 2
    assert rules.grid_size == 9
    assert rules.public_room_count == 5
