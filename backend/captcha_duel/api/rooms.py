from flask import Blueprint, jsonify, current_app
from captcha_duel.models import MatchRoom
from captcha_duel.services.duel.session import DuelRules


rooms = Blueprint('rooms', __name__)


@rooms.route('/recent', methods=['GET'])
def recent_matches():
    finished = (
        MatchRoom.query.filter_by(status='finished')
        .order_by(MatchRoom.finished_at.desc())
        .limit(20)
        .all()
    )
    return jsonify([
        {
            'room_code': r.room_code,
            'winner_id': r.winner_id,
            'finished_at': r.finished_at,
            'scores': {p.player_id: p.score for p in r.players},
        }
        for r in finished
    ])


@rooms.route('/<string:room_code>/state', methods=['GET'])
def get_room_state(room_code):
    room = MatchRoom.query.filter_by(room_code=room_code.upper()).first_or_404()
    payload = room.to_dict()
    # Rules so clients can render progress bars and countdowns
    rules = DuelRules.from_mapping(current_app.config)
    payload['rules'] = {
        'win_threshold': rules.win_threshold,
        'combo_threshold': rules.combo_threshold,
        'grid_size': rules.grid_size,
        'obstruction_duration': rules.obstruction_duration,
    }
    return jsonify(payload)
