from captcha_duel import db
import json
import time
import string
import random

class MatchRoom(db.Model):
    __tablename__ = 'match_room'
    id = db.Column(db.Integer, primary_key=True)
    room_code = db.Column(db.String(64), unique=True, nullable=False, index=True)
    status = db.Column(db.String(32), default='waiting', nullable=False)  # waiting, in_progress, finished
    winner_id = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.Float, default=time.time)
    finished_at = db.Column(db.Float, nullable=True)
    players = db.relationship('MatchPlayer', back_populates='room', cascade='all, delete-orphan', order_by='MatchPlayer.id')

    def player(self, player_id):
        for p in self.players:
            if p.player_id == player_id:
                return p
        return None

    def opponent_of(self, player_id):
        for p in self.players:
            if p.player_id != player_id:
                return p
        return None

    def to_dict(self):
        return {
            'id': self.id,
            'room_code': self.room_code,
            'status': self.status,
            'winner_id': self.winner_id,
            'created_at': self.created_at,
            'finished_at': self.finished_at,
            'players': [p.to_dict() for p in self.players],
        }

class MatchPlayer(db.Model):
    __tablename__ = 'match_player'
    id = db.Column(db.Integer, primary_key=True)
    room_id = db.Column(db.Integer, db.ForeignKey('match_room.id'), nullable=False)
    player_id = db.Column(db.String(64), nullable=False)
    sid = db.Column(db.String(128), nullable=True)
    connected = db.Column(db.Boolean, default=True, nullable=False)
    score = db.Column(db.Integer, default=0, nullable=False)
    combo = db.Column(db.Integer, default=0, nullable=False)
    target = db.Column(db.String(64), nullable=True)
    images = db.Column(db.Text, nullable=True)  # JSON-encoded list of image urls
    room = db.relationship('MatchRoom', back_populates='players')

    @property
    def image_list(self):
        try:
            return json.loads(self.images) if self.images else []
        except ValueError:
            return []

    @image_list.setter
    def image_list(self, value):
        self.images = json.dumps(list(value))

    def to_dict(self):
        return {
            'player_id': self.player_id,
            'connected': self.connected,
            'score': self.score,
            'combo': self.combo,
            'target': self.target,
            'images': self.image_list,
        }

def generate_room_code(length=6):
    """Generate an unused room code for players who don't bring one."""
    while True:
        code = ''.join(random.choices(string.ascii_uppercase + string.digits, k=length))
        if not MatchRoom.query.filter_by(room_code=code).first():
            return code
