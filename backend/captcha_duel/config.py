import os

class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'you-will-never-guess'
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or 'sqlite:///captcha_duel.db'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    # Match rules
    WIN_THRESHOLD = int(os.environ.get('WIN_THRESHOLD', '5'))
    COMBO_THRESHOLD = int(os.environ.get('COMBO_THRESHOLD', '2'))
    GRID_SIZE = int(os.environ.get('GRID_SIZE', '9'))
    # Obstruction lifetime (seconds)
    OBSTRUCTION_DURATION_SEC = float(os.environ.get('OBSTRUCTION_DURATION_SEC', '3'))
    # Lock the local player's clicks while obstructed. Off keeps effects cosmetic.
    OBSTRUCTION_LOCKS_SELECTION = os.environ.get('OBSTRUCTION_LOCKS_SELECTION', '0') == '1'
    # CPU opponent tuning
    CPU_TICK_MS = int(os.environ.get('CPU_TICK_MS', '800'))
    CPU_ACCURACY = float(os.environ.get('CPU_ACCURACY', '0.7'))
    CPU_COMMIT_RATE = float(os.environ.get('CPU_COMMIT_RATE', '0.5'))
    CPU_MISTAKE_RATE = float(os.environ.get('CPU_MISTAKE_RATE', '0.0'))
    # Feedback pop-up hold time (seconds)
    FEEDBACK_DURATION_SEC = float(os.environ.get('FEEDBACK_DURATION_SEC', '1.0'))
    # Number of public rooms used by random matchmaking
    PUBLIC_ROOM_COUNT = int(os.environ.get('PUBLIC_ROOM_COUNT', '5'))
