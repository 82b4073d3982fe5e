import os
import sys
import random
import pytest

# Ensure the backend root (containing the `captcha_duel` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from captcha_duel import create_app, db, socketio
from captcha_duel.services.duel.catalog import CatalogImage, ImageCatalog


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    CREATE_TABLES_ON_START = False
    WIN_THRESHOLD = 5
    COMBO_THRESHOLD = 2
    GRID_SIZE = 9


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        # Ensure models are imported so tables are created
        import captcha_duel.models  # noqa: F401
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def sio_client(flask_app):
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=flask_app.test_client(),
        namespace='/ws'
    )
    yield test_client
    try:
        test_client.disconnect(namespace='/ws')
    except Exception:
        pass


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds
        return self.now


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def rng():
    return random.Random(1234)


@pytest.fixture()
def small_catalog():
    """Two labels, four matching images each, plus plain fillers."""
    images = [CatalogImage(f'cat{i}.png', frozenset({'cat'})) for i in range(4)]
    images += [CatalogImage(f'dog{i}.png', frozenset({'dog'})) for i in range(4)]
    images += [CatalogImage(f'tree{i}.png', frozenset({'tree'})) for i in range(6)]
    return ImageCatalog(images, {'CATS': 'cat', 'DOGS': 'dog'})
