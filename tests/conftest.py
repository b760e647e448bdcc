import pytest

from marksync import create_app
from marksync.config import TestConfig
from marksync.extensions import db


class RecordingNotifier:
    def __init__(self):
        self.events = []

    def publish(self, user_id, event, payload):
        self.events.append((user_id, event, payload))

    def names(self):
        return [event for _, event, _ in self.events]


@pytest.fixture
def app():
    app = create_app(TestConfig)
    with app.app_context():
        db.drop_all()
        db.create_all()
    yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def notifier():
    return RecordingNotifier()
