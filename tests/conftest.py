from __future__ import annotations

from pathlib import Path

import fakeredis
import pytest

import sys

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from recipebox import create_app
from recipebox.extensions import db
from recipebox.models import User

TEST_PASSWORD = "Passw0rd!"


@pytest.fixture
def session_store():
    return fakeredis.FakeRedis()


@pytest.fixture
def app(tmp_path: Path, session_store):
    app = create_app(
        {
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'test.db'}",
            "SESSION_STORE": session_store,
            "ADMIN_USERNAME": "admin",
            "ADMIN_PASSWORD": "Adm1n!pass",
            "LOG_TO_FILE": False,
            "LOG_TO_STDOUT": False,
        }
    )
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


def register(client, username: str, password: str = TEST_PASSWORD):
    return client.post("/register", data={"username": username, "password": password})


def login(client, username: str, password: str = TEST_PASSWORD):
    return client.post("/login", data={"username": username, "password": password})


@pytest.fixture
def register_and_login(app):
    def _factory(username: str = "alice", password: str = TEST_PASSWORD):
        client = app.test_client()
        response = register(client, username, password)
        assert response.status_code == 302
        response = login(client, username, password)
        assert response.status_code == 302
        assert response.headers["Location"] == "/"
        return client

    return _factory


@pytest.fixture
def admin_client(app):
    client = app.test_client()
    response = login(client, "admin", "Adm1n!pass")
    assert response.headers["Location"] == "/"
    return client


def user_id_for(app, username: str) -> int:
    with app.app_context():
        return User.query.filter_by(username=username).first().id
