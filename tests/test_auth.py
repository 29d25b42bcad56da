import logging

import pytest
from redis.exceptions import RedisError
from sqlalchemy.exc import OperationalError

from recipebox.extensions import db
from recipebox.models import User

from conftest import TEST_PASSWORD, login, register


def _user_count(app):
    with app.app_context():
        return User.query.count()


def test_register_then_login_flow(client):
    response = register(client, "alice", "Passw0rd!")
    assert response.status_code == 302
    assert response.headers["Location"] == "/login"

    page = client.get("/login")
    assert "Registration successful. Please log in." in page.get_data(as_text=True)

    response = login(client, "alice", "Passw0rd!")
    assert response.status_code == 302
    assert response.headers["Location"] == "/"

    home = client.get("/")
    assert home.status_code == 200
    assert "Recipes for alice" in home.get_data(as_text=True)


def test_register_stores_hash_not_password(app, client):
    register(client, "alice")
    with app.app_context():
        user = User.query.filter_by(username="alice").first()
        assert user is not None
        assert user.password_hash != TEST_PASSWORD
        assert user.check_password(TEST_PASSWORD)
        assert not user.is_admin


@pytest.mark.parametrize(
    "password",
    [
        "passw0rd!",  # no uppercase
        "PASSW0RD!",  # no lowercase
        "Password!",  # no digit
        "Passw0rdX",  # no symbol
        "Pa0!",  # too short
        "Passw0rd!#",  # symbol outside the allowed set
    ],
)
def test_register_rejects_weak_passwords(app, client, password):
    before = _user_count(app)
    response = register(client, "bob", password)
    assert response.status_code == 302
    assert response.headers["Location"] == "/register"
    assert _user_count(app) == before

    body = client.get("/register").get_data(as_text=True)
    assert "Password must" in body


def test_register_missing_uppercase_reports_policy(app, client):
    register(client, "bob", "passw0rd!")
    body = client.get("/register").get_data(as_text=True)
    assert "one uppercase letter" in body
    with app.app_context():
        assert User.query.filter_by(username="bob").first() is None


def test_register_rejects_short_username(app, client):
    response = register(client, "  ab  ")
    assert response.headers["Location"] == "/register"
    body = client.get("/register").get_data(as_text=True)
    assert "Username must be at least 3 characters long." in body
    with app.app_context():
        assert User.query.filter_by(username="ab").first() is None


def test_register_trims_and_escapes_username(app, client):
    register(client, "  <chef>  ")
    with app.app_context():
        assert User.query.filter_by(username="&lt;chef&gt;").first() is not None
        assert User.query.filter_by(username="<chef>").first() is None


def test_register_duplicate_username(app, client):
    register(client, "alice")
    response = register(client, "alice", "0therPass!")
    assert response.headers["Location"] == "/register"
    body = client.get("/register").get_data(as_text=True)
    assert "Username is already taken." in body
    assert _user_count(app) == 2  # alice plus the bootstrap admin


def test_login_failures_are_indistinguishable(client):
    register(client, "alice")
    client.get("/login")

    unknown = login(client, "nobody", TEST_PASSWORD)
    unknown_page = client.get("/login").get_data(as_text=True)

    wrong = login(client, "alice", "Wr0ngPass!")
    wrong_page = client.get("/login").get_data(as_text=True)

    assert unknown.status_code == wrong.status_code == 302
    assert unknown.headers["Location"] == wrong.headers["Location"] == "/login"
    assert "Invalid username or password." in unknown_page
    assert "Invalid username or password." in wrong_page
    assert unknown_page == wrong_page


def test_logout_destroys_session(client, session_store):
    register(client, "alice")
    login(client, "alice")
    assert client.get("/").status_code == 200
    assert session_store.keys("session:v1:*")

    response = client.get("/logout")
    assert response.status_code == 302
    assert response.headers["Location"] == "/login"
    assert not session_store.keys("session:v1:*")

    response = client.get("/")
    assert response.status_code == 302
    assert response.headers["Location"] == "/login"


def test_unauthenticated_home_redirects_with_flash(client):
    response = client.get("/")
    assert response.status_code == 302
    assert response.headers["Location"] == "/login"

    body = client.get("/login").get_data(as_text=True)
    assert "Please log in to access this page." in body


def test_logged_in_user_skips_login_and_register_forms(register_and_login):
    client = register_and_login()
    assert client.get("/login").headers["Location"] == "/"
    assert client.get("/register").headers["Location"] == "/"


def test_login_issues_fresh_session_token(client):
    register(client, "alice")
    before = client.get_cookie("Sessionid")
    assert before is not None

    login(client, "alice")
    after = client.get_cookie("Sessionid")
    assert after is not None
    assert before.value != after.value


def test_logout_survives_store_delete_failure(app, client, session_store, monkeypatch, caplog):
    register(client, "alice")
    login(client, "alice")
    app.logger.addHandler(caplog.handler)

    def unavailable(*args, **kwargs):
        raise RedisError("connection refused")

    monkeypatch.setattr(session_store, "delete", unavailable)
    with caplog.at_level(logging.WARNING, logger=app.logger.name):
        response = client.get("/logout")
    app.logger.removeHandler(caplog.handler)

    assert response.status_code == 302
    assert response.headers["Location"] == "/login"
    assert "session_destroy_failed" in caplog.messages
    assert client.get_cookie("Sessionid") is None


def test_register_database_failure_creates_no_user(app, client, monkeypatch):
    def broken_commit():
        raise OperationalError("INSERT INTO users", {}, Exception("connection lost"))

    monkeypatch.setattr(db.session, "commit", broken_commit)
    response = register(client, "alice")
    monkeypatch.undo()

    assert response.status_code == 302
    assert response.headers["Location"] == "/register"
    body = client.get("/register").get_data(as_text=True)
    assert "Error registering user." in body
    with app.app_context():
        assert User.query.filter_by(username="alice").first() is None
