from __future__ import annotations

import secrets
import time
from typing import Any, Callable, Optional, Protocol, runtime_checkable

import fakeredis
from flask import Flask
from flask.json.tag import TaggedJSONSerializer
from flask.sessions import SessionInterface, SessionMixin
from itsdangerous import BadSignature, Signer
from redis import Redis
from redis.exceptions import RedisError
from werkzeug.datastructures import CallbackDict


SIGNER_SALT = "recipebox-session"


@runtime_checkable
class RedisLike(Protocol):
    def setex(self, name: str, time: int, value: Any) -> Any: ...

    def get(self, name: str) -> Any: ...

    def delete(self, *names: str) -> Any: ...


class ServerSideSession(CallbackDict, SessionMixin):
    """Session data held in the store; the cookie only carries the signed token."""

    def __init__(self, initial=None, sid: str | None = None, created_at: float | None = None):
        def on_update(self):
            self.modified = True

        super().__init__(initial, on_update)
        self.sid = sid
        self.created_at = created_at
        self.modified = False

    @property
    def new(self) -> bool:  # type: ignore[override]
        return self.sid is None


def _connection_healthy(app: Flask, connection) -> bool:
    if connection is None:
        return False
    try:
        connection.ping()
        return True
    except RedisError as exc:  # pragma: no cover - network/auth failures
        app.logger.warning("redis_connection_unhealthy", extra={"error": str(exc)})
        return False


def _ensure_fake_redis(app: Flask) -> RedisLike:
    existing = app.config.get("LOCAL_REDIS")
    if existing is not None:
        return existing
    store = fakeredis.FakeRedis()
    app.logger.info("fakeredis_initialized")
    app.config["LOCAL_REDIS"] = store
    return store


def init_session_store(app: Flask) -> RedisLike:
    """Resolve the keyed store backing sessions: injected, Redis, or in-process."""
    injected = app.config.get("SESSION_STORE")
    if injected is not None:
        return injected

    redis_url = (app.config.get("REDIS_URL") or "").strip()
    if redis_url:
        try:
            connection = Redis.from_url(redis_url)
        except ValueError as exc:
            app.logger.error("session_store_bad_url", extra={"error": str(exc)})
            connection = None
        if _connection_healthy(app, connection):
            app.config["SESSION_STORE"] = connection
            app.logger.info("session_store_initialized", extra={"backend": "redis"})
            return connection
        app.logger.warning("session_store_redis_unavailable_falling_back")

    store = _ensure_fake_redis(app)
    app.config["SESSION_STORE"] = store
    return store


class RedisSessionInterface(SessionInterface):
    """Server-side sessions with a fixed absolute lifetime.

    The expiry is set once, when the session is first stored, and never
    refreshed by later requests. Expired entries are evicted by the store's
    TTL; an entry read after its deadline is treated as absent.
    """

    serializer = TaggedJSONSerializer()
    session_class = ServerSideSession

    def __init__(
        self,
        store: RedisLike,
        *,
        key_prefix: str = "session:v1:",
        lifetime_seconds: int = 7200,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.key_prefix = key_prefix
        self.lifetime_seconds = int(lifetime_seconds)
        self.clock = clock

    def _key(self, sid: str) -> str:
        return f"{self.key_prefix}{sid}"

    def _signer(self, app: Flask) -> Signer:
        return Signer(app.secret_key, salt=SIGNER_SALT, key_derivation="hmac")

    def _remaining(self, created_at: float) -> float:
        return created_at + self.lifetime_seconds - self.clock()

    def open_session(self, app: Flask, request) -> Optional[ServerSideSession]:
        if not app.secret_key:
            return None

        cookie = request.cookies.get(self.get_cookie_name(app))
        if not cookie:
            return self.session_class()

        try:
            sid = self._signer(app).unsign(cookie).decode("utf-8")
        except BadSignature:
            app.logger.info("session_cookie_invalid")
            return self.session_class()

        try:
            raw = self.store.get(self._key(sid))
        except RedisError:
            app.logger.error("session_store_unavailable", exc_info=True)
            return self.session_class()
        if not raw:
            return self.session_class()

        try:
            if isinstance(raw, bytes):
                raw = raw.decode("utf-8")
            record = self.serializer.loads(raw)
            created_at = float(record["created_at"])
            data = record.get("data") or {}
        except (ValueError, KeyError, TypeError):
            app.logger.warning("session_record_corrupt", extra={"sid_prefix": sid[:8]})
            self._discard(app, sid)
            return self.session_class()

        if self._remaining(created_at) <= 0:
            app.logger.info("session_expired", extra={"sid_prefix": sid[:8]})
            self._discard(app, sid)
            return self.session_class()

        return self.session_class(data, sid=sid, created_at=created_at)

    def _discard(self, app: Flask, sid: str) -> None:
        try:
            self.store.delete(self._key(sid))
        except RedisError:
            app.logger.error("session_store_unavailable", exc_info=True)

    def destroy(self, session: ServerSideSession) -> None:
        """Drop the stored entry and empty the session so the cookie is cleared."""
        sid = session.sid
        session.clear()
        session.modified = True
        if sid:
            self.store.delete(self._key(sid))
            session.sid = None

    def regenerate(self, session: ServerSideSession) -> None:
        """Discard the current token; the next save issues a fresh one."""
        self.destroy(session)
        session.created_at = None

    def save_session(self, app: Flask, session: ServerSideSession, response) -> None:
        name = self.get_cookie_name(app)
        domain = self.get_cookie_domain(app)
        path = self.get_cookie_path(app)
        secure = self.get_cookie_secure(app)
        samesite = self.get_cookie_samesite(app)
        httponly = self.get_cookie_httponly(app)

        if session.accessed:
            response.vary.add("Cookie")

        if not session:
            if session.modified:
                if session.sid:
                    try:
                        self.store.delete(self._key(session.sid))
                    except RedisError:
                        app.logger.warning("session_delete_failed", exc_info=True)
                response.delete_cookie(
                    name, domain=domain, path=path, secure=secure, samesite=samesite, httponly=httponly
                )
                response.vary.add("Cookie")
            return

        issue_cookie = session.new
        if issue_cookie:
            session.sid = secrets.token_urlsafe(32)
            session.created_at = self.clock()
        elif not session.modified:
            return

        remaining = self._remaining(session.created_at)
        if remaining <= 0:
            self.store.delete(self._key(session.sid))
            response.delete_cookie(
                name, domain=domain, path=path, secure=secure, samesite=samesite, httponly=httponly
            )
            return

        record = {"created_at": session.created_at, "data": dict(session)}
        self.store.setex(self._key(session.sid), max(1, int(remaining)), self.serializer.dumps(record))

        if issue_cookie:
            signed = self._signer(app).sign(session.sid.encode("utf-8")).decode("utf-8")
            response.set_cookie(
                name,
                signed,
                expires=session.created_at + self.lifetime_seconds,
                httponly=httponly,
                domain=domain,
                path=path,
                secure=secure,
                samesite=samesite,
            )
            response.vary.add("Cookie")


__all__ = [
    "RedisSessionInterface",
    "ServerSideSession",
    "init_session_store",
]
