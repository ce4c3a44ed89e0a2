"""
tests/test_service.py -- Unit tests for auth/service.py (AuthService).

Covers:
  - Register -> login round trip, claims carry uid / email / app_id
  - Unknown email and wrong password raise the same InvalidCredentialsError
  - Duplicate registration raises UserExistsError
  - Unknown app_id is wrapped, not remapped; credentials are checked first
  - exp equals issue time + TTL
  - is_admin / is_user_exists, including the shared UserNotFoundError kind
  - Store, hashing and signing failures are wrapped in OperationError
  - Caller deadlines and cancellation propagate out of in-flight calls
  - An abandoned registration is rolled back, not committed
  - Passwords never reach the logs
"""

from __future__ import annotations

import asyncio
import logging
import threading
from datetime import datetime, timezone

import pytest
from jose import jwt

from auth.errors import (
    AuthError,
    InvalidCredentialsError,
    OperationError,
    StorageAppNotFoundError,
    StorageUserNotFoundError,
    UserExistsError,
    UserNotFoundError,
)
from auth.service import AuthService
from auth.store import SqlStore
from tests.fakes import APP_7, APP_42, TOKEN_TTL, FakeStore


def _claims(token: str, secret: str) -> dict:
    return jwt.decode(token, secret, algorithms=["HS256"])


# ---------------------------------------------------------------------------
# Concrete scenario
# ---------------------------------------------------------------------------


def test_register_login_scenario(service: AuthService) -> None:
    """register a@x.com -> 1; login app 42 -> claims; wrong pw; re-register."""
    user_id = asyncio.run(service.register_new_user("a@x.com", "pw1"))
    assert user_id == 1

    token = asyncio.run(service.login("a@x.com", "pw1", 42))
    claims = _claims(token, APP_42.secret)
    assert claims["uid"] == 1
    assert claims["email"] == "a@x.com"
    assert claims["app_id"] == 42

    with pytest.raises(InvalidCredentialsError):
        asyncio.run(service.login("a@x.com", "wrong", 42))

    with pytest.raises(UserExistsError):
        asyncio.run(service.register_new_user("a@x.com", "anything"))


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------


class TestLogin:
    def test_claims_contain_exactly_the_four_fields(self, service: AuthService) -> None:
        asyncio.run(service.register_new_user("b@x.com", "secret"))
        token = asyncio.run(service.login("b@x.com", "secret", 42))
        assert set(_claims(token, APP_42.secret)) == {"uid", "email", "app_id", "exp"}

    def test_unknown_email_and_wrong_password_are_indistinguishable(self, service: AuthService) -> None:
        asyncio.run(service.register_new_user("c@x.com", "right"))

        with pytest.raises(InvalidCredentialsError) as wrong_pw:
            asyncio.run(service.login("c@x.com", "wrong", 42))
        with pytest.raises(InvalidCredentialsError) as unknown:
            asyncio.run(service.login("nobody@x.com", "right", 42))

        assert type(wrong_pw.value) is type(unknown.value)
        assert str(wrong_pw.value) == str(unknown.value) == "auth.login: invalid credentials"

    def test_unknown_app_is_wrapped_not_remapped(self, service: AuthService) -> None:
        asyncio.run(service.register_new_user("d@x.com", "pw"))
        with pytest.raises(OperationError) as exc_info:
            asyncio.run(service.login("d@x.com", "pw", 999))
        assert isinstance(exc_info.value.__cause__, StorageAppNotFoundError)
        assert not isinstance(exc_info.value, InvalidCredentialsError)
        assert exc_info.value.op == "auth.login"

    def test_bad_credentials_checked_before_app_lookup(self, service: AuthService) -> None:
        """A wrong password against an unknown app still reports bad credentials."""
        asyncio.run(service.register_new_user("e@x.com", "pw"))
        with pytest.raises(InvalidCredentialsError):
            asyncio.run(service.login("e@x.com", "nope", 999))
        with pytest.raises(InvalidCredentialsError):
            asyncio.run(service.login("ghost@x.com", "pw", 999))

    def test_token_scoped_to_requesting_app(self, service: AuthService) -> None:
        asyncio.run(service.register_new_user("f@x.com", "pw"))
        t42 = asyncio.run(service.login("f@x.com", "pw", 42))
        t7 = asyncio.run(service.login("f@x.com", "pw", 7))

        assert _claims(t42, APP_42.secret)["app_id"] == 42
        assert _claims(t7, APP_7.secret)["app_id"] == 7
        assert t42.split(".")[2] != t7.split(".")[2]
        with pytest.raises(jwt.JWTError):
            _claims(t42, APP_7.secret)

    def test_exp_is_issue_time_plus_ttl(self, service: AuthService) -> None:
        asyncio.run(service.register_new_user("g@x.com", "pw"))
        before = datetime.now(timezone.utc)
        token = asyncio.run(service.login("g@x.com", "pw", 42))
        after = datetime.now(timezone.utc)

        exp = _claims(token, APP_42.secret)["exp"]
        assert int((before + TOKEN_TTL).timestamp()) <= exp <= int((after + TOKEN_TTL).timestamp())

    def test_user_store_outage_is_wrapped(self, service: AuthService, fake_store: FakeStore) -> None:
        fake_store.fail_with = ConnectionError("db down")
        with pytest.raises(OperationError) as exc_info:
            asyncio.run(service.login("h@x.com", "pw", 42))
        assert isinstance(exc_info.value.__cause__, ConnectionError)
        assert "db down" in str(exc_info.value)

    def test_signing_failure_is_wrapped(self, service: AuthService, monkeypatch) -> None:
        asyncio.run(service.register_new_user("i@x.com", "pw"))

        def broken_token(*args, **kwargs):
            raise jwt.JWTError("bad key")

        monkeypatch.setattr("auth.service.new_token", broken_token)
        with pytest.raises(OperationError, match="failed to create token"):
            asyncio.run(service.login("i@x.com", "pw", 42))


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


class TestRegister:
    def test_ids_are_assigned_by_store(self, service: AuthService) -> None:
        first = asyncio.run(service.register_new_user("one@x.com", "pw"))
        second = asyncio.run(service.register_new_user("two@x.com", "pw"))
        assert (first, second) == (1, 2)

    def test_stores_hash_not_plaintext(self, service: AuthService, fake_store: FakeStore) -> None:
        asyncio.run(service.register_new_user("j@x.com", "plaintext-pw"))
        stored = fake_store.user("j@x.com").pass_hash
        assert b"plaintext-pw" not in stored
        assert stored.startswith(b"$2")

    def test_hash_failure_is_wrapped(self, service: AuthService) -> None:
        with pytest.raises(OperationError, match="failed to generate password hash") as exc_info:
            asyncio.run(service.register_new_user("k@x.com", "x" * 100))
        assert isinstance(exc_info.value.__cause__, ValueError)

    def test_store_failure_is_wrapped(self, service: AuthService, fake_store: FakeStore) -> None:
        fake_store.fail_with = RuntimeError("disk full")
        with pytest.raises(OperationError) as exc_info:
            asyncio.run(service.register_new_user("l@x.com", "pw"))
        assert exc_info.value.op == "auth.register_new_user"
        assert not isinstance(exc_info.value, UserExistsError)


# ---------------------------------------------------------------------------
# Identity queries
# ---------------------------------------------------------------------------


class TestIdentityQueries:
    def test_is_admin_reflects_store_flag(self, service: AuthService, fake_store: FakeStore) -> None:
        plain = asyncio.run(service.register_new_user("m@x.com", "pw"))
        admin = asyncio.run(service.register_new_user("n@x.com", "pw"))
        fake_store.make_admin(admin)

        assert asyncio.run(service.is_admin(plain)) is False
        assert asyncio.run(service.is_admin(admin)) is True

    def test_is_user_exists_for_registered_user(self, service: AuthService) -> None:
        uid = asyncio.run(service.register_new_user("o@x.com", "pw"))
        assert asyncio.run(service.is_user_exists(uid)) is True

    def test_missing_user_raises_same_kind_for_both_queries(self, service: AuthService) -> None:
        with pytest.raises(UserNotFoundError) as admin_exc:
            asyncio.run(service.is_admin(404))
        with pytest.raises(UserNotFoundError) as exists_exc:
            asyncio.run(service.is_user_exists(404))
        assert type(admin_exc.value) is type(exists_exc.value)
        assert admin_exc.value.op == "auth.is_admin"
        assert exists_exc.value.op == "auth.is_user_exists"

    def test_query_outage_is_wrapped(self, service: AuthService, fake_store: FakeStore) -> None:
        fake_store.fail_with = TimeoutError("replica lag")
        with pytest.raises(OperationError):
            asyncio.run(service.is_admin(1))
        with pytest.raises(OperationError):
            asyncio.run(service.is_user_exists(1))


# ---------------------------------------------------------------------------
# Deadlines and cancellation
# ---------------------------------------------------------------------------


def test_caller_deadline_aborts_login(service: AuthService, fake_store: FakeStore) -> None:
    release = threading.Event()
    fake_store.block_on = release

    async def scenario() -> None:
        try:
            with pytest.raises(TimeoutError):
                await asyncio.wait_for(service.login("slow@x.com", "pw", 42), timeout=0.05)
        finally:
            release.set()

    asyncio.run(scenario())


def test_cancellation_is_not_wrapped(service: AuthService, fake_store: FakeStore) -> None:
    release = threading.Event()
    fake_store.block_on = release

    async def scenario() -> None:
        task = asyncio.create_task(service.login("slow@x.com", "pw", 42))
        await asyncio.sleep(0.01)
        task.cancel()
        try:
            with pytest.raises(asyncio.CancelledError):
                await task
        finally:
            release.set()

    asyncio.run(scenario())


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


def test_passwords_never_logged(service: AuthService, caplog) -> None:
    caplog.set_level(logging.DEBUG, logger="sso")
    asyncio.run(service.register_new_user("p@x.com", "hunter2-secret"))
    asyncio.run(service.login("p@x.com", "hunter2-secret", 42))
    with pytest.raises(AuthError):
        asyncio.run(service.login("p@x.com", "wrong-guess-pw", 42))

    assert "auth.login: user logged in successfully" in caplog.text
    assert "hunter2-secret" not in caplog.text
    assert "wrong-guess-pw" not in caplog.text


def test_custom_logger_is_used(fake_store: FakeStore, caplog) -> None:
    log = logging.getLogger("sso.tests.custom")
    svc = AuthService(fake_store, fake_store, fake_store, token_ttl=TOKEN_TTL, log=log)
    caplog.set_level(logging.INFO, logger="sso.tests.custom")
    asyncio.run(svc.register_new_user("q@x.com", "pw"))
    assert any(r.name == "sso.tests.custom" for r in caplog.records)


# ---------------------------------------------------------------------------
# Abandoned registrations
# ---------------------------------------------------------------------------


class _GatedSaveStore(SqlStore):
    """SqlStore whose save_user parks on an event, then writes as usual."""

    def __init__(self, db_url: str) -> None:
        super().__init__(db_url)
        self.entered = threading.Event()
        self.release = threading.Event()
        self.finished = threading.Event()

    def save_user(self, email: str, pass_hash: bytes, cancelled: threading.Event | None = None) -> int:
        self.entered.set()
        self.release.wait(timeout=5)
        try:
            return super().save_user(email, pass_hash, cancelled)
        finally:
            self.finished.set()


def test_deadline_during_save_leaves_no_account(tmp_path) -> None:
    store = _GatedSaveStore(f"sqlite:///{tmp_path / 'sso.db'}")
    svc = AuthService(store, store, store, token_ttl=TOKEN_TTL)

    async def scenario() -> None:
        task = asyncio.create_task(svc.register_new_user("late@x.com", "pw"))
        await asyncio.to_thread(store.entered.wait, 5)
        try:
            with pytest.raises(TimeoutError):
                async with asyncio.timeout(0.05):
                    await task
        finally:
            store.release.set()
        await asyncio.to_thread(store.finished.wait, 5)

    try:
        asyncio.run(scenario())
        assert store.finished.is_set()
        with pytest.raises(StorageUserNotFoundError):
            store.user("late@x.com")
        # The email is free again, so a retry succeeds.
        assert asyncio.run(svc.register_new_user("late@x.com", "pw")) == 1
    finally:
        store.close()


def test_cancelled_registration_leaves_no_account(service: AuthService, fake_store: FakeStore) -> None:
    entered = threading.Event()
    gate = threading.Event()
    original_save = fake_store.save_user

    def parked_save(email, pass_hash, cancelled=None):
        entered.set()
        gate.wait(timeout=5)
        return original_save(email, pass_hash, cancelled)

    fake_store.save_user = parked_save

    async def scenario() -> None:
        task = asyncio.create_task(service.register_new_user("gone@x.com", "pw"))
        await asyncio.to_thread(entered.wait, 5)
        task.cancel()
        try:
            with pytest.raises(asyncio.CancelledError):
                await task
        finally:
            gate.set()

    asyncio.run(scenario())
    with pytest.raises(StorageUserNotFoundError):
        fake_store.user("gone@x.com")
