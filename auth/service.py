"""
auth/service.py -- AuthService: login, registration and identity queries.

Pattern: Service layer over injected ports. AuthService never imports a
concrete store; it receives objects satisfying the Protocols in auth/ports.py
and is otherwise stateless. One instance serves all concurrent requests.

Blocking work (store calls, bcrypt) runs through asyncio.to_thread. If the
awaiting request is cancelled or hits its deadline, CancelledError propagates
out of the await and the result of the worker call is discarded. CancelledError is
always re-raised, so cancellation is never turned into a normal return.
save_user is the one call with a side effect: it receives a threading.Event
that is set on cancellation, and the store rolls the insert back instead of
committing it.

Error policy:
  - Conditions with a name in auth/errors.py are raised as that class.
  - Anything else is logged and re-raised as OperationError, chained to the
    original exception. No retries.

Login ordering: the password is verified before the application is looked up,
so a request against an unknown app_id reveals nothing about whether the
credentials were right.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from datetime import timedelta

from auth.errors import (
    InvalidCredentialsError,
    OperationError,
    StorageUserExistsError,
    StorageUserNotFoundError,
    UserExistsError,
    UserNotFoundError,
)
from auth.passwords import hash_password, verify_password
from auth.ports import AppProvider, UserProvider, UserSaver
from auth.tokens import new_token

logger = logging.getLogger("sso.auth")

# Unknown emails are checked against this hash so that response time does not
# reveal whether an account exists.
_DUMMY_HASH: bytes = hash_password("sso_timing_dummy")


class AuthService:
    """Orchestrates the password hasher, token issuer and store ports.

    Usage:
        store = SqlStore("sqlite:///sso.db")
        auth = AuthService(store, store, store, token_ttl=timedelta(hours=1))
        user_id = await auth.register_new_user("a@x.com", "pw1")
        token = await auth.login("a@x.com", "pw1", app_id=1)
    """

    def __init__(
        self,
        user_saver: UserSaver,
        user_provider: UserProvider,
        app_provider: AppProvider,
        token_ttl: timedelta,
        log: logging.Logger | None = None,
    ) -> None:
        self._user_saver = user_saver
        self._user_provider = user_provider
        self._app_provider = app_provider
        self._token_ttl = token_ttl
        self._log = log or logger

    @property
    def token_ttl(self) -> timedelta:
        return self._token_ttl

    async def login(self, email: str, password: str, app_id: int) -> str:
        """Exchange valid credentials for a token scoped to app_id.

        Raises:
            InvalidCredentialsError: unknown email or wrong password.
            OperationError: app lookup failed (including unknown app_id),
                the user store failed, or signing failed.
        """
        op = "auth.login"
        self._log.info("%s: attempting to login user (email=%s)", op, email)

        try:
            user = await asyncio.to_thread(self._user_provider.user, email)
        except StorageUserNotFoundError as exc:
            await asyncio.to_thread(verify_password, password, _DUMMY_HASH)
            self._log.warning("%s: user not found (email=%s): %s", op, email, exc)
            raise InvalidCredentialsError(op) from None
        except Exception as exc:
            raise self._unclassified(op, "failed to get user", exc) from exc

        if not await asyncio.to_thread(verify_password, password, user.pass_hash):
            self._log.info("%s: invalid credentials (email=%s)", op, email)
            raise InvalidCredentialsError(op)

        try:
            app = await asyncio.to_thread(self._app_provider.app, app_id)
        except Exception as exc:
            raise self._unclassified(op, f"failed to get app {app_id}", exc) from exc

        try:
            token = new_token(user, app, self._token_ttl)
        except Exception as exc:
            raise self._unclassified(op, "failed to create token", exc) from exc

        self._log.info("%s: user logged in successfully (email=%s, app_id=%d)", op, email, app_id)
        return token

    async def register_new_user(self, email: str, password: str) -> int:
        """Create an account and return its id.

        Raises:
            UserExistsError: the email is already registered.
            OperationError: hashing failed or the store failed otherwise.
        """
        op = "auth.register_new_user"
        self._log.info("%s: registering new user (email=%s)", op, email)

        try:
            pass_hash = await asyncio.to_thread(hash_password, password)
        except Exception as exc:
            raise self._unclassified(op, "failed to generate password hash", exc) from exc

        cancelled = threading.Event()
        try:
            user_id = await asyncio.to_thread(self._user_saver.save_user, email, pass_hash, cancelled)
        except asyncio.CancelledError:
            cancelled.set()
            self._log.warning("%s: request cancelled, aborting save (email=%s)", op, email)
            raise
        except StorageUserExistsError as exc:
            self._log.warning("%s: user already exists (email=%s): %s", op, email, exc)
            raise UserExistsError(op) from exc
        except Exception as exc:
            raise self._unclassified(op, "failed to save user", exc) from exc

        self._log.info("%s: user registered (email=%s, user_id=%d)", op, email, user_id)
        return user_id

    async def is_admin(self, user_id: int) -> bool:
        """Raises UserNotFoundError if user_id is unknown."""
        op = "auth.is_admin"
        self._log.info("%s: checking if user is admin (user_id=%d)", op, user_id)

        try:
            is_admin = await asyncio.to_thread(self._user_provider.is_admin, user_id)
        except StorageUserNotFoundError as exc:
            self._log.warning("%s: user not found (user_id=%d): %s", op, user_id, exc)
            raise UserNotFoundError(op) from exc
        except Exception as exc:
            raise self._unclassified(op, "failed to check admin flag", exc) from exc

        self._log.info("%s: checked if user is admin (user_id=%d, is_admin=%s)", op, user_id, is_admin)
        return is_admin

    async def is_user_exists(self, user_id: int) -> bool:
        """Raises UserNotFoundError if user_id is unknown."""
        op = "auth.is_user_exists"
        self._log.info("%s: checking if user exists (user_id=%d)", op, user_id)

        try:
            exists = await asyncio.to_thread(self._user_provider.is_user_exists, user_id)
        except StorageUserNotFoundError as exc:
            self._log.warning("%s: user not found (user_id=%d): %s", op, user_id, exc)
            raise UserNotFoundError(op) from exc
        except Exception as exc:
            raise self._unclassified(op, "failed to check user", exc) from exc

        self._log.info("%s: checked if user exists (user_id=%d, exists=%s)", op, user_id, exists)
        return exists

    def _unclassified(self, op: str, what: str, exc: Exception) -> OperationError:
        self._log.error("%s: %s: %s", op, what, exc)
        return OperationError(op, f"{what}: {exc}")
