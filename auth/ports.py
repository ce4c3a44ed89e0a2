"""
auth/ports.py -- Storage contracts consumed by AuthService.

AuthService depends on these Protocols, never on a concrete store. SqlStore in
auth/store.py satisfies all three; tests use an in-memory fake. A remote or
cached backend only needs the same method signatures and must raise the
StorageError subclasses from auth/errors.py for the documented conditions.

Methods are synchronous. AuthService runs them on a worker thread, so a
blocking driver does not stall the event loop.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import threading
from typing import Protocol

from auth.models import App, User


class UserSaver(Protocol):
    def save_user(self, email: str, pass_hash: bytes, cancelled: threading.Event | None = None) -> int:
        """Persist a new user and return its id.

        Raises StorageUserExistsError if the email is already on file. Must be
        atomic: of two concurrent calls with one email, exactly one succeeds.

        cancelled is set by the caller when its request is abandoned. If it is
        set before the write commits, nothing is persisted and
        StorageAbortedError is raised.
        """
        ...


class UserProvider(Protocol):
    def user(self, email: str) -> User:
        """Raises StorageUserNotFoundError if no user has this email."""
        ...

    def is_admin(self, user_id: int) -> bool:
        """Raises StorageUserNotFoundError if the id is unknown."""
        ...

    def is_user_exists(self, user_id: int) -> bool:
        """Raises StorageUserNotFoundError if the id is unknown."""
        ...


class AppProvider(Protocol):
    def app(self, app_id: int) -> App:
        """Raises StorageAppNotFoundError if the id is unknown."""
        ...
