"""
auth/errors.py -- Error taxonomy for the auth service and its stores.

Two families:

  StorageError and subclasses are raised by store implementations
  (auth/store.py or any other backend satisfying auth/ports.py). They describe
  what the store saw: a missing row, a duplicate email.

  AuthError and subclasses are raised by AuthService. They describe what the
  caller did wrong (or that something unclassified broke) and always carry
  the name of the service operation that raised them, e.g. "auth.login".
  The transport layer maps each class to a status code.

Unclassified failures are wrapped in OperationError and chained with
`raise ... from exc`, so the original exception stays on __cause__.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Store-level errors
# ---------------------------------------------------------------------------


class StorageError(Exception):
    """Base class for errors raised by store implementations."""


class StorageUserExistsError(StorageError):
    """A user with this email is already on file."""


class StorageUserNotFoundError(StorageError):
    """No user matches the given email or id."""


class StorageAppNotFoundError(StorageError):
    """No application matches the given id."""


class StorageAbortedError(StorageError):
    """The caller cancelled the request before the write was committed."""


# ---------------------------------------------------------------------------
# Service-level errors
# ---------------------------------------------------------------------------


class AuthError(Exception):
    """Base class for errors raised by AuthService.

    Subclasses set `message`; `op` names the service operation.
    """

    message = "auth error"

    def __init__(self, op: str, message: str | None = None) -> None:
        self.op = op
        if message is not None:
            self.message = message
        super().__init__(f"{op}: {self.message}")


class InvalidCredentialsError(AuthError):
    """Unknown email or wrong password. The two are deliberately identical."""

    message = "invalid credentials"


class UserExistsError(AuthError):
    message = "user already exists"


class InvalidAppIDError(AuthError):
    message = "invalid app id"


class UserNotFoundError(AuthError):
    message = "user not found"


class OperationError(AuthError):
    """Unclassified store, hashing or signing failure.

    The message is the underlying error's text; the exception itself is
    available as __cause__.
    """

    message = "internal error"
