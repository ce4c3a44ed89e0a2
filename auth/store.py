"""
auth/store.py -- SQLAlchemy Core persistence layer for users and apps.

Pattern: Repository + Data Mapper. SqlStore is the repository and satisfies
all three ports in auth/ports.py (UserSaver, UserProvider, AppProvider);
_row_to_user / _row_to_app are the mappers. The service never touches SQL.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Email uniqueness is a UNIQUE constraint, so two concurrent registrations
  with one email cannot both succeed: the loser gets IntegrityError, which is
  translated to StorageUserExistsError here.

Cancellation:
  save_user runs on a worker thread that cannot be interrupted. The service
  hands it a threading.Event; the insert is rolled back instead of committed
  if the event was set in the meantime.

Schema migration notes:
  is_admin column: older databases were created before admin flags existed.
  _ensure_is_admin_column() adds it via ALTER TABLE ADD COLUMN so existing
  DBs are upgraded by `migrate` without manual steps.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
import threading

from sqlalchemy import (
    Boolean,
    Column,
    Integer,
    LargeBinary,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    inspect,
    select,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.errors import (
    StorageAbortedError,
    StorageAppNotFoundError,
    StorageError,
    StorageUserExistsError,
    StorageUserNotFoundError,
)
from auth.models import App, User

logger = logging.getLogger("sso.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True, index=True),
    Column("pass_hash", LargeBinary, nullable=False),
    Column("is_admin", Boolean, nullable=False, server_default=text("0")),
)

_apps = Table(
    "apps",
    _metadata,
    # App ids are assigned by the operator, not by the database.
    Column("id", Integer, primary_key=True, autoincrement=False),
    Column("name", String(255), nullable=False, unique=True),
    Column("secret", Text, nullable=False, unique=True),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def storage_url(storage_path: str) -> str:
    """Turn a bare file path into a SQLite URL; pass URLs through unchanged."""
    if "://" in storage_path:
        return storage_path
    return f"sqlite:///{storage_path}"


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class SqlStore:
    """Repository for User and App entities.

    Usage:
        store = SqlStore("sqlite:///storage/sso.db")
        uid = store.save_user("a@x.com", hash_password("pw1"))
        user = store.user("a@x.com")
        store.close()

    By default the constructor applies pending migrations. Pass
    auto_migrate=False to open an existing database as-is (the `migrate`
    CLI command does this so it can report what it changed).
    """

    def __init__(self, db_url: str, auto_migrate: bool = True) -> None:
        db_url = storage_url(db_url)
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        if auto_migrate:
            self.migrate()

    # ------------------------------------------------------------------
    # Migrations
    # ------------------------------------------------------------------

    def migrate(self) -> list[str]:
        """Create missing tables and columns. Returns a description of each change.

        Idempotent: an up-to-date database returns an empty list.
        """
        existing = set(inspect(self.engine).get_table_names())
        applied = [f"create table {name}" for name in _metadata.tables if name not in existing]
        _metadata.create_all(self.engine)
        if self._ensure_is_admin_column():
            applied.append("add column users.is_admin")
        for change in applied:
            logger.info("migration applied: %s", change)
        return applied

    def _ensure_is_admin_column(self) -> bool:
        """Add is_admin to users if it does not exist. Returns True if added.

        SQLite does not support IF NOT EXISTS in ALTER TABLE, so column
        existence is checked via PRAGMA table_info first.
        """
        with self.engine.connect() as conn:
            rows = conn.execute(text("PRAGMA table_info(users)")).fetchall()
            existing_cols = {row[1] for row in rows}
            if "is_admin" in existing_cols:
                return False
            conn.execute(text("ALTER TABLE users ADD COLUMN is_admin BOOLEAN NOT NULL DEFAULT 0"))
            conn.commit()
        return True

    # ------------------------------------------------------------------
    # UserSaver / UserProvider
    # ------------------------------------------------------------------

    def save_user(self, email: str, pass_hash: bytes, cancelled: threading.Event | None = None) -> int:
        """Insert a new user and return its assigned id.

        Raises StorageUserExistsError if the email is already on file, and
        StorageAbortedError (after rolling back) if cancelled is set before
        the commit.
        """
        try:
            with self.engine.connect() as conn:
                result = conn.execute(_users.insert().values(email=email, pass_hash=pass_hash))
                if cancelled is not None and cancelled.is_set():
                    conn.rollback()
                    raise StorageAbortedError(f"save of user {email!r} aborted by caller")
                conn.commit()
        except IntegrityError as exc:
            raise StorageUserExistsError(f"user {email!r} already exists") from exc
        return result.inserted_primary_key[0]

    def user(self, email: str) -> User:
        """Look up a user by exact email. Raises StorageUserNotFoundError."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        if row is None:
            raise StorageUserNotFoundError(f"user {email!r} not found")
        return _row_to_user(row)

    def is_admin(self, user_id: int) -> bool:
        with self.engine.connect() as conn:
            row = conn.execute(select(_users.c.is_admin).where(_users.c.id == user_id)).fetchone()
        if row is None:
            raise StorageUserNotFoundError(f"user {user_id} not found")
        return bool(row.is_admin)

    def is_user_exists(self, user_id: int) -> bool:
        """Return True if the id is on file. Raises StorageUserNotFoundError otherwise."""
        with self.engine.connect() as conn:
            row = conn.execute(select(_users.c.id).where(_users.c.id == user_id)).fetchone()
        if row is None:
            raise StorageUserNotFoundError(f"user {user_id} not found")
        return True

    def set_admin(self, user_id: int, is_admin: bool = True) -> None:
        """Grant or revoke the admin flag. Operator-only; the service never calls this."""
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(is_admin=is_admin))
            conn.commit()
        if result.rowcount == 0:
            raise StorageUserNotFoundError(f"user {user_id} not found")

    # ------------------------------------------------------------------
    # AppProvider
    # ------------------------------------------------------------------

    def app(self, app_id: int) -> App:
        """Look up an application by id. Raises StorageAppNotFoundError."""
        with self.engine.connect() as conn:
            row = conn.execute(_apps.select().where(_apps.c.id == app_id)).fetchone()
        if row is None:
            raise StorageAppNotFoundError(f"app {app_id} not found")
        return _row_to_app(row)

    def save_app(self, app: App) -> int:
        """Provision an application. Raises StorageError if the id, name or secret is taken."""
        try:
            with self.engine.connect() as conn:
                conn.execute(_apps.insert().values(id=app.id, name=app.name, secret=app.secret))
                conn.commit()
        except IntegrityError as exc:
            raise StorageError(f"app {app.id} ({app.name!r}) conflicts with an existing app") from exc
        return app.id

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        pass_hash=bytes(row.pass_hash),
        is_admin=bool(row.is_admin),
    )


def _row_to_app(row) -> App:
    return App(id=row.id, name=row.name, secret=row.secret)
