"""
auth/models.py -- Domain dataclasses for identity entities.

Pattern: Data class (pure data container, zero logic). Stores build these
from rows; the service and token issuer read them.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class User:
    """A registered account.

    pass_hash is the raw bcrypt output. It never leaves the process: not in
    responses, not in logs (repr=False keeps it out of debug output too).
    """

    id: int
    email: str
    pass_hash: bytes = field(repr=False)
    is_admin: bool = False


@dataclass
class App:
    """A client application sharing the SSO backend.

    secret is the HS256 key for every token issued on behalf of this app.
    The id is chosen by the operator at provisioning time, not by the store.
    """

    id: int
    name: str
    secret: str = field(repr=False)
