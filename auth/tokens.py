"""
auth/tokens.py -- Signed access tokens scoped to a client application.

JWT: python-jose with HS256. Each token is signed with the secret of the
application it was issued for, so a token from app A does not verify under
app B's secret. Claims are exactly uid, email, app_id and exp; exp is an
integer Unix timestamp.

This module only issues tokens. Verification belongs to the client apps that
hold their own secret.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from jose import jwt

from auth.models import App, User

ALGORITHM = "HS256"


def new_token(user: User, app: App, duration: timedelta, now: datetime | None = None) -> str:
    """Encode a signed JWT for user, scoped to app, valid for duration.

    Args:
        user:     The authenticated user; id and email go into the claims.
        app:      The requesting application; its secret is the signing key.
        duration: Token lifetime, added to the issue time to produce exp.
        now:      Issue time. Defaults to the current UTC time.

    Raises jose.JWTError (or its JWSError subclass) if signing fails.
    """
    issued_at = now if now is not None else datetime.now(timezone.utc)
    claims = {
        "uid": user.id,
        "email": user.email,
        "app_id": app.id,
        "exp": int((issued_at + duration).timestamp()),
    }
    return jwt.encode(claims, app.secret, algorithm=ALGORITHM)
