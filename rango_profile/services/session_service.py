"""Session helpers (issue, resolve and revoke tokens)."""
from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone

from fastapi import Request

from rango_profile.core.config import get_settings
from rango_profile.db.models import UserSession
from rango_profile.db.session import get_session
from rango_profile.domain.resources import as_utc

SESSION_COOKIE_NAME = "session"


def issue_session(owner_id: str) -> str:
    """Create a new session token for the owner and persist it."""
    token = secrets.token_urlsafe(32)
    settings = get_settings()
    ttl = max(60, settings.session_ttl_seconds)
    expires_at = datetime.now(timezone.utc) + timedelta(seconds=ttl)

    with get_session() as session:
        session.add(UserSession(token=token, owner_id=owner_id, expires_at=expires_at))
        session.commit()
    return token


def owner_for_token(token: str | None) -> str | None:
    if not token:
        return None

    now = datetime.now(timezone.utc)
    with get_session() as session:
        db_session = session.get(UserSession, token)
        if db_session:
            # SQLite hands back naive datetimes; they were written as UTC.
            if db_session.expires_at and as_utc(db_session.expires_at) < now:
                session.delete(db_session)
                session.commit()
                return None
            return db_session.owner_id

    return None


def current_owner_id(request: Request) -> str | None:
    """Return the owner associated with the current session cookie, if any."""
    return owner_for_token(request.cookies.get(SESSION_COOKIE_NAME))


def delete_session(token: str | None) -> None:
    """Remove a session token, e.g. on logout. Unknown tokens are ignored."""
    if not token:
        return
    with get_session() as session:
        entity = session.get(UserSession, token)
        if entity:
            session.delete(entity)
            session.commit()
