"""Resolve websocket credentials into chat user profiles."""

from __future__ import annotations

from sqlalchemy.orm import Session, sessionmaker

from app.core.security import decode_access_token
from app.database import SessionLocal
from app.models import AccountStatus, User
from eventconnect.realtime.errors import AuthenticationError
from eventconnect.realtime.store import UserProfile


def profile_from_user(user: User) -> UserProfile:
    return UserProfile(
        id=user.id,
        username=user.username,
        first_name=user.first_name,
        last_name=user.last_name,
        avatar_url=user.avatar_url,
    )


class TokenAuthenticator:
    """Verify a JWT access token and load the active user it names."""

    def __init__(self, session_factory: sessionmaker[Session] = SessionLocal) -> None:
        self._session_factory = session_factory

    async def authenticate(self, credential: str) -> UserProfile:
        payload = decode_access_token(credential)
        sub = payload.get("sub")
        if sub is None:
            raise AuthenticationError("Could not validate credentials")
        try:
            user_id = int(sub)
        except (TypeError, ValueError):
            raise AuthenticationError("Could not validate credentials") from None

        with self._session_factory() as db:
            user = db.get(User, user_id)
            if user is None:
                raise AuthenticationError("Could not validate credentials")
            if user.account_status != AccountStatus.ACTIVE:
                raise AuthenticationError("Account is not active")
            return profile_from_user(user)
