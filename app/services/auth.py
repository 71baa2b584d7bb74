"""Account registration, password checks and bearer-token handling."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Sequence

import bcrypt
import jwt
from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..config import Settings
from ..db_models import User
from ..errors import ConflictError, NotFoundError, UnauthorizedError
from ..models import Genre, PublicUser, RegisterRequest, UserIdentity

logger = logging.getLogger(__name__)

INVALID_TOKEN = "Invalid Token."
INVALID_CREDENTIALS = "Invalid email or password"
ACCOUNT_EXISTS = "Username or email already in use"


def bearer_token(authorization: str | None) -> str:
    """Extract the token from an ``Authorization`` header value."""

    raw = (authorization or "").strip()
    if not raw:
        return ""
    if raw.lower().startswith("bearer "):
        return raw.split(" ", 1)[1].strip()
    return raw


class AuthService:
    """Creates accounts and resolves bearer tokens to users."""

    def __init__(
        self,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        secret: str | None = None,
    ):
        resolved_secret = secret or settings.jwt_secret
        if not resolved_secret:
            raise ValueError("A JWT secret is required when initialising AuthService")
        self._secret = resolved_secret
        self._algorithm = settings.jwt_algorithm
        self._expires = timedelta(seconds=settings.jwt_expires_seconds)
        self._rounds = settings.bcrypt_rounds
        self._session_factory = session_factory

    async def register(self, payload: RegisterRequest) -> tuple[PublicUser, str]:
        password_hash = await asyncio.to_thread(self._hash_password, payload.password)
        now = datetime.utcnow()
        async with self._session_factory() as session:
            existing = await session.scalar(
                select(User.id).where(
                    or_(User.username == payload.username, User.email == payload.email)
                )
            )
            if existing is not None:
                raise ConflictError(ACCOUNT_EXISTS)
            user = User(
                first_name=payload.first_name,
                last_name=payload.last_name,
                username=payload.username,
                email=payload.email,
                password_hash=password_hash,
                avatar_url=payload.avatar_url,
                age=payload.age,
                role="User",
                preferences=payload.preferences,
                genres=[genre.model_dump() for genre in payload.genres],
                created_at=now,
                updated_at=now,
            )
            session.add(user)
            try:
                await session.commit()
            except IntegrityError as exc:
                await session.rollback()
                raise ConflictError(ACCOUNT_EXISTS) from exc
            logger.info("Registered user %s", user.id)
            return PublicUser.model_validate(user), self.issue_token(user.id)

    async def login(self, email: str, password: str) -> tuple[PublicUser, str]:
        async with self._session_factory() as session:
            user = await session.scalar(select(User).where(User.email == email))
        if user is None:
            raise UnauthorizedError(INVALID_CREDENTIALS)
        matches = await asyncio.to_thread(
            self._check_password, password, user.password_hash
        )
        if not matches:
            raise UnauthorizedError(INVALID_CREDENTIALS)
        return PublicUser.model_validate(user), self.issue_token(user.id)

    def issue_token(self, user_id: int) -> str:
        now = datetime.now(timezone.utc)
        claims = {"sub": str(user_id), "iat": now, "exp": now + self._expires}
        return jwt.encode(claims, self._secret, algorithm=self._algorithm)

    async def verify(self, token: str) -> UserIdentity:
        """Resolve a bearer token to the user it was issued for."""

        if not token:
            raise UnauthorizedError()
        try:
            claims = jwt.decode(token, self._secret, algorithms=[self._algorithm])
            user_id = int(claims["sub"])
        except (jwt.InvalidTokenError, KeyError, TypeError, ValueError) as exc:
            raise UnauthorizedError(INVALID_TOKEN) from exc

        async with self._session_factory() as session:
            user = await session.get(User, user_id)
        if user is None:
            raise UnauthorizedError(INVALID_TOKEN)
        return UserIdentity(
            id=user.id,
            username=user.username,
            role=user.role,
            genres=self._clean_genres(user.genres),
        )

    async def get_profile(self, user_id: int) -> PublicUser:
        async with self._session_factory() as session:
            user = await session.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found")
        return PublicUser.model_validate(user)

    async def update_genres(
        self, user_id: int, genres: Sequence[Genre | None]
    ) -> PublicUser:
        """Replace the user's preferred genres, dropping empty entries."""

        cleaned = [genre.model_dump() for genre in genres if genre is not None]
        async with self._session_factory() as session:
            user = await session.get(User, user_id)
            if user is None:
                raise NotFoundError("User not found")
            user.genres = cleaned
            user.updated_at = datetime.utcnow()
            await session.commit()
            return PublicUser.model_validate(user)

    def _hash_password(self, password: str) -> str:
        salt = bcrypt.gensalt(rounds=self._rounds)
        return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")

    @staticmethod
    def _check_password(password: str, password_hash: str) -> bool:
        try:
            return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
        except ValueError:
            return False

    @staticmethod
    def _clean_genres(raw: object) -> list[Genre]:
        if not isinstance(raw, list):
            return []
        genres: list[Genre] = []
        for entry in raw:
            if not isinstance(entry, dict) or not entry.get("id"):
                continue
            genres.append(Genre.model_validate(entry))
        return genres
