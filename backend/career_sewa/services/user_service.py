"""
Career Sewa API — User Service
================================

What:  Business logic for user records: create, fetch, list, password checks.
Why:   Keeps persistence details and library errors out of the route layer.
How:   Receives an AsyncSession per call; translates driver errors into the
       application taxonomy before they leave the service.

Error translation:
    IntegrityError on users.email  → ConflictError (409)
    malformed user id              → BadRequestError (400)
    no row for the id              → NotFoundError (404)
"""

import hashlib
import hmac
import logging
import secrets
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from career_sewa.exceptions import BadRequestError, ConflictError, NotFoundError
from career_sewa.models.user import User
from career_sewa.schemas.user import UserCreate, UserListResponse, UserResponse

logger = logging.getLogger(__name__)

_HASH_ALGORITHM = "pbkdf2_sha256"
_HASH_ITERATIONS = 260_000


def hash_password(password: str, salt: Optional[str] = None) -> str:
    """Returns `pbkdf2_sha256$<iterations>$<salt>$<hex digest>`."""
    salt = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac(
        "sha256", password.encode("utf-8"), salt.encode("utf-8"), _HASH_ITERATIONS
    )
    return f"{_HASH_ALGORITHM}${_HASH_ITERATIONS}${salt}${digest.hex()}"


def verify_password(password: str, encoded: str) -> bool:
    try:
        algorithm, iterations, salt, expected = encoded.split("$", 3)
        rounds = int(iterations)
    except ValueError:
        return False
    if algorithm != _HASH_ALGORITHM or rounds < 1:
        return False
    digest = hashlib.pbkdf2_hmac(
        "sha256", password.encode("utf-8"), salt.encode("utf-8"), rounds
    )
    return hmac.compare_digest(digest.hex(), expected)


class UserService:
    """
    Stateless service; every method receives the session it should use.
    """

    async def create_user(self, db: AsyncSession, payload: UserCreate) -> UserResponse:
        """
        Persist a new user.

        Raises:
            ConflictError: the email is already registered.
        """
        user = User(
            fullname=payload.fullname,
            email=payload.email.strip().lower(),
            password_hash=hash_password(payload.password),
            role=payload.role,
        )
        db.add(user)
        try:
            await db.flush()
        except IntegrityError as e:
            logger.warning("Duplicate user rejected: %s", user.email)
            raise ConflictError.from_integrity_error(e, values={"email": user.email}) from e

        logger.info("User %s has been saved to the database", user.id)
        return UserResponse.model_validate(user)

    async def get_user(self, db: AsyncSession, user_id: str) -> UserResponse:
        user = await self._load(db, user_id)
        return UserResponse.model_validate(user)

    async def get_user_by_email(self, db: AsyncSession, email: str) -> Optional[User]:
        result = await db.execute(select(User).where(User.email == email.strip().lower()))
        return result.scalar_one_or_none()

    async def list_active_users(self, db: AsyncSession) -> UserListResponse:
        result = await db.execute(
            select(User).where(User.is_active.is_(True)).order_by(User.created_at.desc())
        )
        users = result.scalars().all()

        count_result = await db.execute(
            select(func.count()).select_from(User).where(User.is_active.is_(True))
        )
        total = count_result.scalar() or 0

        return UserListResponse(
            users=[UserResponse.model_validate(u) for u in users],
            total_count=total,
        )

    async def authenticate(self, db: AsyncSession, email: str, password: str) -> Optional[User]:
        """Returns the user when the password matches, updating last_login."""
        user = await self.get_user_by_email(db, email)
        if user is None or not verify_password(password, user.password_hash):
            return None
        await self.update_last_login(db, user)
        return user

    async def update_last_login(self, db: AsyncSession, user: User) -> None:
        user.last_login = datetime.now(timezone.utc)
        await db.flush()

    async def _load(self, db: AsyncSession, user_id: str) -> User:
        try:
            uid = uuid.UUID(str(user_id))
        except ValueError:
            raise BadRequestError.from_cast_error("id", user_id)

        result = await db.execute(select(User).where(User.id == uid))
        user = result.scalar_one_or_none()
        if user is None:
            raise NotFoundError(resource="User", resource_id=str(user_id))
        return user


user_service = UserService()
