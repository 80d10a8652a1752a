"""
Career Sewa API — User SQLAlchemy Model
=========================================

What:  ORM model representing the `users` table.
Why:   Maps Python objects to database rows for type-safe database operations.
How:   Inherits from the shared DeclarativeBase; DatabaseConnection.setup_indexes()
       creates the table and its indexes after the first successful connect.
Who:   Used by UserService for reads and writes.

Table Design Rationale:
    - UUID primary key: non-sequential, safe to expose in URLs
    - email: unique, stored lower-cased and trimmed (normalised by the service)
    - password_hash: salted PBKDF2 digest; never serialized
    - role / is_active: indexed, the two columns user listings filter on
    - Portable column types (Uuid, DateTime(timezone=True)) so the same model
      runs on PostgreSQL in deployment and SQLite in tests
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Boolean, DateTime, Index, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from career_sewa.database import Base

USER_ROLES = ("job_seeker", "employer", "admin")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    """
    A registered account.

    Secret columns (password_hash and the verification/reset tokens) are
    excluded from every response schema.
    """

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    fullname: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)

    # Values: job_seeker | employer | admin
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="job_seeker")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    email_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    email_verification_token: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    password_reset_token: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    password_reset_expires: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    last_login: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        Index("idx_users_role", "role"),
        Index("idx_users_is_active", "is_active"),
    )

    @property
    def display_name(self) -> str:
        return self.fullname or self.email

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email='{self.email}', role='{self.role}')>"
