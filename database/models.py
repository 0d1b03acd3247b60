"""
SQLAlchemy ORM models.

Column types are the dialect-neutral ones so the same metadata runs on
PostgreSQL (production) and SQLite (tests).
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Index,
    String,
    Text,
    Uuid,
    text,
)
from sqlalchemy.orm import DeclarativeBase

from connectors.providers import Sportsbook

_SPORTSBOOK_VALUES = ", ".join(f"'{sb.value}'" for sb in Sportsbook)


class Base(DeclarativeBase):
    pass


class OAuthCredential(Base):
    """One owner↔sportsbook link.  Inactive rows are kept for audit."""

    __tablename__ = "oauth_credentials"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_email = Column(String(255), nullable=False)
    sportsbook = Column(String(32), nullable=False)
    sportsbook_user_id = Column(String(128), nullable=True)
    access_token = Column(Text, nullable=False)       # iv_hex:ciphertext_hex
    refresh_token = Column(Text, nullable=False)      # iv_hex:ciphertext_hex
    access_token_expires_at = Column(DateTime(timezone=True), nullable=False)
    refresh_token_expires_at = Column(DateTime(timezone=True), nullable=False)
    scopes = Column(JSON, nullable=False, default=list)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        CheckConstraint(
            f"sportsbook IN ({_SPORTSBOOK_VALUES})",
            name="ck_oauth_credentials_sportsbook",
        ),
        Index("ix_oauth_credentials_owner_sportsbook", "owner_email", "sportsbook"),
        # at most one active link per (owner, sportsbook)
        Index(
            "uq_oauth_credentials_active_link",
            "owner_email",
            "sportsbook",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
        Index("ix_oauth_credentials_refresh_sweep", "is_active", "access_token_expires_at"),
        Index("ix_oauth_credentials_refresh_expiry", "refresh_token_expires_at"),
        Index("ix_oauth_credentials_sportsbook_user", "sportsbook_user_id"),
    )
