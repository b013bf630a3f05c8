"""SQLAlchemy ORM models for stored OAuth credentials."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Index, String, Text, Uuid, func, text
from sqlalchemy.orm import Mapped, mapped_column

from exchange_sync.db.base import Base
from exchange_sync.db.enums import OAuthProvider
from exchange_sync.db.types import EncryptedString, JsonType


class OAuthToken(Base):
    """
    OAuth token set for an external provider.

    Exactly one row per provider is active at a time. A refresh or a new
    authorization deactivates the previous row and inserts a replacement;
    inactive rows are kept for audit.
    """

    __tablename__ = "oauth_tokens"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    provider: Mapped[str] = mapped_column(
        String(50), default=OAuthProvider.PRACTICEPANTHER.value, nullable=False
    )

    # Encrypted at rest (Fernet)
    access_token: Mapped[str] = mapped_column(EncryptedString, nullable=False)
    refresh_token: Mapped[str | None] = mapped_column(EncryptedString, nullable=True)

    token_type: Mapped[str] = mapped_column(String(20), default="Bearer", nullable=False)
    scope: Mapped[str | None] = mapped_column(Text, nullable=True)
    expires_at: Mapped[datetime]
    is_active: Mapped[bool] = mapped_column(default=True, nullable=False)

    last_used_at: Mapped[datetime | None] = mapped_column(nullable=True)
    last_refreshed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    provider_metadata: Mapped[dict | None] = mapped_column(JsonType, nullable=True)

    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(), nullable=False
    )

    __table_args__ = (
        Index(
            "uq_oauth_tokens_active_provider",
            "provider",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
    )
