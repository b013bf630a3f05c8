"""SQLAlchemy ORM models for sync coordination state."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Index, Integer, String, Text, Uuid, func, text
from sqlalchemy.orm import Mapped, mapped_column

from exchange_sync.db.base import Base
from exchange_sync.db.enums import SyncStatus
from exchange_sync.db.types import JsonType


class SyncTimestamp(Base):
    """Per-resource high-water mark bounding incremental fetches."""

    __tablename__ = "sync_timestamps"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    resource_type: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    last_synced_at: Mapped[datetime]
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(), nullable=False
    )


class SyncLog(Base):
    """
    One record per orchestrated run.

    The `running` row doubles as the single-flight marker: the partial unique
    index below allows at most one of them, so claiming a run is one INSERT.
    """

    __tablename__ = "sync_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    sync_type: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=SyncStatus.RUNNING.value, nullable=False
    )
    resources: Mapped[list] = mapped_column(JsonType, default=list, nullable=False)
    started_at: Mapped[datetime]
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    records_processed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    records_created: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    records_updated: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    records_failed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    triggered_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    details: Mapped[dict | None] = mapped_column(JsonType, nullable=True)

    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)

    __table_args__ = (
        Index(
            "uq_sync_logs_single_running",
            "status",
            unique=True,
            postgresql_where=text("status = 'running'"),
            sqlite_where=text("status = 'running'"),
        ),
        Index("idx_sync_logs_started_at", "started_at"),
    )

    @property
    def duration_seconds(self) -> int | None:
        if not self.completed_at or not self.started_at:
            return None
        started = self.started_at.replace(tzinfo=None)
        completed = self.completed_at.replace(tzinfo=None)
        return int((completed - started).total_seconds())
