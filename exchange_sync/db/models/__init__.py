"""SQLAlchemy ORM models."""

from exchange_sync.db.models.oauth import OAuthToken
from exchange_sync.db.models.records import (
    Contact,
    Exchange,
    Expense,
    Invoice,
    Note,
    StaffUser,
    Task,
)
from exchange_sync.db.models.sync import SyncLog, SyncTimestamp

__all__ = [
    "OAuthToken",
    "SyncLog",
    "SyncTimestamp",
    "Contact",
    "Exchange",
    "Task",
    "Note",
    "Invoice",
    "Expense",
    "StaffUser",
]
