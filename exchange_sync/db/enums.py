"""Enum definitions for the sync engine and normalized records."""

from enum import Enum


class OAuthProvider(str, Enum):
    """External systems with stored OAuth credentials."""

    PRACTICEPANTHER = "practicepanther"


class TokenStatus(str, Enum):
    """Diagnostic status of the stored token set."""

    NO_TOKEN = "no_token"  # nosec B105
    VALID = "valid"
    EXPIRING_SOON = "expiring_soon"
    EXPIRED = "expired"


class SyncMode(str, Enum):
    """Fetch strategy for a sync run."""

    INCREMENTAL = "incremental"  # Only records changed since the high-water mark
    FULL = "full"  # Bounded bulk pull, ignores the high-water mark


class SyncStatus(str, Enum):
    """Lifecycle of a sync log entry."""

    RUNNING = "running"
    SUCCESS = "success"
    PARTIAL = "partial"  # Some resource types failed
    ERROR = "error"  # Nothing succeeded, or failed before any pipeline ran


class ResourceType(str, Enum):
    """Vendor resource collections pulled by the sync engine."""

    MATTERS = "matters"
    CONTACTS = "contacts"
    USERS = "users"
    TASKS = "tasks"
    NOTES = "notes"
    INVOICES = "invoices"
    EXPENSES = "expenses"


class ExchangeStatus(str, Enum):
    """Internal status of a 1031 exchange."""

    PENDING = "pending"
    DAY_45 = "45d"  # Identification period
    DAY_180 = "180d"  # Exchange period
    COMPLETED = "completed"
    TERMINATED = "terminated"


class TaskStatus(str, Enum):
    """Internal task status."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    ON_HOLD = "on_hold"


class Priority(str, Enum):
    """Internal task priority."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class InvoiceStatus(str, Enum):
    """Payment state derived from invoice totals."""

    PAID = "paid"
    PARTIAL = "partial"
    UNPAID = "unpaid"


DEFAULT_EXCHANGE_STATUS = ExchangeStatus.PENDING
DEFAULT_TASK_STATUS = TaskStatus.PENDING
DEFAULT_PRIORITY = Priority.MEDIUM
