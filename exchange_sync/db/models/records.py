"""SQLAlchemy ORM models for records mirrored from PracticePanther.

Every table carries a unique vendor identifier (the upsert conflict key),
normalized columns used by the rest of the platform, `pp_*` shadow columns
holding raw vendor scalars, an open `custom_fields` map and the verbatim
vendor payload in `pp_raw_data`.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, Numeric, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from exchange_sync.db.base import Base
from exchange_sync.db.enums import (
    DEFAULT_EXCHANGE_STATUS,
    DEFAULT_PRIORITY,
    DEFAULT_TASK_STATUS,
)
from exchange_sync.db.types import JsonType

Money = Numeric(14, 2, asdecimal=False)


class VendorRecordMixin:
    """Columns shared by every mirrored vendor record."""

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    custom_fields: Mapped[dict | None] = mapped_column(JsonType, nullable=True)
    pp_raw_data: Mapped[dict | None] = mapped_column(JsonType, nullable=True)
    pp_created_at: Mapped[datetime | None] = mapped_column(nullable=True)
    pp_updated_at: Mapped[datetime | None] = mapped_column(nullable=True)
    pp_synced_at: Mapped[datetime | None] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        server_default=func.now(), onupdate=func.now(), nullable=False
    )


# =============================================================================
# Contacts
# =============================================================================


class Contact(VendorRecordMixin, Base):
    """A person synced from PracticePanther contacts."""

    __tablename__ = "contacts"

    pp_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)

    first_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    display_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    email: Mapped[str | None] = mapped_column(Text, nullable=True)
    phone_primary: Mapped[str | None] = mapped_column(Text, nullable=True)
    phone_mobile: Mapped[str | None] = mapped_column(Text, nullable=True)
    phone_work: Mapped[str | None] = mapped_column(Text, nullable=True)
    phone_home: Mapped[str | None] = mapped_column(Text, nullable=True)
    phone_fax: Mapped[str | None] = mapped_column(Text, nullable=True)
    company: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_primary_contact: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Shadow vendor fields
    pp_account_ref_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    pp_account_ref_display_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    pp_display_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    pp_first_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    pp_middle_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    pp_last_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    pp_email: Mapped[str | None] = mapped_column(Text, nullable=True)
    pp_phone_mobile: Mapped[str | None] = mapped_column(Text, nullable=True)
    pp_phone_work: Mapped[str | None] = mapped_column(Text, nullable=True)
    pp_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    pp_custom_field_values: Mapped[list | None] = mapped_column(JsonType, nullable=True)


# =============================================================================
# Exchanges (PracticePanther matters)
# =============================================================================


class Exchange(VendorRecordMixin, Base):
    """A 1031 exchange backed by a PracticePanther matter."""

    __tablename__ = "exchanges"

    pp_matter_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)

    exchange_number: Mapped[str | None] = mapped_column(Text, nullable=True)
    name: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), default=DEFAULT_EXCHANGE_STATUS.value, nullable=False
    )
    exchange_type: Mapped[str | None] = mapped_column(Text, nullable=True)
    opened_date: Mapped[datetime | None] = mapped_column(nullable=True)
    closed_date: Mapped[datetime | None] = mapped_column(nullable=True)
    identification_deadline: Mapped[datetime | None] = mapped_column(nullable=True)
    completion_deadline: Mapped[datetime | None] = mapped_column(nullable=True)
    statute_of_limitation_date: Mapped[datetime | None] = mapped_column(nullable=True)

    # Financial
    rate: Mapped[float | None] = mapped_column(Money, nullable=True)
    proceeds: Mapped[float | None] = mapped_column(Money, nullable=True)
    bank: Mapped[str | None] = mapped_column(Text, nullable=True)
    client_vesting: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Relinquished property
    rel_property_address: Mapped[str | None] = mapped_column(Text, nullable=True)
    rel_property_city: Mapped[str | None] = mapped_column(Text, nullable=True)
    rel_property_state: Mapped[str | None] = mapped_column(Text, nullable=True)
    rel_property_zip: Mapped[str | None] = mapped_column(Text, nullable=True)
    rel_apn: Mapped[str | None] = mapped_column(Text, nullable=True)
    rel_escrow_number: Mapped[str | None] = mapped_column(Text, nullable=True)
    rel_value: Mapped[float | None] = mapped_column(Money, nullable=True)
    rel_contract_date: Mapped[datetime | None] = mapped_column(nullable=True)
    close_of_escrow_date: Mapped[datetime | None] = mapped_column(nullable=True)
    buyer_1_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    buyer_2_name: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Replacement property 1
    rep_1_property_address: Mapped[str | None] = mapped_column(Text, nullable=True)
    rep_1_city: Mapped[str | None] = mapped_column(Text, nullable=True)
    rep_1_state: Mapped[str | None] = mapped_column(Text, nullable=True)
    rep_1_zip: Mapped[str | None] = mapped_column(Text, nullable=True)
    rep_1_apn: Mapped[str | None] = mapped_column(Text, nullable=True)
    rep_1_escrow_number: Mapped[str | None] = mapped_column(Text, nullable=True)
    rep_1_value: Mapped[float | None] = mapped_column(Money, nullable=True)
    rep_1_contract_date: Mapped[datetime | None] = mapped_column(nullable=True)
    rep_1_seller_name: Mapped[str | None] = mapped_column(Text, nullable=True)

    tags: Mapped[list | None] = mapped_column(JsonType, nullable=True)
    assigned_to_users: Mapped[list | None] = mapped_column(JsonType, nullable=True)

    # Shadow vendor fields
    pp_number: Mapped[str | None] = mapped_column(Text, nullable=True)
    pp_display_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    pp_matter_status: Mapped[str | None] = mapped_column(Text, nullable=True)
    pp_practice_area: Mapped[str | None] = mapped_column(Text, nullable=True)
    pp_responsible_attorney: Mapped[str | None] = mapped_column(Text, nullable=True)
    pp_billing_method: Mapped[str | None] = mapped_column(Text, nullable=True)
    pp_opened_date: Mapped[str | None] = mapped_column(Text, nullable=True)
    pp_closed_date: Mapped[str | None] = mapped_column(Text, nullable=True)
    pp_account_ref_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    pp_account_ref_display_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    pp_custom_field_values: Mapped[list | None] = mapped_column(JsonType, nullable=True)


# =============================================================================
# Tasks & Notes
# =============================================================================


class Task(VendorRecordMixin, Base):
    """A task synced from PracticePanther."""

    __tablename__ = "tasks"

    pp_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)

    title: Mapped[str | None] = mapped_column(Text, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), default=DEFAULT_TASK_STATUS.value, nullable=False
    )
    priority: Mapped[str] = mapped_column(
        String(20), default=DEFAULT_PRIORITY.value, nullable=False
    )
    due_date: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # Shadow vendor fields
    pp_status: Mapped[str | None] = mapped_column(Text, nullable=True)
    pp_priority: Mapped[str | None] = mapped_column(Text, nullable=True)
    pp_due_date: Mapped[str | None] = mapped_column(Text, nullable=True)
    pp_matter_ref_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    pp_matter_ref_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    pp_account_ref_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    pp_assigned_to_users: Mapped[list | None] = mapped_column(JsonType, nullable=True)
    pp_assigned_to_contacts: Mapped[list | None] = mapped_column(JsonType, nullable=True)
    pp_tags: Mapped[list | None] = mapped_column(JsonType, nullable=True)
    pp_custom_field_values: Mapped[list | None] = mapped_column(JsonType, nullable=True)


class Note(VendorRecordMixin, Base):
    """A matter/account note synced from PracticePanther."""

    __tablename__ = "notes"

    pp_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)

    subject: Mapped[str | None] = mapped_column(Text, nullable=True)
    body: Mapped[str | None] = mapped_column(Text, nullable=True)
    note_date: Mapped[datetime | None] = mapped_column(nullable=True)

    # Shadow vendor fields
    pp_matter_ref_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    pp_matter_ref_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    pp_account_ref_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    pp_account_ref_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    pp_assigned_to_users: Mapped[list | None] = mapped_column(JsonType, nullable=True)


# =============================================================================
# Billing
# =============================================================================


class Invoice(VendorRecordMixin, Base):
    """An invoice synced from PracticePanther."""

    __tablename__ = "invoices"

    pp_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)

    invoice_number: Mapped[str | None] = mapped_column(Text, nullable=True)
    issue_date: Mapped[datetime | None] = mapped_column(nullable=True)
    due_date: Mapped[datetime | None] = mapped_column(nullable=True)
    status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    invoice_type: Mapped[str | None] = mapped_column(Text, nullable=True)
    subtotal: Mapped[float | None] = mapped_column(Money, nullable=True)
    tax: Mapped[float | None] = mapped_column(Money, nullable=True)
    discount: Mapped[float | None] = mapped_column(Money, nullable=True)
    total: Mapped[float | None] = mapped_column(Money, nullable=True)
    total_paid: Mapped[float | None] = mapped_column(Money, nullable=True)
    total_outstanding: Mapped[float | None] = mapped_column(Money, nullable=True)
    items_time_entries: Mapped[list | None] = mapped_column(JsonType, nullable=True)
    items_expenses: Mapped[list | None] = mapped_column(JsonType, nullable=True)
    items_flat_fees: Mapped[list | None] = mapped_column(JsonType, nullable=True)

    # Shadow vendor fields
    pp_status: Mapped[str | None] = mapped_column(Text, nullable=True)
    pp_account_ref_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    pp_account_ref_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    pp_matter_ref_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    pp_matter_ref_name: Mapped[str | None] = mapped_column(Text, nullable=True)


class Expense(VendorRecordMixin, Base):
    """An expense synced from PracticePanther."""

    __tablename__ = "expenses"

    pp_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)

    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    expense_date: Mapped[datetime | None] = mapped_column(nullable=True)
    quantity: Mapped[float | None] = mapped_column(Money, nullable=True)
    price: Mapped[float | None] = mapped_column(Money, nullable=True)
    amount: Mapped[float | None] = mapped_column(Money, nullable=True)
    is_billable: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_billed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    private_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Shadow vendor fields
    pp_matter_ref_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    pp_matter_ref_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    pp_account_ref_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    pp_expense_category_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    pp_billed_by_user_name: Mapped[str | None] = mapped_column(Text, nullable=True)


# =============================================================================
# Staff
# =============================================================================


class StaffUser(VendorRecordMixin, Base):
    """A PracticePanther staff user (attorney, paralegal, coordinator)."""

    __tablename__ = "staff_users"

    pp_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)

    email: Mapped[str | None] = mapped_column(Text, nullable=True)
    display_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    first_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Shadow vendor fields
    pp_display_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    pp_middle_name: Mapped[str | None] = mapped_column(Text, nullable=True)
