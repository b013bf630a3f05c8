"""Field mapping from PracticePanther payloads to normalized records.

One mapper per resource type. Every mapper is total: a malformed field
degrades to None instead of failing the record, and the vendor payload is
kept verbatim in `pp_raw_data`.

Custom fields are matched by human-entered labels that vary across
accounts. CUSTOM_FIELD_ALIASES lists the known spellings per logical field in
priority order; adding a spelling is a data change only.
"""

from __future__ import annotations

import functools
import logging
from datetime import datetime, timedelta
from typing import Any, Callable

from exchange_sync.core.config import settings
from exchange_sync.db.enums import (
    DEFAULT_EXCHANGE_STATUS,
    DEFAULT_PRIORITY,
    DEFAULT_TASK_STATUS,
    ExchangeStatus,
    InvoiceStatus,
    Priority,
    TaskStatus,
)
from exchange_sync.types import JsonObject
from exchange_sync.utils.datetime_parsing import parse_vendor_datetime
from exchange_sync.utils.normalization import (
    normalize_label,
    parse_bool,
    parse_currency,
    strip_or_none,
)

logger = logging.getLogger(__name__)

IDENTIFICATION_PERIOD_DAYS = 45
EXCHANGE_PERIOD_DAYS = 180

# Money columns are NUMERIC(14, 2)
MONEY_LIMIT = 10**12


# =============================================================================
# Lookup tables
# =============================================================================

CUSTOM_FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "exchange_type": ("TYPE OF EXCHANGE", "Exchange Type", "Type"),
    "rate": ("RATE", "Rate", "Interest Rate"),
    "bank": ("BANK", "Bank", "Bank Name"),
    "rel_property_address": ("REL PROPERTY ADDRESS", "Relinquished Property Address", "Rel Address"),
    "rel_property_city": ("REL PROPERTY CITY", "Relinquished Property City", "Rel City"),
    "rel_property_state": ("REL PROPERTY STATE", "Relinquished Property State", "Rel State"),
    "rel_property_zip": ("REL PROPERTY ZIP", "Relinquished Property Zip", "Rel Zip"),
    "rel_apn": ("REL APN", "Relinquished APN"),
    "rel_escrow_number": ("REL ESCROW #", "REL ESCROW NUMBER", "Relinquished Escrow Number"),
    "rel_value": ("REL VALUE", "Relinquished Value", "Relinquished Property Value"),
    "rel_contract_date": ("REL CONTRACT DATE", "Relinquished Contract Date"),
    "close_of_escrow_date": ("CLOSE OF ESCROW DATE", "Close of Escrow", "COE Date"),
    "day_45": ("45 DAY", "45DAY", "45 Day Deadline", "Identification Deadline"),
    "day_180": ("180 DAY", "180DAY", "180 Day Deadline", "Exchange Deadline"),
    "proceeds": ("PROCEEDS", "Proceeds", "Exchange Proceeds"),
    "client_vesting": ("CLIENT VESTING", "Client Vesting", "Vesting"),
    "buyer_1_name": ("BUYER 1 NAME", "Buyer 1 Name", "Buyer 1"),
    "buyer_2_name": ("BUYER 2 NAME", "Buyer 2 Name", "Buyer 2"),
    "rep_1_property_address": ("REP 1 PROPERTY ADDRESS", "Replacement 1 Address", "Rep 1 Address"),
    "rep_1_city": ("REP 1 CITY", "Replacement 1 City"),
    "rep_1_state": ("REP 1 STATE", "Replacement 1 State"),
    "rep_1_zip": ("REP 1 ZIP", "Replacement 1 Zip"),
    "rep_1_apn": ("REP 1 APN", "Replacement 1 APN"),
    "rep_1_escrow_number": ("REP 1 ESCROW #", "REP 1 ESCROW NUMBER", "Replacement 1 Escrow Number"),
    "rep_1_value": ("REP 1 VALUE", "Replacement 1 Value"),
    "rep_1_contract_date": ("REP 1 CONTRACT DATE", "Replacement 1 Contract Date"),
    "rep_1_seller_name": ("REP 1 SELLER NAME", "Replacement 1 Seller", "Rep 1 Seller"),
    "statute_of_limitation_date": ("STATUTE OF LIMITATION DATE", "Statute of Limitations"),
}

# Keys are normalize_label() forms
MATTER_STATUS_MAP: dict[str, ExchangeStatus] = {
    "open": ExchangeStatus.PENDING,
    "pending": ExchangeStatus.PENDING,
    "active": ExchangeStatus.DAY_45,
    "in progress": ExchangeStatus.DAY_180,
    "completed": ExchangeStatus.COMPLETED,
    "closed": ExchangeStatus.COMPLETED,
    "terminated": ExchangeStatus.TERMINATED,
    "cancelled": ExchangeStatus.TERMINATED,
    "canceled": ExchangeStatus.TERMINATED,
}

TASK_STATUS_MAP: dict[str, TaskStatus] = {
    "pending": TaskStatus.PENDING,
    "not started": TaskStatus.PENDING,
    "open": TaskStatus.PENDING,
    "in progress": TaskStatus.IN_PROGRESS,
    "completed": TaskStatus.COMPLETED,
    "complete": TaskStatus.COMPLETED,
    "done": TaskStatus.COMPLETED,
    "cancelled": TaskStatus.CANCELLED,
    "canceled": TaskStatus.CANCELLED,
    "on hold": TaskStatus.ON_HOLD,
}

PRIORITY_MAP: dict[str, Priority] = {
    "low": Priority.LOW,
    "normal": Priority.MEDIUM,
    "medium": Priority.MEDIUM,
    "high": Priority.HIGH,
    "urgent": Priority.URGENT,
    "critical": Priority.URGENT,
}

CUSTOM_FIELD_LABEL_KEYS = ("label", "field_name", "name")
CUSTOM_FIELD_VALUE_KEYS = (
    "value",
    "value_string",
    "value_number",
    "value_date_time",
    "value_boolean",
)


# =============================================================================
# Field helpers
# =============================================================================


def _id(raw: Any) -> str | None:
    if raw is None or isinstance(raw, (dict, list, bool)):
        return None
    return strip_or_none(raw)


def _text(raw: Any) -> str | None:
    if isinstance(raw, (dict, list)):
        return None
    return strip_or_none(raw)


def _ref(record: JsonObject, key: str) -> JsonObject:
    value = record.get(key)
    return value if isinstance(value, dict) else {}


def _ref_name(ref: JsonObject) -> str | None:
    return _text(ref.get("display_name") or ref.get("name"))


def _display(raw: Any) -> str | None:
    """Vendor values that are either scalars or `{id, display_name}` refs."""
    if isinstance(raw, dict):
        return _ref_name(raw)
    return _text(raw)


def _list(raw: Any) -> list:
    return list(raw) if isinstance(raw, list) else []


def _date(raw: Any) -> datetime | None:
    return parse_vendor_datetime(raw, settings.SYNC_TIMEZONE)


def _money(raw: Any) -> float | None:
    value = parse_currency(raw)
    if value is None or abs(value) >= MONEY_LIMIT:
        return None
    return value


def _lookup(table: dict[str, Any], raw: Any, default: Any) -> str:
    key = normalize_label(raw) if isinstance(raw, str) else ""
    return table.get(key, default).value


# =============================================================================
# Custom fields
# =============================================================================


def _custom_field_label(entry: JsonObject) -> str | None:
    ref = entry.get("custom_field_ref")
    if isinstance(ref, dict):
        label = _text(ref.get("label") or ref.get("name"))
        if label:
            return label
    for key in CUSTOM_FIELD_LABEL_KEYS:
        label = _text(entry.get(key))
        if label:
            return label
    return None


def _custom_field_value(entry: JsonObject) -> Any:
    for key in CUSTOM_FIELD_VALUE_KEYS:
        value = entry.get(key)
        if value is not None and value != "":
            return value
    return None


def extract_custom_fields(record: JsonObject) -> dict[str, Any]:
    """Return every custom field as label -> value (first label wins)."""
    fields: dict[str, Any] = {}
    for entry in _list(record.get("custom_field_values")):
        if not isinstance(entry, dict):
            continue
        label = _custom_field_label(entry)
        if label and label not in fields:
            fields[label] = _custom_field_value(entry)
    return fields


def get_custom_field(custom_fields: dict[str, Any], field: str) -> Any:
    """
    First-match lookup of a logical custom field across its known aliases.

    Labels are compared after normalize_label(), so casing and punctuation
    differences still match. Returns None when no alias is present.
    """
    aliases = CUSTOM_FIELD_ALIASES.get(field, (field,))
    normalized = {normalize_label(label): value for label, value in custom_fields.items()}
    for alias in aliases:
        value = normalized.get(normalize_label(alias))
        if value is not None and value != "":
            return value
    return None


# =============================================================================
# Totality guard
# =============================================================================


def total_mapper(id_column: str) -> Callable:
    """
    Guarantee a mapper never raises.

    If a mapper still fails, the record degrades to its identifier plus the
    raw payload so the row is kept and can be replayed.
    """

    def decorator(mapper: Callable[[JsonObject], JsonObject]) -> Callable[[Any], JsonObject]:
        @functools.wraps(mapper)
        def wrapper(record: Any) -> JsonObject:
            if not isinstance(record, dict):
                return {id_column: None, "pp_raw_data": record}
            try:
                return mapper(record)
            except Exception:
                logger.warning(
                    "%s degraded record %s to raw payload",
                    mapper.__name__,
                    _id(record.get("id")),
                    exc_info=True,
                )
                return {id_column: _id(record.get("id")), "pp_raw_data": record}

        return wrapper

    return decorator


def _common(record: JsonObject) -> JsonObject:
    return {
        "pp_raw_data": record,
        "pp_created_at": _date(record.get("created_at")),
        "pp_updated_at": _date(record.get("updated_at")),
    }


# =============================================================================
# Mappers
# =============================================================================


@total_mapper("pp_id")
def map_contact(record: JsonObject) -> JsonObject:
    account = _ref(record, "account_ref")
    custom_fields = extract_custom_fields(record)
    first_name = _text(record.get("first_name"))
    last_name = _text(record.get("last_name"))
    display_name = _text(record.get("display_name"))
    phone_mobile = _text(record.get("phone_mobile"))
    phone_work = _text(record.get("phone_work"))
    phone_home = _text(record.get("phone_home"))

    return {
        "pp_id": _id(record.get("id")),
        "first_name": first_name,
        "last_name": last_name,
        "display_name": display_name
        or " ".join(part for part in (first_name, last_name) if part)
        or None,
        "email": _text(record.get("email")),
        "phone_primary": phone_mobile or phone_work or phone_home,
        "phone_mobile": phone_mobile,
        "phone_work": phone_work,
        "phone_home": phone_home,
        "phone_fax": _text(record.get("phone_fax")),
        "company": _display(record.get("company")),
        "is_primary_contact": bool(parse_bool(record.get("is_primary_contact"))),
        "custom_fields": custom_fields,
        "pp_account_ref_id": _id(account.get("id")),
        "pp_account_ref_display_name": _ref_name(account),
        "pp_display_name": display_name,
        "pp_first_name": first_name,
        "pp_middle_name": _text(record.get("middle_name")),
        "pp_last_name": last_name,
        "pp_email": _text(record.get("email")),
        "pp_phone_mobile": phone_mobile,
        "pp_phone_work": phone_work,
        "pp_notes": _text(record.get("notes")),
        "pp_custom_field_values": _list(record.get("custom_field_values")),
        **_common(record),
    }


def _deadline(explicit: Any, anchor: datetime | None, days: int) -> datetime | None:
    parsed = _date(explicit)
    if parsed is not None:
        return parsed
    if anchor is None:
        return None
    try:
        return anchor + timedelta(days=days)
    except OverflowError:
        # Placeholder dates near datetime.max
        return None


@total_mapper("pp_matter_id")
def map_matter(record: JsonObject) -> JsonObject:
    """Map a matter onto an exchange, including 45/180-day deadlines."""
    account = _ref(record, "account_ref")
    custom_fields = extract_custom_fields(record)

    def custom(field: str) -> Any:
        return get_custom_field(custom_fields, field)

    def custom_text(field: str) -> str | None:
        return _text(custom(field))

    matter_id = _id(record.get("id"))
    number = _text(record.get("number") or record.get("matter_number"))
    display_name = _text(record.get("display_name") or record.get("name"))
    opened_raw = record.get("open_date") or record.get("opened_date")
    closed_raw = record.get("close_date") or record.get("closed_date")
    opened_date = _date(opened_raw)
    close_of_escrow = _date(custom("close_of_escrow_date"))
    anchor = close_of_escrow or opened_date

    return {
        "pp_matter_id": matter_id,
        "exchange_number": number or (f"PP-{matter_id}" if matter_id else None),
        "name": display_name or (f"Exchange {number or matter_id}" if (number or matter_id) else None),
        "status": _lookup(MATTER_STATUS_MAP, record.get("status"), DEFAULT_EXCHANGE_STATUS),
        "exchange_type": custom_text("exchange_type"),
        "opened_date": opened_date,
        "closed_date": _date(closed_raw),
        "identification_deadline": _deadline(custom("day_45"), anchor, IDENTIFICATION_PERIOD_DAYS),
        "completion_deadline": _deadline(custom("day_180"), anchor, EXCHANGE_PERIOD_DAYS),
        "statute_of_limitation_date": _date(custom("statute_of_limitation_date")),
        "rate": _money(custom("rate")),
        "proceeds": _money(custom("proceeds")),
        "bank": custom_text("bank"),
        "client_vesting": custom_text("client_vesting"),
        "rel_property_address": custom_text("rel_property_address"),
        "rel_property_city": custom_text("rel_property_city"),
        "rel_property_state": custom_text("rel_property_state"),
        "rel_property_zip": custom_text("rel_property_zip"),
        "rel_apn": custom_text("rel_apn"),
        "rel_escrow_number": custom_text("rel_escrow_number"),
        "rel_value": _money(custom("rel_value")),
        "rel_contract_date": _date(custom("rel_contract_date")),
        "close_of_escrow_date": close_of_escrow,
        "buyer_1_name": custom_text("buyer_1_name"),
        "buyer_2_name": custom_text("buyer_2_name"),
        "rep_1_property_address": custom_text("rep_1_property_address"),
        "rep_1_city": custom_text("rep_1_city"),
        "rep_1_state": custom_text("rep_1_state"),
        "rep_1_zip": custom_text("rep_1_zip"),
        "rep_1_apn": custom_text("rep_1_apn"),
        "rep_1_escrow_number": custom_text("rep_1_escrow_number"),
        "rep_1_value": _money(custom("rep_1_value")),
        "rep_1_contract_date": _date(custom("rep_1_contract_date")),
        "rep_1_seller_name": custom_text("rep_1_seller_name"),
        "tags": _list(record.get("tags")),
        "assigned_to_users": _list(record.get("assigned_to_users")),
        "custom_fields": custom_fields,
        "pp_number": number,
        "pp_display_name": display_name,
        "pp_matter_status": _text(record.get("status")),
        "pp_practice_area": _display(record.get("practice_area")),
        "pp_responsible_attorney": _display(record.get("responsible_attorney")),
        "pp_billing_method": _display(record.get("billing_method")),
        "pp_opened_date": _text(opened_raw),
        "pp_closed_date": _text(closed_raw),
        "pp_account_ref_id": _id(account.get("id")),
        "pp_account_ref_display_name": _ref_name(account),
        "pp_custom_field_values": _list(record.get("custom_field_values")),
        **_common(record),
    }


@total_mapper("pp_id")
def map_task(record: JsonObject) -> JsonObject:
    matter = _ref(record, "matter_ref")
    account = _ref(record, "account_ref")
    status = _lookup(TASK_STATUS_MAP, record.get("status"), DEFAULT_TASK_STATUS)
    completed_at = _date(record.get("completed_date") or record.get("completed_at"))

    return {
        "pp_id": _id(record.get("id")),
        "title": _text(record.get("subject") or record.get("title") or record.get("name")),
        "description": _text(record.get("notes") or record.get("description")),
        "status": status,
        "priority": _lookup(PRIORITY_MAP, record.get("priority"), DEFAULT_PRIORITY),
        "due_date": _date(record.get("due_date")),
        "completed_at": completed_at,
        "custom_fields": extract_custom_fields(record),
        "pp_status": _text(record.get("status")),
        "pp_priority": _text(record.get("priority")),
        "pp_due_date": _text(record.get("due_date")),
        "pp_matter_ref_id": _id(matter.get("id")),
        "pp_matter_ref_name": _ref_name(matter),
        "pp_account_ref_id": _id(account.get("id")),
        "pp_assigned_to_users": _list(record.get("assigned_to_users")),
        "pp_assigned_to_contacts": _list(record.get("assigned_to_contacts")),
        "pp_tags": _list(record.get("tags")),
        "pp_custom_field_values": _list(record.get("custom_field_values")),
        **_common(record),
    }


@total_mapper("pp_id")
def map_note(record: JsonObject) -> JsonObject:
    matter = _ref(record, "matter_ref")
    account = _ref(record, "account_ref")
    return {
        "pp_id": _id(record.get("id")),
        "subject": _text(record.get("subject")),
        "body": _text(record.get("note") or record.get("body") or record.get("description")),
        "note_date": _date(record.get("date") or record.get("created_at")),
        "pp_matter_ref_id": _id(matter.get("id")),
        "pp_matter_ref_name": _ref_name(matter),
        "pp_account_ref_id": _id(account.get("id")),
        "pp_account_ref_name": _ref_name(account),
        "pp_assigned_to_users": _list(record.get("assigned_to_users")),
        **_common(record),
    }


def derive_invoice_status(record: JsonObject) -> str | None:
    """paid when nothing is outstanding, partial when something was paid, else unpaid."""
    outstanding = _money(record.get("total_outstanding"))
    paid = _money(record.get("total_paid"))
    if outstanding is None and paid is None:
        vendor_status = normalize_label(record.get("status")) if isinstance(record.get("status"), str) else ""
        if vendor_status in {status.value for status in InvoiceStatus}:
            return vendor_status
        return None
    if outstanding == 0:
        return InvoiceStatus.PAID.value
    if paid and paid > 0:
        return InvoiceStatus.PARTIAL.value
    return InvoiceStatus.UNPAID.value


@total_mapper("pp_id")
def map_invoice(record: JsonObject) -> JsonObject:
    matter = _ref(record, "matter_ref")
    account = _ref(record, "account_ref")
    return {
        "pp_id": _id(record.get("id")),
        "invoice_number": _text(record.get("number") or record.get("invoice_number")),
        "issue_date": _date(record.get("issue_date")),
        "due_date": _date(record.get("due_date")),
        "status": derive_invoice_status(record),
        "invoice_type": _text(record.get("invoice_type")),
        "subtotal": _money(record.get("subtotal")),
        "tax": _money(record.get("tax")),
        "discount": _money(record.get("discount")),
        "total": _money(record.get("total")),
        "total_paid": _money(record.get("total_paid")),
        "total_outstanding": _money(record.get("total_outstanding")),
        "items_time_entries": _list(record.get("items_time_entries")),
        "items_expenses": _list(record.get("items_expenses")),
        "items_flat_fees": _list(record.get("items_flat_fees")),
        "custom_fields": extract_custom_fields(record),
        "pp_status": _text(record.get("status")),
        "pp_account_ref_id": _id(account.get("id")),
        "pp_account_ref_name": _ref_name(account),
        "pp_matter_ref_id": _id(matter.get("id")),
        "pp_matter_ref_name": _ref_name(matter),
        **_common(record),
    }


@total_mapper("pp_id")
def map_expense(record: JsonObject) -> JsonObject:
    matter = _ref(record, "matter_ref")
    account = _ref(record, "account_ref")
    quantity = _money(record.get("qty", record.get("quantity")))
    return {
        "pp_id": _id(record.get("id")),
        "description": _text(record.get("description")),
        "expense_date": _date(record.get("date") or record.get("expense_date")),
        "quantity": quantity if quantity is not None else 1.0,
        "price": _money(record.get("price")),
        "amount": _money(record.get("amount")),
        "is_billable": bool(parse_bool(record.get("is_billable"))),
        "is_billed": bool(parse_bool(record.get("is_billed"))),
        "private_notes": _text(record.get("private_notes")),
        "custom_fields": extract_custom_fields(record),
        "pp_matter_ref_id": _id(matter.get("id")),
        "pp_matter_ref_name": _ref_name(matter),
        "pp_account_ref_id": _id(account.get("id")),
        "pp_expense_category_name": _ref_name(_ref(record, "expense_category_ref")),
        "pp_billed_by_user_name": _ref_name(_ref(record, "billed_by_user_ref")),
        **_common(record),
    }


@total_mapper("pp_id")
def map_user(record: JsonObject) -> JsonObject:
    first_name = _text(record.get("first_name"))
    last_name = _text(record.get("last_name"))
    display_name = _text(record.get("display_name"))
    is_active = parse_bool(record.get("is_active"))
    return {
        "pp_id": _id(record.get("id")),
        "email": _text(record.get("email")),
        "display_name": display_name
        or " ".join(part for part in (first_name, last_name) if part)
        or None,
        "first_name": first_name,
        "last_name": last_name,
        "is_active": True if is_active is None else is_active,
        "pp_display_name": display_name,
        "pp_middle_name": _text(record.get("middle_name")),
        **_common(record),
    }
