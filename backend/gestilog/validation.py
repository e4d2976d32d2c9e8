from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import Boolean, Date, DateTime, Integer, Numeric, String, Text
from sqlalchemy.orm import DeclarativeMeta

from .exceptions import ValidationError
from .models.sales import CUSTOMER_DOCUMENT_TYPES, DOC_TICKET, PAYMENT_METHODS
from .pricing import HUNDRED, ZERO, to_decimal
from .time_utils import parse_iso_date, parse_iso_datetime


# Upper bound for any money field (14,4 numeric columns)
MAX_AMOUNT = Decimal("9999999999.9999")


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped or "." in stripped or "e" in stripped.lower():
                raise ValidationError(f"{col.key} must be an integer")
            try:
                return int(stripped)
            except ValueError:
                raise ValidationError(f"{col.key} must be an integer")
        raise ValidationError(f"{col.key} must be an integer")

    if isinstance(coltype, Numeric):
        try:
            number = to_decimal(value, col.key)
        except ValidationError:
            raise ValidationError(f"{col.key} must be a number")
        if not number.is_finite():
            raise ValidationError(f"{col.key} must be a finite number")
        if abs(number) > MAX_AMOUNT:
            raise ValidationError(f"{col.key} is out of range")
        return number

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        return bool(value)

    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            if dt is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            return dt
        raise ValidationError(f"{col.key} must be a datetime")

    if isinstance(coltype, Date):
        try:
            return parse_iso_date(value)
        except ValueError:
            raise ValidationError(f"{col.key} must be an ISO-8601 date")

    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def enforce_rules_product(patch: dict) -> None:
    for key in ("purchase_price", "sale_price", "min_stock_threshold"):
        value = patch.get(key)
        if value is not None and value < 0:
            raise ValidationError(f"{key} must be >= 0")


def enforce_rules_customer(patch: dict) -> None:
    limit = patch.get("authorized_credit_limit")
    if limit is not None and limit < 0:
        raise ValidationError("authorized_credit_limit must be >= 0")


# =============================================================================
# SALE REQUESTS
# =============================================================================

@dataclass
class SaleLineRequest:
    quantity: Any
    unit_price: Any
    product_id: int | None = None
    designation: str | None = None
    tax_rate: Any = None
    line_discount_pct: Any = 0


@dataclass
class SaleRequest:
    lines: list[SaleLineRequest]
    document_type: str = DOC_TICKET
    customer_id: int | None = None
    payment_method: str | None = None
    payment_reference: str | None = None
    check_due_date: date | None = None
    amount_paid: Decimal | None = None
    discount_pct: Decimal = ZERO
    tax_rate: Decimal | None = None
    notes: str | None = None


def _optional_int(data: dict, key: str) -> int | None:
    value = data.get(key)
    if value in (None, ""):
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{key} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{key} must be an integer")


def _optional_decimal(data: dict, key: str) -> Decimal | None:
    value = data.get(key)
    if value in (None, ""):
        return None
    try:
        number = to_decimal(value, key)
    except ValidationError:
        raise ValidationError(f"{key} must be a number")
    if not number.is_finite():
        raise ValidationError(f"{key} must be a finite number")
    return number


def _optional_str(data: dict, key: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _percentage(value: Decimal | None, key: str) -> Decimal | None:
    if value is not None and (value < 0 or value > HUNDRED):
        raise ValidationError(f"{key} must be between 0 and 100")
    return value


def parse_sale_line(data: Any, index: int) -> SaleLineRequest:
    if not isinstance(data, dict):
        raise ValidationError(f"Line {index + 1} must be an object")
    return SaleLineRequest(
        product_id=_optional_int(data, "product_id"),
        designation=_optional_str(data, "designation"),
        quantity=data.get("quantity"),
        unit_price=data.get("unit_price"),
        tax_rate=_percentage(_optional_decimal(data, "tax_rate"), "tax_rate"),
        line_discount_pct=_percentage(_optional_decimal(data, "line_discount_pct"), "line_discount_pct") or ZERO,
    )


def parse_sale_request(data: Any) -> SaleRequest:
    """
    Shape-check a JSON sale payload.

    Business rules that need the database (stock, credit limit, tenant
    membership) are left to the sales service.
    """
    if not isinstance(data, dict):
        raise ValidationError("Invalid JSON payload")

    raw_lines = data.get("lines")
    if not isinstance(raw_lines, list) or not raw_lines:
        raise ValidationError("A sale needs at least one line")

    document_type = _optional_str(data, "document_type") or DOC_TICKET
    if document_type not in CUSTOMER_DOCUMENT_TYPES:
        raise ValidationError(
            f"Invalid document type: {document_type}",
            details={"allowed": list(CUSTOMER_DOCUMENT_TYPES)},
        )

    payment_method = _optional_str(data, "payment_method")
    if payment_method is not None and payment_method not in PAYMENT_METHODS:
        raise ValidationError(
            f"Invalid payment method: {payment_method}",
            details={"allowed": list(PAYMENT_METHODS)},
        )

    try:
        check_due_date = parse_iso_date(data.get("check_due_date"))
    except ValueError:
        raise ValidationError("Dates must be ISO-8601 (YYYY-MM-DD)")

    amount_paid = _optional_decimal(data, "amount_paid")
    if amount_paid is not None and amount_paid < 0:
        raise ValidationError("amount_paid must be >= 0")

    return SaleRequest(
        lines=[parse_sale_line(line, i) for i, line in enumerate(raw_lines)],
        document_type=document_type,
        customer_id=_optional_int(data, "customer_id"),
        payment_method=payment_method,
        payment_reference=_optional_str(data, "payment_reference"),
        check_due_date=check_due_date,
        amount_paid=amount_paid,
        discount_pct=_percentage(_optional_decimal(data, "discount_pct"), "discount_pct") or ZERO,
        tax_rate=_percentage(_optional_decimal(data, "tax_rate"), "tax_rate"),
        notes=_optional_str(data, "notes"),
    )
