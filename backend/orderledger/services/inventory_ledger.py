# Overview: Service-layer operations for the inventory ledger; owns every stock counter write.

from __future__ import annotations

from flask import current_app
from sqlalchemy import and_, or_

from ..errors import IntegrityViolation, InsufficientStock, NotFound, ValidationError
from ..extensions import db
from ..models import InventoryLog, Order, ProductVariant
from ..permissions import definitions as perms
from ..permissions.policy import Actor, authorize
from ..time_utils import format_cursor, parse_cursor, parse_iso_datetime
from .concurrency import get_locked, run_with_retry

"""
Inventory Ledger Invariants (authoritative)

- ProductVariant.stock_quantity is the stock counter; InventoryLog is the
  append-only explanation of every change to it.
- A ledger entry and its counter update are written in ONE database
  transaction: both commit or neither does.
- new_quantity == previous_quantity + quantity_change, checked at write time.
- The counter never goes negative; such a write raises InsufficientStock and
  leaves no entry and no counter change.
- The ledger enforces arithmetic only. Sign conventions per change_type
  (SALE decreases, RESTOCK/RETURN increase, ADJUSTMENT either way) belong to
  the callers building the request, so manual corrections stay possible.
- Only `reason` may be edited after the fact. Deletion is an admin escape
  hatch that is reported as compromising the audit trail.

Serialization per variant: the variant row is read with FOR UPDATE and
carries a version_id, so two concurrent writers cannot both apply a change
computed from the same previous_quantity. The loser retries from scratch.
"""


CHANGE_SALE = "SALE"
CHANGE_RESTOCK = "RESTOCK"
CHANGE_ADJUSTMENT = "ADJUSTMENT"
CHANGE_RETURN = "RETURN"

VALID_CHANGE_TYPES = (CHANGE_SALE, CHANGE_RESTOCK, CHANGE_ADJUSTMENT, CHANGE_RETURN)

# +1 increase only, -1 decrease only, 0 either
_CHANGE_TYPE_SIGNS = {
    CHANGE_SALE: -1,
    CHANGE_RESTOCK: 1,
    CHANGE_RETURN: 1,
    CHANGE_ADJUSTMENT: 0,
}

IMMUTABLE_ENTRY_FIELDS = (
    "variant_id",
    "change_type",
    "quantity_change",
    "previous_quantity",
    "new_quantity",
    "performed_by",
    "order_id",
    "created_at",
)

AUDIT_COMPROMISED_WARNING = "Deleting inventory logs may compromise audit trail integrity"


def validate_change_type(change_type: str) -> str:
    normalized = (change_type or "").upper()
    if normalized not in VALID_CHANGE_TYPES:
        raise ValidationError(
            f"Invalid change type '{change_type}'. Must be one of: {', '.join(VALID_CHANGE_TYPES)}"
        )
    return normalized


def expected_sign(change_type: str) -> int:
    """
    Sign convention callers should respect for a change type:
    -1 for SALE, +1 for RESTOCK and RETURN, 0 (either) for ADJUSTMENT.
    """
    return _CHANGE_TYPE_SIGNS[validate_change_type(change_type)]


def check_sign_convention(change_type: str, quantity_change: int) -> None:
    """Caller-side guard: raise ValidationError when the sign contradicts the type."""
    sign = expected_sign(change_type)
    if not isinstance(quantity_change, int) or isinstance(quantity_change, bool):
        raise ValidationError("quantity_change must be an integer")
    if quantity_change == 0:
        raise ValidationError("quantity_change must be non-zero")
    if sign and (quantity_change > 0) != (sign > 0):
        direction = "increase" if sign > 0 else "decrease"
        raise ValidationError(f"{change_type} entries must {direction} stock")


def _apply_adjustment(
    *,
    variant_id: int,
    change_type: str,
    quantity_change: int,
    reason: str | None,
    performed_by: int | None,
    order_id: int | None = None,
    previous_quantity: int | None = None,
    new_quantity: int | None = None,
) -> InventoryLog:
    """
    Core ledger write without authorization, retry, or commit.

    Must run inside the caller's transaction; order creation and order
    cancellation compose several of these with their own writes and commit
    once.
    """
    if not isinstance(quantity_change, int) or isinstance(quantity_change, bool):
        raise ValidationError("quantity_change must be an integer")

    variant = get_locked(ProductVariant, variant_id)
    if variant is None:
        raise NotFound(f"Variant {variant_id} not found")

    current = variant.stock_quantity

    if previous_quantity is not None and previous_quantity != current:
        raise IntegrityViolation(
            f"previous_quantity ({previous_quantity}) does not match current stock ({current}) "
            f"for variant {variant_id}",
            variant_id=variant_id,
            supplied_previous_quantity=previous_quantity,
            current_quantity=current,
        )

    computed = current + quantity_change

    if new_quantity is not None and new_quantity != computed:
        raise IntegrityViolation(
            f"Integrity check failed: new_quantity ({new_quantity}) must equal "
            f"previous_quantity ({current}) + quantity_change ({quantity_change})",
            variant_id=variant_id,
            supplied_new_quantity=new_quantity,
            expected_new_quantity=computed,
        )

    if computed < 0:
        raise InsufficientStock(variant_id, current, quantity_change)

    entry = InventoryLog(
        variant_id=variant_id,
        change_type=change_type,
        quantity_change=quantity_change,
        previous_quantity=current,
        new_quantity=computed,
        reason=reason,
        performed_by=performed_by,
        order_id=order_id,
    )
    variant.stock_quantity = computed

    db.session.add(entry)
    # Flush both rows together: the version check on the variant UPDATE
    # fires here, before anything else is built on top of this entry.
    db.session.flush()
    return entry


def record_adjustment(
    variant_id: int,
    change_type: str,
    quantity_change: int,
    reason: str,
    actor: Actor,
    order_id: int | None = None,
    *,
    previous_quantity: int | None = None,
    new_quantity: int | None = None,
) -> InventoryLog:
    """
    Record a manual stock change (restock, correction, return, POS sale).

    Args:
        variant_id: Variant whose stock counter changes
        change_type: SALE, RESTOCK, ADJUSTMENT or RETURN
        quantity_change: Signed delta
        reason: Free-text audit reason (required)
        actor: Inventory manager or admin
        order_id: Optional order this change belongs to
        previous_quantity / new_quantity: Optional caller view of the
            counter; a mismatch raises IntegrityViolation instead of
            silently writing an entry the caller did not expect.

    Returns:
        The committed InventoryLog entry

    Raises:
        Unauthorized / Forbidden, ValidationError, NotFound,
        InsufficientStock, IntegrityViolation
    """
    authorize(actor, perms.INVENTORY_ADJUST)
    change_type = validate_change_type(change_type)
    if not reason or not reason.strip():
        raise ValidationError("reason is required")

    def _op():
        if order_id is not None and db.session.get(Order, order_id) is None:
            raise NotFound(f"Order {order_id} not found")

        entry = _apply_adjustment(
            variant_id=variant_id,
            change_type=change_type,
            quantity_change=quantity_change,
            reason=reason.strip(),
            performed_by=actor.user_id,
            order_id=order_id,
            previous_quantity=previous_quantity,
            new_quantity=new_quantity,
        )
        db.session.commit()
        return entry

    return run_with_retry(_op)


# =============================================================================
# READS
# =============================================================================

def _page_limit(limit: int | None) -> int:
    default = current_app.config.get("LEDGER_PAGE_LIMIT_DEFAULT", 100)
    maximum = current_app.config.get("LEDGER_PAGE_LIMIT_MAX", 500)
    if limit is None:
        return default
    return max(1, min(int(limit), maximum))


def _filtered_query(filters: dict):
    q = InventoryLog.query

    change_type = filters.get("change_type")
    if change_type:
        q = q.filter(InventoryLog.change_type == validate_change_type(change_type))

    if filters.get("performed_by") is not None:
        q = q.filter(InventoryLog.performed_by == filters["performed_by"])

    if filters.get("order_id") is not None:
        q = q.filter(InventoryLog.order_id == filters["order_id"])

    try:
        start_dt = parse_iso_datetime(filters.get("start_date"))
        end_dt = parse_iso_datetime(filters.get("end_date"))
    except ValueError:
        raise ValidationError("start_date and end_date must be ISO-8601 datetimes")

    if start_dt is not None:
        q = q.filter(InventoryLog.created_at >= start_dt)
    if end_dt is not None:
        q = q.filter(InventoryLog.created_at <= end_dt)

    try:
        cursor_dt, cursor_id = parse_cursor(filters.get("cursor"))
    except ValueError:
        raise ValidationError("cursor must be in format <ISO-8601>|<id>")

    if cursor_dt is not None and cursor_id is not None:
        q = q.filter(
            or_(
                InventoryLog.created_at < cursor_dt,
                and_(InventoryLog.created_at == cursor_dt, InventoryLog.id < cursor_id),
            )
        )
    return q


def _page(q, limit: int | None) -> dict:
    limit = _page_limit(limit)
    rows = (
        q.order_by(InventoryLog.created_at.desc(), InventoryLog.id.desc())
        .limit(limit + 1)
        .all()
    )
    has_more = len(rows) > limit
    rows = rows[:limit]

    next_cursor = None
    if has_more and rows:
        last = rows[-1]
        next_cursor = format_cursor(last.created_at, last.id)

    return {"items": rows, "next_cursor": next_cursor, "limit": limit}


def history(variant_id: int, filters: dict | None = None, actor: Actor | None = None) -> dict:
    """
    Reverse-chronological, paginated ledger history of one variant.

    Read-only; the snapshot may lag a concurrent write. Page with the
    returned `next_cursor` (keyset on created_at, id).

    Filters: change_type, performed_by, order_id, start_date, end_date,
    cursor, limit.
    """
    authorize(actor, perms.INVENTORY_VIEW)
    filters = filters or {}

    variant = db.session.get(ProductVariant, variant_id)
    if variant is None:
        raise NotFound(f"Variant {variant_id} not found")

    q = _filtered_query(filters).filter(InventoryLog.variant_id == variant_id)
    page = _page(q, filters.get("limit"))
    page["variant"] = variant
    return page


def list_entries(filters: dict | None = None, actor: Actor | None = None) -> dict:
    """Ledger entries across all variants, same filters as history() plus variant_id."""
    authorize(actor, perms.INVENTORY_VIEW)
    filters = filters or {}

    q = _filtered_query(filters)
    if filters.get("variant_id") is not None:
        q = q.filter(InventoryLog.variant_id == filters["variant_id"])
    return _page(q, filters.get("limit"))


def get_entry(entry_id: int, actor: Actor | None = None) -> InventoryLog:
    authorize(actor, perms.INVENTORY_VIEW)
    entry = db.session.get(InventoryLog, entry_id)
    if entry is None:
        raise NotFound(f"Inventory log {entry_id} not found")
    return entry


# =============================================================================
# ADMINISTRATION
# =============================================================================

def annotate_entry(entry_id: int, changes: dict, actor: Actor) -> InventoryLog:
    """
    Update the reason text of an entry; every other field is immutable.

    Raises IntegrityViolation if `changes` targets any immutable field.
    """
    authorize(actor, perms.INVENTORY_ANNOTATE)

    attempted = sorted(field for field in IMMUTABLE_ENTRY_FIELDS if field in changes)
    if attempted:
        raise IntegrityViolation(
            "Only the reason field can be updated. Other fields are immutable for audit trail integrity.",
            immutable_fields=attempted,
        )

    def _op():
        entry = db.session.get(InventoryLog, entry_id)
        if entry is None:
            raise NotFound(f"Inventory log {entry_id} not found")
        if "reason" in changes:
            entry.reason = changes["reason"]
        db.session.commit()
        return entry

    return run_with_retry(_op)


def delete_entry(entry_id: int, actor: Actor) -> dict:
    """
    Administrative escape hatch: remove a ledger entry.

    The stock counter is NOT touched, so the variant will no longer
    reconcile with its history; verify_variant() reports it afterwards.

    Returns:
        {"deleted": <entry dict>, "warning": ..., "audit_compromised": True}
    """
    authorize(actor, perms.INVENTORY_DELETE_ENTRY)

    def _op():
        entry = db.session.get(InventoryLog, entry_id)
        if entry is None:
            raise NotFound(f"Inventory log {entry_id} not found")
        snapshot = entry.to_dict()
        db.session.delete(entry)
        db.session.commit()
        return snapshot

    snapshot = run_with_retry(_op)
    current_app.logger.warning(
        "Inventory log %s deleted by user %s (variant %s, %s %+d); audit trail compromised",
        entry_id, actor.user_id, snapshot["variant_id"], snapshot["change_type"], snapshot["quantity_change"],
    )
    return {
        "deleted": snapshot,
        "warning": AUDIT_COMPROMISED_WARNING,
        "audit_compromised": True,
    }


# =============================================================================
# INTEGRITY VERIFICATION
# =============================================================================

def _verify_variant(variant_id: int) -> dict:
    """
    Check one variant's ledger against its stock counter.

    Reports:
    - unbalanced_entry_ids: entries where new != previous + change
    - broken_chain_entry_ids: entries whose previous_quantity does not equal
      the new_quantity of the entry before them
    - counter_mismatch: counter differs from the latest entry's new_quantity
    """
    variant = db.session.get(ProductVariant, variant_id)
    if variant is None:
        raise NotFound(f"Variant {variant_id} not found")

    entries = (
        InventoryLog.query.filter_by(variant_id=variant_id)
        .order_by(InventoryLog.created_at.asc(), InventoryLog.id.asc())
        .all()
    )

    unbalanced = [e.id for e in entries if not e.is_balanced()]
    broken_chain = []
    for before, after in zip(entries, entries[1:]):
        if after.previous_quantity != before.new_quantity:
            broken_chain.append(after.id)

    latest = entries[-1].new_quantity if entries else None
    counter_mismatch = latest is not None and latest != variant.stock_quantity

    return {
        "variant_id": variant_id,
        "stock_quantity": variant.stock_quantity,
        "latest_entry_quantity": latest,
        "entry_count": len(entries),
        "unbalanced_entry_ids": unbalanced,
        "broken_chain_entry_ids": broken_chain,
        "counter_mismatch": counter_mismatch,
        "ok": not (unbalanced or broken_chain or counter_mismatch),
    }


def verify_all() -> list[dict]:
    """verify_variant() for every variant; returns only the failing reports."""
    variant_ids = [row.id for row in db.session.query(ProductVariant.id).order_by(ProductVariant.id)]
    reports = (_verify_variant(vid) for vid in variant_ids)
    return [r for r in reports if not r["ok"]]


def verify_variant(variant_id: int, actor: Actor | None = None) -> dict:
    """Integrity report for one variant (see _verify_variant)."""
    authorize(actor, perms.INVENTORY_VIEW)
    return _verify_variant(variant_id)
