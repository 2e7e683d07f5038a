# Overview: Service-layer reads and manual follow-up of refunds.

from __future__ import annotations

from ..errors import InvalidTransition, NotFound, ValidationError
from ..extensions import db
from ..models import Refund
from ..permissions import definitions as perms
from ..permissions.policy import Actor, authorize
from ..time_utils import utcnow
from .concurrency import get_locked, run_with_retry
from .payment_reconciliation import (
    REFUND_COMPLETED,
    REFUND_FAILED,
    REFUND_PENDING,
    REFUND_PROCESSING,
    VALID_REFUND_STATUSES,
)


# A COMPLETED refund is final; FAILED can be retried or settled by hand.
REFUND_TRANSITIONS = {
    REFUND_PENDING: (REFUND_PROCESSING, REFUND_FAILED, REFUND_COMPLETED),
    REFUND_PROCESSING: (REFUND_COMPLETED, REFUND_FAILED),
    REFUND_FAILED: (REFUND_PROCESSING, REFUND_COMPLETED),
    REFUND_COMPLETED: (),
}


def list_refunds(filters: dict | None = None, actor: Actor | None = None) -> list[Refund]:
    """Refunds newest first; filters: status, order_id, refund_method."""
    authorize(actor, perms.REFUND_VIEW)
    filters = filters or {}

    q = Refund.query
    status = filters.get("status")
    if status:
        status = status.upper()
        if status not in VALID_REFUND_STATUSES:
            raise ValidationError(f"Invalid refund status '{status}'")
        q = q.filter(Refund.status == status)
    if filters.get("order_id") is not None:
        q = q.filter(Refund.order_id == filters["order_id"])
    if filters.get("refund_method"):
        q = q.filter(Refund.refund_method == filters["refund_method"].upper())

    return q.order_by(Refund.created_at.desc(), Refund.id.desc()).all()


def get_refund(refund_id: int, actor: Actor | None = None) -> Refund:
    authorize(actor, perms.REFUND_VIEW)
    refund = db.session.get(Refund, refund_id)
    if refund is None:
        raise NotFound(f"Refund {refund_id} not found")
    return refund


def update_refund(refund_id: int, status: str, actor: Actor, notes: str | None = None) -> Refund:
    """
    Record manual follow-up on a refund (e.g. a FAILED refund paid by hand).

    Moving to COMPLETED stamps processed_at / processed_by the first time only.
    Re-sending the current status only updates the notes; any other move
    must be listed in REFUND_TRANSITIONS.
    """
    authorize(actor, perms.REFUND_UPDATE)
    status = (status or "").upper()
    if status not in VALID_REFUND_STATUSES:
        raise ValidationError(
            f"Invalid refund status '{status}'. Must be one of: {', '.join(VALID_REFUND_STATUSES)}"
        )

    def _op():
        refund = get_locked(Refund, refund_id)
        if refund is None:
            raise NotFound(f"Refund {refund_id} not found")

        if status != refund.status and status not in REFUND_TRANSITIONS.get(refund.status, ()):
            raise InvalidTransition(refund.status, status, list(REFUND_TRANSITIONS.get(refund.status, ())))

        refund.status = status
        if notes is not None:
            refund.notes = notes
        if status == REFUND_COMPLETED and refund.processed_at is None:
            refund.processed_at = utcnow()
            refund.processed_by = actor.user_id

        db.session.commit()
        return refund

    return run_with_retry(_op)
