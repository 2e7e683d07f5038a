# Overview: Flask API routes for orders; parses input and returns JSON responses.

# backend/orderledger/routes/orders.py
"""
Order Lifecycle API Routes

DESIGN:
- Create orders (storefront checkout and point of sale)
- Drive the status state machine (staff only)
- Update payment status and reconcile the transaction record
- Cancel with refund and stock restoration

SECURITY:
- X-User-Id / X-User-Role required on every route (see decorators.require_actor)
- Authorization is evaluated inside the services against the loaded order
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import OrderLedgerError
from ..decorators import require_actor
from ..services import order_service, order_state_machine, payment_reconciliation


orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


# =============================================================================
# ORDER CREATION & READS
# =============================================================================

@orders_bp.post("")
@require_actor
def create_order_route():
    """
    Create an order (status PENDING) and take its stock.

    Request body:
    {
        "customer_id": 42,  (optional, defaults to the caller)
        "items": [{"variant_id": 7, "quantity": 2, "price_cents": 1500 (staff only, optional)}],
        "payment_method": "MOBILE_MONEY" | "CASH_ON_DELIVERY" | "CASH",
        "delivery_method": "HOME_DELIVERY" | "STORE_PICKUP",
        "delivery_address": "...",  (required for HOME_DELIVERY)
        "delivery_zone": "gombe",
        "delivery_fee_cents": 500,  (optional, computed from zone otherwise)
        "source": "ONLINE" | "IN_STORE",
        "notes": "...",
        "payment_reference": "..."
    }

    Returns:
        201: Order created (with items)
        400: Invalid input
        404: Variant not found
        409: Insufficient stock
    """
    try:
        data = request.get_json(silent=True) or {}

        order = order_service.create_order(
            customer_id=data.get("customer_id", g.actor.user_id),
            items=data.get("items"),
            payment_method=data.get("payment_method"),
            delivery_method=data.get("delivery_method"),
            delivery_fee_cents=data.get("delivery_fee_cents"),
            actor=g.actor,
            source=data.get("source") or order_service.SOURCE_ONLINE,
            delivery_address=data.get("delivery_address"),
            delivery_zone=data.get("delivery_zone"),
            notes=data.get("notes"),
            payment_reference=data.get("payment_reference"),
        )

        return jsonify({"order": order.to_dict(include_items=True)}), 201

    except OrderLedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("")
@require_actor
def list_orders_route():
    """
    List orders newest first. Customers only see their own.

    Query params: status, payment_status, source, customer_id (staff), limit, offset
    """
    try:
        filters = {
            "status": request.args.get("status"),
            "payment_status": request.args.get("payment_status"),
            "source": request.args.get("source"),
            "customer_id": request.args.get("customer_id", type=int),
            "limit": request.args.get("limit", type=int),
            "offset": request.args.get("offset", type=int),
        }
        page = order_service.list_orders(filters, actor=g.actor)

        return jsonify({
            "items": [o.to_dict() for o in page["items"]],
            "total": page["total"],
            "limit": page["limit"],
            "offset": page["offset"],
        }), 200

    except OrderLedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list orders")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>")
@require_actor
def get_order_route(order_id: int):
    try:
        order = order_service.get_order(order_id, actor=g.actor)
        return jsonify({"order": order.to_dict(include_items=True)}), 200
    except OrderLedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/number/<order_number>")
@require_actor
def get_order_by_number_route(order_number: str):
    try:
        order = order_service.get_order_by_number(order_number, actor=g.actor)
        return jsonify({"order": order.to_dict(include_items=True)}), 200
    except OrderLedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load order by number")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# LIFECYCLE
# =============================================================================

@orders_bp.put("/<int:order_id>/status")
@require_actor
def update_order_status_route(order_id: int):
    """
    Move an order along its lifecycle.

    Request body:
    {
        "status": "CONFIRMED",
        "note": "Called customer"  (optional)
    }

    Returns:
        200: Order updated
        403: Customers cannot change status
        409: Transition not allowed from the current status
    """
    try:
        data = request.get_json(silent=True) or {}

        order = order_state_machine.transition(
            order_id,
            data.get("status"),
            actor=g.actor,
            note=data.get("note"),
        )
        return jsonify({"order": order.to_dict()}), 200

    except OrderLedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update order status")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("/<int:order_id>/history")
@require_actor
def order_status_history_route(order_id: int):
    try:
        entries = order_state_machine.get_status_history(order_id, actor=g.actor)
        return jsonify({"items": [e.to_dict() for e in entries]}), 200
    except OrderLedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load order status history")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.put("/<int:order_id>/payment")
@require_actor
def update_payment_route(order_id: int):
    """
    Set payment status; upserts the order's single transaction row.

    Request body:
    {
        "payment_status": "PAID" | "PENDING" | "FAILED" | "REFUNDED",
        "reference": "MM-123456"  (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}

        order = payment_reconciliation.update_payment_status(
            order_id,
            data.get("payment_status"),
            reference=data.get("reference"),
            actor=g.actor,
        )
        txn = order.transaction
        return jsonify({
            "order": order.to_dict(),
            "transaction": txn.to_dict() if txn else None,
        }), 200

    except OrderLedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update payment status")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/cancel")
@require_actor
def cancel_order_route(order_id: int):
    """
    Cancel an order, create its refund and restore stock.

    Request body:
    {
        "reason": "Customer changed their mind",
        "refund_method": "MOBILE_MONEY" | "CASH" | "STORE_CREDIT",  (optional)
        "notes": "..."  (optional)
    }

    Returns:
        200: Cancelled; refund status PROCESSING or FAILED (gateway outcome)
        409: Not cancellable or already refunded
    """
    try:
        data = request.get_json(silent=True) or {}

        refund = payment_reconciliation.cancel_order(
            order_id,
            data.get("reason"),
            refund_method=data.get("refund_method") or payment_reconciliation.REFUND_METHOD_MOBILE_MONEY,
            actor=g.actor,
            notes=data.get("notes"),
        )
        return jsonify({
            "order": refund.order.to_dict(include_items=True),
            "refund": refund.to_dict(),
        }), 200

    except OrderLedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to cancel order")
        return jsonify({"error": "Internal server error"}), 500
