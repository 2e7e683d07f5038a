# Overview: Flask API routes for refunds; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import OrderLedgerError
from ..decorators import require_actor
from ..services import refund_service


refunds_bp = Blueprint("refunds", __name__, url_prefix="/api/refunds")


@refunds_bp.get("")
@require_actor
def list_refunds_route():
    """Query params: status, order_id, refund_method"""
    try:
        filters = {
            "status": request.args.get("status"),
            "order_id": request.args.get("order_id", type=int),
            "refund_method": request.args.get("refund_method"),
        }
        refunds = refund_service.list_refunds(filters, actor=g.actor)
        return jsonify({"items": [r.to_dict() for r in refunds]}), 200
    except OrderLedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list refunds")
        return jsonify({"error": "Internal server error"}), 500


@refunds_bp.get("/<int:refund_id>")
@require_actor
def get_refund_route(refund_id: int):
    try:
        refund = refund_service.get_refund(refund_id, actor=g.actor)
        return jsonify({"refund": refund.to_dict()}), 200
    except OrderLedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load refund")
        return jsonify({"error": "Internal server error"}), 500


@refunds_bp.put("/<int:refund_id>")
@require_actor
def update_refund_route(refund_id: int):
    """
    Record manual follow-up on a refund (admin only).

    Request body:
    {
        "status": "COMPLETED",
        "notes": "Paid out in cash at the counter"  (optional)
    }
    """
    try:
        data = request.get_json(silent=True) or {}
        refund = refund_service.update_refund(
            refund_id,
            data.get("status"),
            actor=g.actor,
            notes=data.get("notes"),
        )
        return jsonify({"refund": refund.to_dict()}), 200
    except OrderLedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to update refund")
        return jsonify({"error": "Internal server error"}), 500
