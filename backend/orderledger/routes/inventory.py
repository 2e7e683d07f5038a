# Overview: Flask API routes for the inventory ledger; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import OrderLedgerError
from ..decorators import require_actor
from ..services import inventory_ledger

"""
Time semantics:
- API accepts ISO-8601 datetimes with Z/offsets; backend normalizes to UTC-naive internally.
- Pagination is keyset: pass back next_cursor (<ISO-8601>|<id>) as ?cursor=.
"""

inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


def _ledger_filters() -> dict:
    return {
        "change_type": request.args.get("change_type"),
        "performed_by": request.args.get("performed_by", type=int),
        "order_id": request.args.get("order_id", type=int),
        "variant_id": request.args.get("variant_id", type=int),
        "start_date": request.args.get("start_date"),
        "end_date": request.args.get("end_date"),
        "cursor": request.args.get("cursor"),
        "limit": request.args.get("limit", type=int),
    }


@inventory_bp.post("/adjust")
@require_actor
def adjust_stock_route():
    """
    Record a manual stock change.

    Request body:
    {
        "variant_id": 7,
        "change_type": "RESTOCK" | "ADJUSTMENT" | "RETURN" | "SALE",
        "quantity_change": 10,
        "reason": "Supplier delivery",
        "order_id": 12,  (optional)
        "previous_quantity": 3,  (optional consistency check)
        "new_quantity": 13,  (optional consistency check)
        "enforce_sign": true  (optional, reject e.g. a positive SALE)
    }

    Returns:
        201: Entry recorded, with the variant's new stock
        409: Insufficient stock or integrity violation
    """
    try:
        data = request.get_json(silent=True) or {}

        variant_id = data.get("variant_id")
        quantity_change = data.get("quantity_change")
        if variant_id is None or quantity_change is None:
            return jsonify({"error": "variant_id and quantity_change required", "code": "VALIDATION_ERROR"}), 400

        if data.get("enforce_sign"):
            inventory_ledger.check_sign_convention(data.get("change_type"), quantity_change)

        entry = inventory_ledger.record_adjustment(
            variant_id,
            data.get("change_type"),
            quantity_change,
            data.get("reason"),
            actor=g.actor,
            order_id=data.get("order_id"),
            previous_quantity=data.get("previous_quantity"),
            new_quantity=data.get("new_quantity"),
        )
        return jsonify({
            "entry": entry.to_dict(),
            "stock_quantity": entry.new_quantity,
        }), 201

    except OrderLedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to record stock adjustment")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/<int:variant_id>/history")
@require_actor
def variant_history_route(variant_id: int):
    try:
        page = inventory_ledger.history(variant_id, _ledger_filters(), actor=g.actor)
        return jsonify({
            "variant": page["variant"].to_dict(),
            "items": [e.to_dict() for e in page["items"]],
            "next_cursor": page["next_cursor"],
            "limit": page["limit"],
        }), 200
    except OrderLedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load variant history")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/<int:variant_id>/integrity")
@require_actor
def variant_integrity_route(variant_id: int):
    try:
        report = inventory_ledger.verify_variant(variant_id, actor=g.actor)
        return jsonify(report), 200
    except OrderLedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to verify variant ledger")
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# LEDGER ENTRIES
# =============================================================================

@inventory_bp.get("/logs")
@require_actor
def list_logs_route():
    try:
        page = inventory_ledger.list_entries(_ledger_filters(), actor=g.actor)
        return jsonify({
            "items": [e.to_dict() for e in page["items"]],
            "next_cursor": page["next_cursor"],
            "limit": page["limit"],
        }), 200
    except OrderLedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list inventory logs")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.get("/logs/<int:entry_id>")
@require_actor
def get_log_route(entry_id: int):
    try:
        entry = inventory_ledger.get_entry(entry_id, actor=g.actor)
        return jsonify({"entry": entry.to_dict()}), 200
    except OrderLedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load inventory log")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.patch("/logs/<int:entry_id>")
@require_actor
def annotate_log_route(entry_id: int):
    """
    Edit the reason of a ledger entry. Any other field -> 409 INTEGRITY_VIOLATION.
    """
    try:
        data = request.get_json(silent=True) or {}
        entry = inventory_ledger.annotate_entry(entry_id, data, actor=g.actor)
        return jsonify({"entry": entry.to_dict()}), 200
    except OrderLedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to annotate inventory log")
        return jsonify({"error": "Internal server error"}), 500


@inventory_bp.delete("/logs/<int:entry_id>")
@require_actor
def delete_log_route(entry_id: int):
    """Admin escape hatch. The response carries an audit-compromised warning."""
    try:
        result = inventory_ledger.delete_entry(entry_id, actor=g.actor)
        return jsonify(result), 200
    except OrderLedgerError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to delete inventory log")
        return jsonify({"error": "Internal server error"}), 500
