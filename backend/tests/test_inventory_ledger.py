"""
Inventory ledger tests.

Verifies:
- Entry and stock counter are written together and stay balanced
- Negative stock is refused with no entry and no counter change
- Caller-supplied quantities are checked against the counter
- Only the reason of an entry is editable; deletion is flagged
- History is newest first with keyset pagination
- Integrity verification detects drift
"""

import pytest

from orderledger.errors import (
    Forbidden,
    InsufficientStock,
    IntegrityViolation,
    NotFound,
    Unauthorized,
    ValidationError,
)
from orderledger.extensions import db
from orderledger.models import InventoryLog, ProductVariant
from orderledger.services import inventory_ledger
from orderledger.services.inventory_ledger import (
    CHANGE_ADJUSTMENT,
    CHANGE_RESTOCK,
    CHANGE_RETURN,
    CHANGE_SALE,
)


def _entries(variant_id):
    return (
        InventoryLog.query.filter_by(variant_id=variant_id)
        .order_by(InventoryLog.id.asc())
        .all()
    )


# =============================================================================
# RECORD ADJUSTMENT
# =============================================================================


class TestRecordAdjustment:

    def test_restock_writes_entry_and_counter(self, variant, inventory_manager):
        entry = inventory_ledger.record_adjustment(
            variant.id, CHANGE_RESTOCK, 10, "Supplier delivery", inventory_manager,
        )

        assert entry.previous_quantity == 5
        assert entry.new_quantity == 15
        assert entry.quantity_change == 10
        assert entry.performed_by == inventory_manager.user_id
        assert db.session.get(ProductVariant, variant.id).stock_quantity == 15

    def test_every_entry_balances_and_counter_matches_latest(self, variant, inventory_manager):
        inventory_ledger.record_adjustment(variant.id, CHANGE_SALE, -2, "Walk-in", inventory_manager)
        inventory_ledger.record_adjustment(variant.id, CHANGE_ADJUSTMENT, -1, "Damaged", inventory_manager)
        inventory_ledger.record_adjustment(variant.id, CHANGE_RETURN, 1, "Returned", inventory_manager)

        entries = _entries(variant.id)
        assert all(e.new_quantity == e.previous_quantity + e.quantity_change for e in entries)
        for before, after in zip(entries, entries[1:]):
            assert after.previous_quantity == before.new_quantity
        assert db.session.get(ProductVariant, variant.id).stock_quantity == entries[-1].new_quantity == 3

    def test_negative_result_refused_without_side_effects(self, variant, inventory_manager):
        before = len(_entries(variant.id))

        with pytest.raises(InsufficientStock) as exc:
            inventory_ledger.record_adjustment(variant.id, CHANGE_SALE, -6, "Too many", inventory_manager)

        assert exc.value.available == 5
        assert len(_entries(variant.id)) == before
        assert db.session.get(ProductVariant, variant.id).stock_quantity == 5

    def test_draining_to_zero_is_allowed(self, variant, inventory_manager):
        entry = inventory_ledger.record_adjustment(variant.id, CHANGE_SALE, -5, "Last units", inventory_manager)
        assert entry.new_quantity == 0

    def test_sign_convention_not_enforced_by_ledger(self, variant, inventory_manager):
        # A positive ADJUSTMENT and even a negative RETURN are arithmetic-valid corrections
        up = inventory_ledger.record_adjustment(variant.id, CHANGE_ADJUSTMENT, 3, "Found in back room", inventory_manager)
        down = inventory_ledger.record_adjustment(variant.id, CHANGE_RETURN, -1, "Return reversed", inventory_manager)
        assert up.new_quantity == 8
        assert down.new_quantity == 7

    def test_mismatched_new_quantity_is_integrity_violation(self, variant, inventory_manager):
        with pytest.raises(IntegrityViolation):
            inventory_ledger.record_adjustment(
                variant.id, CHANGE_RESTOCK, 4, "Delivery", inventory_manager, new_quantity=10,
            )
        assert db.session.get(ProductVariant, variant.id).stock_quantity == 5

    def test_stale_previous_quantity_is_integrity_violation(self, variant, inventory_manager):
        with pytest.raises(IntegrityViolation):
            inventory_ledger.record_adjustment(
                variant.id, CHANGE_RESTOCK, 4, "Delivery", inventory_manager, previous_quantity=3,
            )

    def test_matching_caller_quantities_accepted(self, variant, inventory_manager):
        entry = inventory_ledger.record_adjustment(
            variant.id, CHANGE_RESTOCK, 4, "Delivery", inventory_manager,
            previous_quantity=5, new_quantity=9,
        )
        assert entry.new_quantity == 9

    def test_unknown_variant(self, db_session, inventory_manager):
        with pytest.raises(NotFound):
            inventory_ledger.record_adjustment(9999, CHANGE_RESTOCK, 1, "x", inventory_manager)

    def test_invalid_change_type(self, variant, inventory_manager):
        with pytest.raises(ValidationError):
            inventory_ledger.record_adjustment(variant.id, "GIFT", 1, "x", inventory_manager)

    def test_reason_required(self, variant, inventory_manager):
        with pytest.raises(ValidationError):
            inventory_ledger.record_adjustment(variant.id, CHANGE_RESTOCK, 1, "  ", inventory_manager)

    def test_sales_staff_cannot_adjust(self, variant, sales_staff):
        with pytest.raises(Forbidden):
            inventory_ledger.record_adjustment(variant.id, CHANGE_RESTOCK, 1, "x", sales_staff)

    def test_missing_actor_is_unauthorized(self, variant):
        with pytest.raises(Unauthorized):
            inventory_ledger.record_adjustment(variant.id, CHANGE_RESTOCK, 1, "x", None)


class TestSignConvention:

    @pytest.mark.parametrize(
        "change_type,sign",
        [(CHANGE_SALE, -1), (CHANGE_RESTOCK, 1), (CHANGE_RETURN, 1), (CHANGE_ADJUSTMENT, 0)],
    )
    def test_expected_sign(self, change_type, sign):
        assert inventory_ledger.expected_sign(change_type) == sign

    def test_check_rejects_positive_sale(self):
        with pytest.raises(ValidationError):
            inventory_ledger.check_sign_convention(CHANGE_SALE, 2)

    def test_check_accepts_either_adjustment(self):
        inventory_ledger.check_sign_convention(CHANGE_ADJUSTMENT, 2)
        inventory_ledger.check_sign_convention(CHANGE_ADJUSTMENT, -2)

    @pytest.mark.parametrize("quantity_change", ["3", 2.5, True, None])
    def test_check_rejects_non_integer(self, quantity_change):
        with pytest.raises(ValidationError):
            inventory_ledger.check_sign_convention(CHANGE_RESTOCK, quantity_change)


# =============================================================================
# HISTORY
# =============================================================================


class TestHistory:

    def test_newest_first(self, variant, inventory_manager):
        inventory_ledger.record_adjustment(variant.id, CHANGE_SALE, -1, "first", inventory_manager)
        inventory_ledger.record_adjustment(variant.id, CHANGE_SALE, -1, "second", inventory_manager)

        page = inventory_ledger.history(variant.id, {}, actor=inventory_manager)
        reasons = [e.reason for e in page["items"]]
        assert reasons == ["second", "first", "Opening stock"]
        assert page["next_cursor"] is None

    def test_cursor_pagination_covers_all_entries_once(self, variant, inventory_manager):
        for i in range(4):
            inventory_ledger.record_adjustment(variant.id, CHANGE_RESTOCK, 1, f"r{i}", inventory_manager)

        seen = []
        filters = {"limit": 2}
        while True:
            page = inventory_ledger.history(variant.id, filters, actor=inventory_manager)
            seen.extend(e.id for e in page["items"])
            if not page["next_cursor"]:
                break
            filters = {"limit": 2, "cursor": page["next_cursor"]}

        assert len(seen) == 5
        assert len(set(seen)) == 5
        assert seen == sorted(seen, reverse=True)

    def test_filter_by_change_type(self, variant, inventory_manager):
        inventory_ledger.record_adjustment(variant.id, CHANGE_SALE, -1, "sold", inventory_manager)
        page = inventory_ledger.history(variant.id, {"change_type": "sale"}, actor=inventory_manager)
        assert [e.change_type for e in page["items"]] == [CHANGE_SALE]

    def test_malformed_cursor(self, variant, inventory_manager):
        with pytest.raises(ValidationError):
            inventory_ledger.history(variant.id, {"cursor": "nonsense"}, actor=inventory_manager)

    def test_history_does_not_mutate(self, variant, inventory_manager):
        inventory_ledger.history(variant.id, {}, actor=inventory_manager)
        assert db.session.get(ProductVariant, variant.id).stock_quantity == 5
        assert len(_entries(variant.id)) == 1

    def test_customer_cannot_view(self, variant, customer):
        with pytest.raises(Forbidden):
            inventory_ledger.history(variant.id, {}, actor=customer)


# =============================================================================
# ADMINISTRATION
# =============================================================================


class TestAdministration:

    def test_annotate_reason(self, variant, inventory_manager):
        entry = _entries(variant.id)[0]
        updated = inventory_ledger.annotate_entry(entry.id, {"reason": "Opening stock, counted twice"}, inventory_manager)
        assert updated.reason == "Opening stock, counted twice"
        assert updated.new_quantity == 5

    def test_annotate_immutable_field_is_integrity_violation(self, variant, inventory_manager):
        entry = _entries(variant.id)[0]
        with pytest.raises(IntegrityViolation) as exc:
            inventory_ledger.annotate_entry(entry.id, {"reason": "x", "quantity_change": 50}, inventory_manager)

        assert exc.value.details["immutable_fields"] == ["quantity_change"]
        assert db.session.get(InventoryLog, entry.id).reason == "Opening stock"

    def test_delete_requires_admin(self, variant, inventory_manager):
        entry = _entries(variant.id)[0]
        with pytest.raises(Forbidden):
            inventory_ledger.delete_entry(entry.id, inventory_manager)

    def test_delete_is_flagged_and_leaves_counter(self, variant, inventory_manager, admin):
        inventory_ledger.record_adjustment(variant.id, CHANGE_SALE, -2, "sold", inventory_manager)
        first = _entries(variant.id)[0]

        result = inventory_ledger.delete_entry(first.id, admin)

        assert result["audit_compromised"] is True
        assert "audit trail" in result["warning"]
        assert result["deleted"]["id"] == first.id
        assert db.session.get(ProductVariant, variant.id).stock_quantity == 3

    def test_get_entry_not_found(self, db_session, inventory_manager):
        with pytest.raises(NotFound):
            inventory_ledger.get_entry(12345, actor=inventory_manager)


# =============================================================================
# INTEGRITY VERIFICATION
# =============================================================================


class TestVerification:

    def test_clean_ledger_verifies(self, variant, inventory_manager):
        inventory_ledger.record_adjustment(variant.id, CHANGE_SALE, -2, "sold", inventory_manager)
        report = inventory_ledger.verify_variant(variant.id, inventory_manager)
        assert report["ok"] is True
        assert report["entry_count"] == 2
        assert inventory_ledger.verify_all() == []

    def test_counter_drift_detected(self, variant, db_session, admin):
        # Simulate a write that bypassed the ledger
        db_session.query(ProductVariant).filter_by(id=variant.id).update({"stock_quantity": 42})
        db_session.commit()

        report = inventory_ledger.verify_variant(variant.id, admin)
        assert report["counter_mismatch"] is True
        assert report["ok"] is False
        assert [r["variant_id"] for r in inventory_ledger.verify_all()] == [variant.id]

    def test_deleted_entry_breaks_chain(self, variant, inventory_manager, admin):
        inventory_ledger.record_adjustment(variant.id, CHANGE_SALE, -1, "a", inventory_manager)
        middle = inventory_ledger.record_adjustment(variant.id, CHANGE_SALE, -1, "b", inventory_manager)
        last = inventory_ledger.record_adjustment(variant.id, CHANGE_SALE, -1, "c", inventory_manager)

        inventory_ledger.delete_entry(middle.id, admin)

        report = inventory_ledger.verify_variant(variant.id, admin)
        assert report["broken_chain_entry_ids"] == [last.id]
        assert report["ok"] is False

    def test_verification_requires_inventory_view(self, variant, customer):
        with pytest.raises(Forbidden):
            inventory_ledger.verify_variant(variant.id, customer)
        with pytest.raises(Unauthorized):
            inventory_ledger.verify_variant(variant.id)
