"""
Stock ledger tests.

Verifies:
- Accessory quantity never drops below zero
- Phone status moves only along the transition table
- Every stock change leaves a StockMovement
- Low stock is derived from quantity and min_qty
"""

import pytest

from shopledger.errors import InvalidTransitionError, NegativeStockError, NotFoundError, ValidationError
from shopledger.models import StockMovement
from shopledger.services import inventory_service


class TestResolveProduct:

    def test_resolves_each_kind(self, store, accessory, phone):
        assert inventory_service.resolve_product(store.id, "accessory", accessory.id) is accessory
        assert inventory_service.resolve_product(store.id, "phone", phone.id) is phone

    def test_unknown_kind_rejected(self, store, accessory):
        with pytest.raises(ValidationError):
            inventory_service.resolve_product(store.id, "gadget", accessory.id)

    def test_other_store_is_not_found(self, other_store, accessory):
        with pytest.raises(NotFoundError):
            inventory_service.resolve_product(other_store.id, "accessory", accessory.id)


class TestAccessoryDelta:

    def test_positive_and_negative_deltas(self, db_session, accessory):
        inventory_service.apply_delta(accessory, -4, source_type="sale")
        assert accessory.quantity == 6
        inventory_service.apply_delta(accessory, 2, source_type="return")
        assert accessory.quantity == 8

    def test_underflow_raises_and_leaves_quantity(self, db_session, accessory):
        with pytest.raises(NegativeStockError):
            inventory_service.apply_delta(accessory, -11, source_type="sale")
        assert accessory.quantity == 10

    def test_zero_delta_rejected(self, db_session, accessory):
        with pytest.raises(ValidationError):
            inventory_service.apply_delta(accessory, 0, source_type="sale")


class TestPhoneTransitions:

    def test_sell_then_resell_path(self, db_session, phone):
        inventory_service.apply_delta(phone, "sold", source_type="sale")
        assert phone.status == "sold"
        inventory_service.apply_delta(phone, "available", source_type="sale")
        assert phone.status == "available"

    def test_sold_to_sold_rejected(self, db_session, phone):
        inventory_service.apply_delta(phone, "sold", source_type="sale")
        with pytest.raises(InvalidTransitionError):
            inventory_service.apply_delta(phone, "sold", source_type="sale")

    def test_damaged_cannot_be_sold(self, db_session, phone):
        inventory_service.apply_delta(phone, "damaged", source_type="adjustment")
        with pytest.raises(InvalidTransitionError):
            inventory_service.apply_delta(phone, "sold", source_type="sale")

    def test_phone_delta_must_be_status(self, db_session, phone):
        with pytest.raises(ValidationError):
            inventory_service.apply_delta(phone, -1, source_type="sale")


class TestAdjustments:

    def test_adjust_accessory_writes_movement(self, db_session, store, owner, accessory):
        inventory_service.adjust_accessory_stock(store.id, accessory.id, -3, reason="Recount", user_id=owner.id)

        assert accessory.quantity == 7
        movement = (
            db_session.query(StockMovement)
            .filter_by(accessory_id=accessory.id, movement_type="adjustment", source_type="adjustment")
            .order_by(StockMovement.id.desc())
            .first()
        )
        assert movement.quantity_delta == -3
        assert movement.note == "Recount"

    def test_adjust_requires_reason(self, store, owner, accessory):
        with pytest.raises(ValidationError):
            inventory_service.adjust_accessory_stock(store.id, accessory.id, -1, reason="", user_id=owner.id)

    def test_adjust_below_zero_rolls_back(self, db_session, store, owner, accessory):
        with pytest.raises(NegativeStockError):
            inventory_service.adjust_accessory_stock(store.id, accessory.id, -50, reason="Loss", user_id=owner.id)
        assert accessory.quantity == 10

    def test_set_phone_status_records_from_and_to(self, db_session, store, owner, phone):
        inventory_service.set_phone_status(store.id, phone.id, "reserved", user_id=owner.id, note="Held for customer")

        assert phone.status == "reserved"
        movement = db_session.query(StockMovement).filter_by(phone_id=phone.id, to_status="reserved").one()
        assert movement.from_status == "available"
        assert movement.quantity_delta == -1

    def test_set_phone_status_refuses_sold(self, store, owner, phone):
        with pytest.raises(ValidationError):
            inventory_service.set_phone_status(store.id, phone.id, "sold", user_id=owner.id)


class TestLowStock:

    def test_low_stock_is_derived(self, db_session, store, owner, accessory):
        assert accessory.is_low_stock is False
        assert inventory_service.get_low_stock_accessories(store.id) == []

        inventory_service.adjust_accessory_stock(store.id, accessory.id, -7, reason="Shrinkage", user_id=owner.id)

        assert accessory.quantity == 3
        assert inventory_service.is_low_stock(accessory) is True
        assert [a.id for a in inventory_service.get_low_stock_accessories(store.id)] == [accessory.id]

    def test_movement_history_filters_by_product(self, store, accessory, phone):
        phone_moves = inventory_service.get_movements(store.id, item_type="phone", product_id=phone.id)
        assert len(phone_moves) == 1
        assert phone_moves[0].movement_type == "in"

        accessory_moves = inventory_service.get_movements(store.id, item_type="accessory", product_id=accessory.id)
        assert [m.quantity_delta for m in accessory_moves] == [10]
