"""
Product master data tests: tenant-scoped IMEI/SKU uniqueness and validation.
"""

import pytest

from shopledger.errors import DuplicateCodeError, ValidationError
from shopledger.services import products_service


class TestPhones:

    def test_create_phone_is_available(self, phone):
        assert phone.status == "available"
        assert phone.is_active is True
        assert phone.is_sellable is True

    @pytest.mark.parametrize("imei", ["12345", "12345678901234567890", "35693803564380X", ""])
    def test_invalid_imei_rejected(self, store, imei):
        with pytest.raises(ValidationError):
            products_service.create_phone(store.id, imei=imei, name="Bad")

    def test_duplicate_imei_in_store_rejected(self, store, phone):
        with pytest.raises(DuplicateCodeError):
            products_service.create_phone(store.id, imei=phone.imei, name="Clone")

    def test_same_imei_allowed_in_other_store(self, other_store, phone):
        copy = products_service.create_phone(other_store.id, imei=phone.imei, name="Same handset elsewhere")
        assert copy.store_id == other_store.id

    def test_update_phone_prices(self, store, phone):
        products_service.update_phone(store.id, phone.id, sell_price_cents=42000)
        assert phone.sell_price_cents == 42000

    def test_update_phone_status_not_allowed(self, store, phone):
        with pytest.raises(ValidationError):
            products_service.update_phone(store.id, phone.id, status="sold")

    def test_negative_price_rejected(self, store):
        with pytest.raises(ValidationError):
            products_service.create_phone(store.id, imei="356938035643817", name="X", sell_price_cents=-1)


class TestAccessories:

    def test_duplicate_sku_rejected(self, store, accessory):
        with pytest.raises(DuplicateCodeError):
            products_service.create_accessory(store.id, sku="CASE-01", name="Other case")

    def test_sku_rename_checks_uniqueness(self, store, accessory):
        second = products_service.create_accessory(store.id, sku="CABLE-01", name="USB-C cable")
        with pytest.raises(DuplicateCodeError):
            products_service.update_accessory(store.id, second.id, sku="CASE-01")

    def test_quantity_not_editable(self, store, accessory):
        with pytest.raises(ValidationError):
            products_service.update_accessory(store.id, accessory.id, quantity=99)

    def test_negative_min_qty_rejected(self, store):
        with pytest.raises(ValidationError):
            products_service.create_accessory(store.id, sku="X-1", name="X", min_qty=-1)

    def test_low_stock_listing(self, store, accessory):
        products_service.create_accessory(store.id, sku="SCR-01", name="Screen protector", quantity=1, min_qty=2)
        low = products_service.list_accessories(store.id, low_stock_only=True)
        assert [a.sku for a in low] == ["SCR-01"]
