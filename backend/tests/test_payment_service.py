"""
Payment and balance tests.

Verifies:
- paid + remaining always equals total; overpayment is refused
- Payments only apply to posted documents
- Every payment writes a cash movement in the right direction
- Customer/supplier balances and debt come from posted documents only
"""

import pytest

from shopledger.errors import InvalidStateError, OverPaymentError, ValidationError
from shopledger.models import CashMovement
from shopledger.services import counterparty_service, document_service, payment_service


def _posted_sale(store, user, accessory, qty, customer=None, unit_price_cents=1000):
    sale = document_service.create_document(
        store.id, "sale", user_id=user.id, customer_id=customer.id if customer else None,
    )
    document_service.add_item(
        store.id, sale.id, item_type="accessory", product_id=accessory.id, qty=qty, unit_price_cents=unit_price_cents,
    )
    return document_service.post_document(store.id, sale.id, user_id=user.id)


class TestRecordPayment:

    def test_partial_then_full(self, store, seller, accessory):
        sale = _posted_sale(store, seller, accessory, 4)

        payment_service.record_payment(store.id, sale.id, 2500, user_id=seller.id)
        assert (sale.paid_cents, sale.remaining_cents) == (2500, 1500)
        assert sale.payment_status == "partial"

        payment_service.record_payment(store.id, sale.id, 1500, user_id=seller.id, method="bank_transfer", reference="TX-9")
        assert (sale.paid_cents, sale.remaining_cents) == (4000, 0)
        assert sale.payment_status == "paid"

    def test_overpayment_refused(self, store, seller, accessory):
        sale = _posted_sale(store, seller, accessory, 1)
        with pytest.raises(OverPaymentError):
            payment_service.record_payment(store.id, sale.id, 1001, user_id=seller.id)
        assert sale.paid_cents == 0
        assert sale.remaining_cents == 1000

    def test_draft_cannot_be_paid(self, store, seller, accessory):
        sale = document_service.create_document(store.id, "sale", user_id=seller.id)
        document_service.add_item(store.id, sale.id, item_type="accessory", product_id=accessory.id, qty=1)
        with pytest.raises(InvalidStateError):
            payment_service.record_payment(store.id, sale.id, 100, user_id=seller.id)

    @pytest.mark.parametrize("amount", [0, -5])
    def test_non_positive_amount_rejected(self, store, seller, accessory, amount):
        sale = _posted_sale(store, seller, accessory, 1)
        with pytest.raises(ValidationError):
            payment_service.record_payment(store.id, sale.id, amount, user_id=seller.id)

    def test_unknown_method_rejected(self, store, seller, accessory):
        sale = _posted_sale(store, seller, accessory, 1)
        with pytest.raises(ValidationError):
            payment_service.record_payment(store.id, sale.id, 100, user_id=seller.id, method="crypto")

    def test_sale_payment_is_cash_in(self, db_session, store, seller, accessory):
        sale = _posted_sale(store, seller, accessory, 1)
        payment = payment_service.record_payment(store.id, sale.id, 1000, user_id=seller.id)

        movement = db_session.query(CashMovement).filter_by(payment_id=payment.id).one()
        assert movement.direction == "in"
        assert movement.transaction_type == "sale"
        assert movement.transaction_ref == sale.document_number

    def test_purchase_payment_is_cash_out(self, db_session, store, owner, supplier, accessory):
        purchase = document_service.create_document(store.id, "purchase", user_id=owner.id, supplier_id=supplier.id)
        document_service.add_item(store.id, purchase.id, item_type="accessory", product_id=accessory.id, qty=10)
        document_service.post_document(store.id, purchase.id, user_id=owner.id)

        payment = payment_service.record_payment(store.id, purchase.id, 1000, user_id=owner.id)
        movement = db_session.query(CashMovement).filter_by(payment_id=payment.id).one()
        assert movement.direction == "out"
        assert purchase.remaining_cents == 3000 - 1000

    def test_recompute_matches_stored(self, store, seller, accessory):
        sale = _posted_sale(store, seller, accessory, 3)
        payment_service.record_payment(store.id, sale.id, 700, user_id=seller.id)
        payment_service.record_payment(store.id, sale.id, 800, user_id=seller.id)
        assert payment_service.recompute_balance(sale) == (1500, 1500)
        assert len(payment_service.list_payments(store.id, sale.id)) == 2


class TestBalances:

    def test_customer_balance(self, store, seller, customer, accessory):
        first = _posted_sale(store, seller, accessory, 2, customer=customer)
        _posted_sale(store, seller, accessory, 3, customer=customer)
        payment_service.record_payment(store.id, first.id, 2000, user_id=seller.id)

        balance = payment_service.get_counterparty_balance(store.id, "customer", customer.id)
        assert balance["doc_count"] == 2
        assert balance["total_spent_cents"] == 5000
        assert balance["paid_cents"] == 2000
        assert balance["outstanding_cents"] == 3000

    def test_drafts_and_cancelled_do_not_count(self, store, owner, seller, customer, accessory):
        cancelled = _posted_sale(store, seller, accessory, 2, customer=customer)
        document_service.cancel_document(store.id, cancelled.id, user=owner, reason="Void")
        draft = document_service.create_document(store.id, "sale", user_id=seller.id, customer_id=customer.id)
        document_service.add_item(store.id, draft.id, item_type="accessory", product_id=accessory.id, qty=1)

        assert payment_service.get_counterparty_balance(store.id, "customer", customer.id)["outstanding_cents"] == 0
        assert payment_service.get_total_debt(store.id, "customer") == 0

    def test_total_debt(self, store, seller, customer, accessory):
        _posted_sale(store, seller, accessory, 2, customer=customer)
        walk_in = _posted_sale(store, seller, accessory, 1)
        payment_service.record_payment(store.id, walk_in.id, 400, user_id=seller.id)

        assert payment_service.get_total_debt(store.id, "customer") == 2000 + 600

    def test_outstanding_only_filter(self, store, seller, customer, accessory):
        counterparty_service.create_counterparty(store.id, "customer", name="Paid Up")
        _posted_sale(store, seller, accessory, 1, customer=customer)

        rows = payment_service.list_balances(store.id, "customer", outstanding_only=True)
        assert [row["counterparty"]["id"] for row in rows] == [customer.id]
        assert len(payment_service.list_balances(store.id, "customer")) == 2

    def test_high_risk(self, store, seller, customer, accessory):
        careful = counterparty_service.create_counterparty(store.id, "customer", name="Careful Payer")
        counterparty_service.create_counterparty(store.id, "customer", name="Never Bought")

        _posted_sale(store, seller, accessory, 2, customer=customer)
        paid = _posted_sale(store, seller, accessory, 2, customer=careful)
        payment_service.record_payment(store.id, paid.id, 1500, user_id=seller.id)

        flagged = payment_service.get_high_risk(store.id, "customer", threshold=0.5)
        assert [row["counterparty"]["id"] for row in flagged] == [customer.id]
        assert flagged[0]["risk_ratio"] == 1.0

        flagged = payment_service.get_high_risk(store.id, "customer", threshold=0.2)
        assert [row["counterparty"]["id"] for row in flagged] == [customer.id, careful.id]

    def test_high_risk_uses_configured_threshold(self, app, store, seller, customer, accessory):
        sale = _posted_sale(store, seller, accessory, 4, customer=customer)
        payment_service.record_payment(store.id, sale.id, 2500, user_id=seller.id)
        # 1500 / 4000 = 0.375, under the configured 0.5
        assert payment_service.get_high_risk(store.id, "customer") == []

    def test_unknown_kind_rejected(self, store):
        with pytest.raises(ValidationError):
            payment_service.get_total_debt(store.id, "vendor")
