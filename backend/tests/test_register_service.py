"""
Cash session tests.

Verifies:
- At most one open session per store
- expected = opening + cash in - cash out; difference = actual - expected
- Non-cash methods do not move the drawer balance
- REQUIRE_OPEN_CASH_SESSION blocks cash movements with no session
- A cash movement racing a close is counted in the frozen expected balance
"""

import threading

import pytest

from shopledger.errors import NoOpenSessionError, SessionAlreadyOpenError, ValidationError
from shopledger.extensions import db
from shopledger.models import CashMovement, CashRegisterSession
from shopledger.services import (
    auth_service,
    document_service,
    expense_service,
    integrity_service,
    payment_service,
    products_service,
    register_service,
)


def _paid_sale(store, user, accessory, qty, amount, method="cash"):
    sale = document_service.create_document(store.id, "sale", user_id=user.id)
    document_service.add_item(
        store.id, sale.id, item_type="accessory", product_id=accessory.id, qty=qty, unit_price_cents=1000,
    )
    document_service.post_document(store.id, sale.id, user_id=user.id)
    payment_service.record_payment(store.id, sale.id, amount, user_id=user.id, method=method)
    return sale


class TestSessionLifecycle:

    def test_open_and_close_balanced(self, store, owner):
        session = register_service.open_session(store.id, owner.id, 5000)
        assert session.status == "open"
        assert register_service.get_open_session(store.id).id == session.id

        closed = register_service.close_session(store.id, owner.id, 5000)
        assert closed.status == "closed"
        assert closed.expected_balance_cents == 5000
        assert closed.difference_cents == 0
        assert register_service.get_open_session(store.id) is None

    def test_second_open_refused(self, store, owner, seller):
        register_service.open_session(store.id, owner.id, 5000)
        with pytest.raises(SessionAlreadyOpenError):
            register_service.open_session(store.id, seller.id, 0)

    def test_stores_are_independent(self, store, other_store, owner):
        register_service.open_session(store.id, owner.id, 5000)
        other = register_service.open_session(other_store.id, owner.id, 100)
        assert other.status == "open"

    def test_close_without_open_session(self, store, owner):
        with pytest.raises(NoOpenSessionError):
            register_service.close_session(store.id, owner.id, 0)

    def test_negative_opening_rejected(self, store, owner):
        with pytest.raises(ValidationError):
            register_service.open_session(store.id, owner.id, -1)

    def test_reopen_after_close(self, store, owner):
        register_service.open_session(store.id, owner.id, 5000)
        register_service.close_session(store.id, owner.id, 5000)
        again = register_service.open_session(store.id, owner.id, 5000)
        assert again.status == "open"
        assert len(register_service.list_sessions(store.id)) == 2


class TestReconciliation:

    def test_expected_balance_and_shortage(self, store, owner, seller, accessory):
        register_service.open_session(store.id, owner.id, 10000)
        _paid_sale(store, seller, accessory, 3, 3000)
        expense = expense_service.create_expense(store.id, category="Cleaning", amount_cents=500, user_id=owner.id)
        expense_service.pay_expense(store.id, expense.id, user_id=owner.id)

        closed = register_service.close_session(store.id, owner.id, 12000)
        assert closed.expected_balance_cents == 10000 + 3000 - 500
        assert closed.difference_cents == 12000 - 12500

    def test_overage_recorded(self, store, owner, seller, accessory):
        register_service.open_session(store.id, owner.id, 0)
        _paid_sale(store, seller, accessory, 1, 1000)
        closed = register_service.close_session(store.id, owner.id, 1200)
        assert closed.difference_cents == 200

    def test_card_payments_excluded_from_drawer(self, store, owner, seller, accessory):
        session = register_service.open_session(store.id, owner.id, 1000)
        _paid_sale(store, seller, accessory, 2, 2000, method="card")

        summary = register_service.get_session_summary(session)
        assert summary["expected_balance_cents"] == 1000
        assert summary["cash_in_cents"] == 0
        assert summary["by_method"]["card"]["in_cents"] == 2000
        assert len(register_service.get_session_movements(session.id)) == 1

    def test_summary_after_close_uses_frozen_expected(self, store, owner, seller, accessory):
        session = register_service.open_session(store.id, owner.id, 1000)
        _paid_sale(store, seller, accessory, 1, 1000)
        register_service.close_session(store.id, owner.id, 2000)

        summary = register_service.get_session_summary(session)
        assert summary["expected_balance_cents"] == 2000
        assert summary["session"]["difference_cents"] == 0

    def test_movement_outside_session_is_unattached(self, db_session, store, seller, accessory):
        from shopledger.models import CashMovement
        _paid_sale(store, seller, accessory, 1, 1000)
        movement = db_session.query(CashMovement).one()
        assert movement.session_id is None


class TestRequireOpenSession:

    def test_cash_payment_without_session_refused(self, app, store, seller, accessory):
        app.config["REQUIRE_OPEN_CASH_SESSION"] = True
        sale = document_service.create_document(store.id, "sale", user_id=seller.id)
        document_service.add_item(store.id, sale.id, item_type="accessory", product_id=accessory.id, qty=1)
        document_service.post_document(store.id, sale.id, user_id=seller.id)

        with pytest.raises(NoOpenSessionError):
            payment_service.record_payment(store.id, sale.id, 1000, user_id=seller.id)
        assert sale.paid_cents == 0

    def test_card_payment_without_session_allowed(self, app, store, seller, accessory):
        app.config["REQUIRE_OPEN_CASH_SESSION"] = True
        _paid_sale(store, seller, accessory, 1, 1000, method="card")

    def test_post_with_cash_payment_rolls_back_whole_post(self, app, store, seller, accessory):
        app.config["REQUIRE_OPEN_CASH_SESSION"] = True
        sale = document_service.create_document(store.id, "sale", user_id=seller.id)
        document_service.add_item(store.id, sale.id, item_type="accessory", product_id=accessory.id, qty=2)

        with pytest.raises(NoOpenSessionError):
            document_service.post_document(store.id, sale.id, user_id=seller.id, payment_cents=500)
        assert sale.status == "draft"
        assert accessory.quantity == 10


# =============================================================================
# CLOSE RACING MOVEMENTS
# =============================================================================


class TestCloseConcurrency:

    def test_payment_during_close_is_counted(self, file_app, monkeypatch):
        with file_app.app_context():
            store = auth_service.create_store("Main Shop", "MAIN")
            owner, _ = auth_service.create_user(store.id, "owner", role="owner")
            accessory = products_service.create_accessory(
                store.id, sku="CASE-01", name="Phone case", quantity=10, min_qty=3,
                buy_price_cents=300, sell_price_cents=1000, user_id=owner.id,
            )
            register_service.open_session(store.id, owner.id, 5000)
            sale = document_service.create_document(store.id, "sale", user_id=owner.id)
            document_service.add_item(
                store.id, sale.id, item_type="accessory", product_id=accessory.id, qty=1, unit_price_cents=1000,
            )
            document_service.post_document(store.id, sale.id, user_id=owner.id)
            store_id, owner_id, sale_id = store.id, owner.id, sale.id

        original = register_service.compute_expected_balance
        totals_read = threading.Event()
        payment_done = threading.Event()

        def compute_then_wait(session):
            # The close reads its totals, then the payment commits before the close writes
            expected = original(session)
            if threading.current_thread().name == "close" and not totals_read.is_set():
                totals_read.set()
                payment_done.wait(timeout=5)
            return expected

        monkeypatch.setattr(register_service, "compute_expected_balance", compute_then_wait)
        errors = []

        def close():
            with file_app.app_context():
                try:
                    register_service.close_session(store_id, owner_id, 6000)
                except Exception as e:
                    errors.append(e)

        def pay():
            totals_read.wait(timeout=5)
            with file_app.app_context():
                try:
                    payment_service.record_payment(store_id, sale_id, 1000, user_id=owner_id)
                except Exception as e:
                    errors.append(e)
                finally:
                    payment_done.set()

        threads = [threading.Thread(target=close, name="close"), threading.Thread(target=pay, name="pay")]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=15)

        assert errors == []
        with file_app.app_context():
            session = db.session.query(CashRegisterSession).filter_by(store_id=store_id).one()
            assert session.status == "closed"
            assert session.expected_balance_cents == 5000 + 1000
            assert session.difference_cents == 0
            assert session.last_movement_at is not None
            assert integrity_service.check_sessions(store_id) == []

    def test_movement_bumps_open_session_version(self, db_session, store, owner, seller, accessory):
        session = register_service.open_session(store.id, owner.id, 0)
        version = session.version_id
        _paid_sale(store, seller, accessory, 1, 1000)
        assert session.version_id == version + 1
        assert session.last_movement_at is not None

    def test_integrity_recomputes_expected_from_movements(self, db_session, store, owner):
        session = register_service.open_session(store.id, owner.id, 1000)
        register_service.close_session(store.id, owner.id, 1000)
        assert integrity_service.check_sessions(store.id) == []

        # A movement that reached the session after its close
        db_session.add(CashMovement(
            store_id=store.id,
            session_id=session.id,
            amount_cents=700,
            direction="in",
            method="cash",
            transaction_type="sale",
            created_by_user_id=owner.id,
        ))
        db_session.commit()

        problems = integrity_service.verify_store(store.id)["sessions"]
        assert problems == [{
            "check": "session_expected",
            "session_id": session.id,
            "stored": 1000,
            "movements": 1700,
        }]
