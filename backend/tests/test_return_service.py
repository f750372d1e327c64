"""
Return workflow tests.

Verifies:
- Returns never exceed the qty sold on a line
- Stock and cash move only on owner approval
- Phones return to stock or to 'returned' depending on inspection
- Completion waits for the refund's cash session to close
- A sale with returns cannot be cancelled
"""

import pytest

from shopledger.errors import (
    ConflictingStateError,
    InvalidStateError,
    OverReturnError,
    UnauthorizedError,
    ValidationError,
)
from shopledger.models import CashMovement
from shopledger.services import document_service, register_service, return_service


@pytest.fixture
def posted_sale(store, seller, customer, accessory, phone):
    """Posted sale: 4 cases at 1000 and one phone at 45000."""
    sale = document_service.create_document(store.id, "sale", user_id=seller.id, customer_id=customer.id)
    document_service.add_item(
        store.id, sale.id, item_type="accessory", product_id=accessory.id, qty=4, unit_price_cents=1000,
    )
    document_service.add_item(store.id, sale.id, item_type="phone", product_id=phone.id)
    return document_service.post_document(store.id, sale.id, user_id=seller.id)


def _line(sale, item_type):
    return next(item for item in sale.items if item.item_type == item_type)


# =============================================================================
# CREATION
# =============================================================================


class TestCreateReturn:

    def test_pending_return_has_no_effects(self, db_session, store, seller, posted_sale, accessory):
        line = _line(posted_sale, "accessory")
        ret = return_service.create_return(
            store.id, sale_id=posted_sale.id, sale_item_id=line.id, qty=2, reason="Wrong colour", user_id=seller.id,
        )
        assert ret.status == "pending"
        assert ret.refund_amount_cents == 2000
        assert accessory.quantity == 6
        assert db_session.query(CashMovement).filter_by(transaction_type="refund").count() == 0

    def test_over_return_rejected(self, store, seller, posted_sale):
        line = _line(posted_sale, "accessory")
        with pytest.raises(OverReturnError):
            return_service.create_return(
                store.id, sale_id=posted_sale.id, sale_item_id=line.id, qty=5, reason="Too many", user_id=seller.id,
            )

    def test_pending_returns_count_toward_limit(self, store, seller, posted_sale):
        line = _line(posted_sale, "accessory")
        return_service.create_return(
            store.id, sale_id=posted_sale.id, sale_item_id=line.id, qty=3, reason="Defect", user_id=seller.id,
        )
        assert return_service.get_returnable_qty(store.id, line.id) == 1
        with pytest.raises(OverReturnError):
            return_service.create_return(
                store.id, sale_id=posted_sale.id, sale_item_id=line.id, qty=2, reason="Defect", user_id=seller.id,
            )

    def test_rejected_return_frees_qty(self, store, owner, seller, posted_sale):
        line = _line(posted_sale, "accessory")
        ret = return_service.create_return(
            store.id, sale_id=posted_sale.id, sale_item_id=line.id, qty=4, reason="Defect", user_id=seller.id,
        )
        return_service.reject_return(store.id, ret.id, user_id=owner.id, reason="No receipt")

        assert ret.status == "rejected"
        assert return_service.get_returnable_qty(store.id, line.id) == 4

    def test_refund_above_line_total_rejected(self, store, seller, posted_sale):
        line = _line(posted_sale, "accessory")
        with pytest.raises(ValidationError):
            return_service.create_return(
                store.id, sale_id=posted_sale.id, sale_item_id=line.id, qty=1, reason="Defect",
                user_id=seller.id, refund_amount_cents=4001,
            )

    def test_draft_sale_cannot_be_returned(self, store, seller, accessory):
        sale = document_service.create_document(store.id, "sale", user_id=seller.id)
        item = document_service.add_item(store.id, sale.id, item_type="accessory", product_id=accessory.id, qty=1)
        with pytest.raises(InvalidStateError):
            return_service.create_return(
                store.id, sale_id=sale.id, sale_item_id=item.id, qty=1, reason="Defect", user_id=seller.id,
            )

    def test_reason_required(self, store, seller, posted_sale):
        line = _line(posted_sale, "accessory")
        with pytest.raises(ValidationError):
            return_service.create_return(
                store.id, sale_id=posted_sale.id, sale_item_id=line.id, qty=1, reason="", user_id=seller.id,
            )


# =============================================================================
# APPROVAL
# =============================================================================


class TestApproveReturn:

    def test_approve_restocks_and_refunds(self, db_session, store, owner, seller, posted_sale, accessory):
        line = _line(posted_sale, "accessory")
        ret = return_service.create_return(
            store.id, sale_id=posted_sale.id, sale_item_id=line.id, qty=2, reason="Wrong colour", user_id=seller.id,
        )
        return_service.approve_return(store.id, ret.id, user=owner)

        assert ret.status == "approved"
        assert accessory.quantity == 8
        assert line.returned_qty == 2
        refund = db_session.query(CashMovement).filter_by(transaction_type="refund").one()
        assert refund.direction == "out"
        assert refund.amount_cents == 2000
        assert refund.transaction_ref == f"RET-{ret.id}"
        assert ret.refund_movement_id == refund.id

    def test_approve_requires_owner(self, store, seller, posted_sale, accessory):
        line = _line(posted_sale, "accessory")
        ret = return_service.create_return(
            store.id, sale_id=posted_sale.id, sale_item_id=line.id, qty=1, reason="Defect", user_id=seller.id,
        )
        with pytest.raises(UnauthorizedError):
            return_service.approve_return(store.id, ret.id, user=seller)
        assert ret.status == "pending"
        assert accessory.quantity == 6

    def test_resellable_phone_back_to_available(self, store, owner, seller, posted_sale, phone):
        line = _line(posted_sale, "phone")
        ret = return_service.create_return(
            store.id, sale_id=posted_sale.id, sale_item_id=line.id, qty=1, reason="Changed mind", user_id=seller.id,
        )
        return_service.approve_return(store.id, ret.id, user=owner, resellable=True)
        assert phone.status == "available"
        assert ret.restocked is True

    def test_faulty_phone_marked_returned(self, store, owner, seller, posted_sale, phone):
        line = _line(posted_sale, "phone")
        ret = return_service.create_return(
            store.id, sale_id=posted_sale.id, sale_item_id=line.id, qty=1, reason="Screen flicker", user_id=seller.id,
        )
        return_service.approve_return(store.id, ret.id, user=owner, resellable=False, notes="Display fault")
        assert phone.status == "returned"
        assert ret.restocked is False
        assert ret.inspection_notes == "Display fault"

    def test_zero_refund_writes_no_movement(self, db_session, store, owner, seller, posted_sale):
        line = _line(posted_sale, "accessory")
        ret = return_service.create_return(
            store.id, sale_id=posted_sale.id, sale_item_id=line.id, qty=1, reason="Exchange",
            user_id=seller.id, refund_amount_cents=0,
        )
        return_service.approve_return(store.id, ret.id, user=owner)
        assert ret.refund_movement_id is None
        assert db_session.query(CashMovement).filter_by(transaction_type="refund").count() == 0

    def test_rejected_return_cannot_be_approved(self, store, owner, seller, posted_sale):
        line = _line(posted_sale, "accessory")
        ret = return_service.create_return(
            store.id, sale_id=posted_sale.id, sale_item_id=line.id, qty=1, reason="Defect", user_id=seller.id,
        )
        return_service.reject_return(store.id, ret.id, user_id=owner.id, reason="Out of warranty")
        with pytest.raises(InvalidStateError):
            return_service.approve_return(store.id, ret.id, user=owner)


# =============================================================================
# REFUND AND COMPLETION
# =============================================================================


class TestCompleteReturn:

    def _approved(self, store, owner, seller, sale):
        line = _line(sale, "accessory")
        ret = return_service.create_return(
            store.id, sale_id=sale.id, sale_item_id=line.id, qty=1, reason="Defect", user_id=seller.id,
        )
        return return_service.approve_return(store.id, ret.id, user=owner)

    def test_full_lifecycle_without_session(self, store, owner, seller, posted_sale):
        ret = self._approved(store, owner, seller, posted_sale)
        return_service.mark_refunded(store.id, ret.id, user_id=owner.id, payment_ref="RCPT-77")
        return_service.complete_return(store.id, ret.id, user_id=owner.id)

        assert ret.status == "completed"
        assert ret.refund_payment_ref == "RCPT-77"
        assert ret.completed_at is not None

    def test_complete_waits_for_session_close(self, store, owner, seller, posted_sale):
        register_service.open_session(store.id, owner.id, 10000)
        ret = self._approved(store, owner, seller, posted_sale)
        return_service.mark_refunded(store.id, ret.id, user_id=owner.id, payment_ref="RCPT-78")

        with pytest.raises(InvalidStateError):
            return_service.complete_return(store.id, ret.id, user_id=owner.id)
        assert ret.status == "refunded"

        register_service.close_session(store.id, owner.id, 9000)
        return_service.complete_return(store.id, ret.id, user_id=owner.id)
        assert ret.status == "completed"

    def test_refunded_requires_approval(self, store, seller, posted_sale, owner):
        line = _line(posted_sale, "accessory")
        ret = return_service.create_return(
            store.id, sale_id=posted_sale.id, sale_item_id=line.id, qty=1, reason="Defect", user_id=seller.id,
        )
        with pytest.raises(InvalidStateError):
            return_service.mark_refunded(store.id, ret.id, user_id=owner.id, payment_ref="RCPT-1")

    def test_refund_counts_in_session_expected_balance(self, store, owner, seller, posted_sale):
        session = register_service.open_session(store.id, owner.id, 10000)
        self._approved(store, owner, seller, posted_sale)
        assert register_service.compute_expected_balance(session) == 10000 - 1000


# =============================================================================
# INTERACTION WITH SALE CANCEL
# =============================================================================


class TestReturnBlocksCancel:

    def test_pending_return_blocks_cancel(self, store, owner, seller, posted_sale, accessory):
        line = _line(posted_sale, "accessory")
        return_service.create_return(
            store.id, sale_id=posted_sale.id, sale_item_id=line.id, qty=1, reason="Defect", user_id=seller.id,
        )
        with pytest.raises(ConflictingStateError):
            document_service.cancel_document(store.id, posted_sale.id, user=owner, reason="Void")
        assert posted_sale.status == "posted"
        assert accessory.quantity == 6

    def test_rejected_return_does_not_block_cancel(self, store, owner, seller, posted_sale, accessory, phone):
        line = _line(posted_sale, "accessory")
        ret = return_service.create_return(
            store.id, sale_id=posted_sale.id, sale_item_id=line.id, qty=1, reason="Defect", user_id=seller.id,
        )
        return_service.reject_return(store.id, ret.id, user_id=owner.id, reason="Not ours")

        document_service.cancel_document(store.id, posted_sale.id, user=owner, reason="Void")
        assert accessory.quantity == 10
        assert phone.status == "available"

    def test_cancelled_sale_cannot_be_returned(self, store, owner, seller, posted_sale):
        document_service.cancel_document(store.id, posted_sale.id, user=owner, reason="Void")
        line = _line(posted_sale, "accessory")
        with pytest.raises(InvalidStateError):
            return_service.create_return(
                store.id, sale_id=posted_sale.id, sale_item_id=line.id, qty=1, reason="Defect", user_id=seller.id,
            )
