"""
Document numbering tests.
"""

from datetime import date

from shopledger.services.sequence_service import format_document_number, next_document_number


def test_format_document_number():
    assert format_document_number("INV", date(2026, 10, 19), 7) == "INV-20261019-0007"


def test_numbers_are_sequential_per_type_and_day(db_session, store):
    day = date(2026, 10, 19)
    first = next_document_number(store_id=store.id, doc_type="sale", day=day)
    second = next_document_number(store_id=store.id, doc_type="sale", day=day)
    purchase = next_document_number(store_id=store.id, doc_type="purchase", day=day)
    next_day = next_document_number(store_id=store.id, doc_type="sale", day=date(2026, 10, 20))
    db_session.commit()

    assert first == "INV-20261019-0001"
    assert second == "INV-20261019-0002"
    assert purchase == "PUR-20261019-0001"
    assert next_day == "INV-20261020-0001"


def test_sequences_are_store_scoped(db_session, store, other_store):
    day = date(2026, 10, 19)
    a = next_document_number(store_id=store.id, doc_type="sale", day=day)
    b = next_document_number(store_id=other_store.id, doc_type="sale", day=day)
    db_session.commit()
    assert a == b == "INV-20261019-0001"
