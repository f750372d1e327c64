# Overview: Single transition table per ledger entity.

"""
Ledger lifecycle rules.

Each entity has exactly one table of allowed (from, to) status pairs.
Anything not listed is rejected; there are no ad hoc status checks in the
services beyond calling `require_transition`.

DOCUMENT:  draft -> posted -> cancelled
RETURN:    pending -> approved -> refunded -> completed
           pending -> rejected
SESSION:   open -> closed
EXPENSE:   pending -> paid, pending -> cancelled
PHONE:     serialized stock status (see PHONE_TRANSITIONS)
"""

from __future__ import annotations

from ..errors import InvalidStateError, InvalidTransitionError
from ..states import DocumentStatus, ExpenseStatus, PhoneStatus, ReturnStatus, SessionStatus


DOCUMENT_TRANSITIONS = {
    (DocumentStatus.DRAFT.value, DocumentStatus.POSTED.value),
    (DocumentStatus.POSTED.value, DocumentStatus.CANCELLED.value),
}

RETURN_TRANSITIONS = {
    (ReturnStatus.PENDING.value, ReturnStatus.APPROVED.value),
    (ReturnStatus.PENDING.value, ReturnStatus.REJECTED.value),
    (ReturnStatus.APPROVED.value, ReturnStatus.REFUNDED.value),
    (ReturnStatus.REFUNDED.value, ReturnStatus.COMPLETED.value),
}

SESSION_TRANSITIONS = {
    (SessionStatus.OPEN.value, SessionStatus.CLOSED.value),
}

EXPENSE_TRANSITIONS = {
    (ExpenseStatus.PENDING.value, ExpenseStatus.PAID.value),
    (ExpenseStatus.PENDING.value, ExpenseStatus.CANCELLED.value),
}

PHONE_TRANSITIONS = {
    (PhoneStatus.AVAILABLE.value, PhoneStatus.SOLD.value),
    (PhoneStatus.AVAILABLE.value, PhoneStatus.RESERVED.value),
    (PhoneStatus.AVAILABLE.value, PhoneStatus.DAMAGED.value),
    (PhoneStatus.RESERVED.value, PhoneStatus.AVAILABLE.value),
    (PhoneStatus.RESERVED.value, PhoneStatus.SOLD.value),
    # Sale cancelled, or return approved as resellable
    (PhoneStatus.SOLD.value, PhoneStatus.AVAILABLE.value),
    (PhoneStatus.SOLD.value, PhoneStatus.RETURNED.value),
    (PhoneStatus.RETURNED.value, PhoneStatus.AVAILABLE.value),
    (PhoneStatus.RETURNED.value, PhoneStatus.DAMAGED.value),
    (PhoneStatus.DAMAGED.value, PhoneStatus.AVAILABLE.value),
}

_TABLES = {
    "document": (DOCUMENT_TRANSITIONS, InvalidStateError),
    "return": (RETURN_TRANSITIONS, InvalidStateError),
    "session": (SESSION_TRANSITIONS, InvalidStateError),
    "expense": (EXPENSE_TRANSITIONS, InvalidStateError),
    "phone": (PHONE_TRANSITIONS, InvalidTransitionError),
}


def require_transition(entity: str, obj, to_status: str, *, label: str | None = None) -> None:
    """
    Move `obj.status` to `to_status` or raise.

    Documents, returns, sessions and expenses raise InvalidStateError;
    phones raise InvalidTransitionError. Same-state moves are rejected
    too (sold -> sold is not a no-op, it is a double sale).
    """
    table, error_cls = _TABLES[entity]
    from_status = obj.status
    if (from_status, to_status) not in table:
        name = label or f"{entity} {obj.id}"
        raise error_cls(
            f"Cannot move {name} from '{from_status}' to '{to_status}'",
            details={"entity": entity, "id": obj.id, "from": from_status, "to": to_status},
        )
    obj.status = to_status


def require_status(entity: str, obj, *allowed: str, action: str) -> None:
    """Guard for operations that do not change status (add item, record payment)."""
    if obj.status not in allowed:
        raise InvalidStateError(
            f"Cannot {action}: {entity} {obj.id} is '{obj.status}', must be {' or '.join(repr(a) for a in allowed)}",
            details={"entity": entity, "id": obj.id, "status": obj.status, "allowed": list(allowed)},
        )
