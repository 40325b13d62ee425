"""
Closed status enums and their transition tables.

Every state machine in the engine goes through ``check_transition`` so an
illegal move fails loudly with a ConflictError instead of silently writing
a status string.
"""

from enum import Enum
from typing import Dict, FrozenSet, Iterable, Mapping, Optional

from quote_reconciliation.errors import ConflictError


class ResponseStatus(str, Enum):
    """Lifecycle of one supplier's response to a request for quote."""
    PENDING = "PENDING"
    VIEWED = "VIEWED"
    SUBMITTED = "SUBMITTED"
    DECLINED = "DECLINED"


class RequestStatus(str, Enum):
    """Aggregate lifecycle of a request sent to several suppliers. Always derived."""
    OPEN = "OPEN"
    PARTIALLY_QUOTED = "PARTIALLY_QUOTED"
    FULLY_QUOTED = "FULLY_QUOTED"


class ItemSpecStatus(str, Enum):
    DRAFT = "DRAFT"
    SELECTED = "SELECTED"
    RFQ_SENT = "RFQ_SENT"
    QUOTE_RECEIVED = "QUOTE_RECEIVED"
    QUOTE_APPROVED = "QUOTE_APPROVED"
    ORDERED = "ORDERED"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


class PaymentStatus(str, Enum):
    """Payment progress of a requested item."""
    NOT_INVOICED = "NOT_INVOICED"
    INVOICED = "INVOICED"
    DEPOSIT_PAID = "DEPOSIT_PAID"
    FULLY_PAID = "FULLY_PAID"


class PaymentRecordStatus(str, Enum):
    """Status of a single payment recorded against a client invoice."""
    PENDING = "PENDING"
    PARTIAL = "PARTIAL"
    PAID = "PAID"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    PAYMENT_RECEIVED = "PAYMENT_RECEIVED"
    SENT_TO_SUPPLIER = "SENT_TO_SUPPLIER"
    CONFIRMED = "CONFIRMED"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


class SessionStatus(str, Enum):
    """Lifecycle of one reconciliation round."""
    OPEN = "OPEN"
    UNDER_REVIEW = "UNDER_REVIEW"
    FINALIZED = "FINALIZED"
    SUPERSEDED = "SUPERSEDED"


def _table(table: Mapping[Enum, Iterable[Enum]]) -> Dict[Enum, FrozenSet[Enum]]:
    return {state: frozenset(targets) for state, targets in table.items()}


RESPONSE_TRANSITIONS = _table({
    ResponseStatus.PENDING: [ResponseStatus.VIEWED, ResponseStatus.SUBMITTED, ResponseStatus.DECLINED],
    ResponseStatus.VIEWED: [ResponseStatus.SUBMITTED, ResponseStatus.DECLINED],
    # A resubmission opens a fresh review round without reopening PENDING
    ResponseStatus.SUBMITTED: [ResponseStatus.SUBMITTED],
    ResponseStatus.DECLINED: [],
})

ITEM_TRANSITIONS = _table({
    ItemSpecStatus.DRAFT: [ItemSpecStatus.SELECTED, ItemSpecStatus.RFQ_SENT, ItemSpecStatus.QUOTE_RECEIVED,
                           ItemSpecStatus.QUOTE_APPROVED, ItemSpecStatus.ORDERED, ItemSpecStatus.CANCELLED],
    ItemSpecStatus.SELECTED: [ItemSpecStatus.RFQ_SENT, ItemSpecStatus.QUOTE_RECEIVED,
                              ItemSpecStatus.QUOTE_APPROVED, ItemSpecStatus.ORDERED, ItemSpecStatus.CANCELLED],
    ItemSpecStatus.RFQ_SENT: [ItemSpecStatus.QUOTE_RECEIVED, ItemSpecStatus.QUOTE_APPROVED,
                              ItemSpecStatus.ORDERED, ItemSpecStatus.CANCELLED],
    ItemSpecStatus.QUOTE_RECEIVED: [ItemSpecStatus.QUOTE_RECEIVED, ItemSpecStatus.QUOTE_APPROVED,
                                    ItemSpecStatus.ORDERED, ItemSpecStatus.CANCELLED],
    # Accepting a newer quote supersedes the previous acceptance
    ItemSpecStatus.QUOTE_APPROVED: [ItemSpecStatus.QUOTE_APPROVED, ItemSpecStatus.ORDERED, ItemSpecStatus.CANCELLED],
    # A cancelled order hands its items back to QUOTE_APPROVED for re-ordering
    ItemSpecStatus.ORDERED: [ItemSpecStatus.SHIPPED, ItemSpecStatus.QUOTE_APPROVED, ItemSpecStatus.CANCELLED],
    ItemSpecStatus.SHIPPED: [ItemSpecStatus.DELIVERED],
    ItemSpecStatus.DELIVERED: [],
    ItemSpecStatus.CANCELLED: [],
})

PAYMENT_TRANSITIONS = _table({
    PaymentStatus.NOT_INVOICED: [PaymentStatus.INVOICED, PaymentStatus.DEPOSIT_PAID, PaymentStatus.FULLY_PAID],
    PaymentStatus.INVOICED: [PaymentStatus.DEPOSIT_PAID, PaymentStatus.FULLY_PAID],
    PaymentStatus.DEPOSIT_PAID: [PaymentStatus.FULLY_PAID],
    PaymentStatus.FULLY_PAID: [PaymentStatus.FULLY_PAID],
})

ORDER_TRANSITIONS = _table({
    OrderStatus.PENDING: [OrderStatus.PAYMENT_RECEIVED, OrderStatus.CANCELLED],
    OrderStatus.PAYMENT_RECEIVED: [OrderStatus.SENT_TO_SUPPLIER, OrderStatus.CANCELLED],
    OrderStatus.SENT_TO_SUPPLIER: [OrderStatus.CONFIRMED, OrderStatus.CANCELLED],
    OrderStatus.CONFIRMED: [OrderStatus.SHIPPED, OrderStatus.CANCELLED],
    OrderStatus.SHIPPED: [OrderStatus.DELIVERED],
    OrderStatus.DELIVERED: [],
    OrderStatus.CANCELLED: [],
})

SESSION_TRANSITIONS = _table({
    SessionStatus.OPEN: [SessionStatus.UNDER_REVIEW, SessionStatus.FINALIZED, SessionStatus.SUPERSEDED],
    SessionStatus.UNDER_REVIEW: [SessionStatus.UNDER_REVIEW, SessionStatus.FINALIZED, SessionStatus.SUPERSEDED],
    SessionStatus.FINALIZED: [SessionStatus.SUPERSEDED],
    SessionStatus.SUPERSEDED: [],
})

_TABLES = {
    ResponseStatus: RESPONSE_TRANSITIONS,
    ItemSpecStatus: ITEM_TRANSITIONS,
    PaymentStatus: PAYMENT_TRANSITIONS,
    OrderStatus: ORDER_TRANSITIONS,
    SessionStatus: SESSION_TRANSITIONS,
}


def _check_exhaustive() -> None:
    for enum_cls, table in _TABLES.items():
        missing = set(enum_cls) - set(table)
        if missing:
            raise RuntimeError(f"Transition table for {enum_cls.__name__} misses {sorted(m.value for m in missing)}")


_check_exhaustive()


def can_transition(current: Enum, target: Enum) -> bool:
    table = _TABLES[type(target)]
    return target in table[type(target)(current)]


def check_transition(current: Enum, target: Enum, entity: str = "", entity_id: Optional[str] = None) -> Enum:
    """
    Validate a state change against its table.

    Returns:
        The target status, so callers can assign it directly.

    Raises:
        ConflictError: if the move is not in the table
    """
    enum_cls = type(target)
    current = enum_cls(current)
    if target not in _TABLES[enum_cls][current]:
        raise ConflictError(
            f"Illegal {enum_cls.__name__} transition {current.value} -> {target.value}",
            entity=entity or None,
            entity_id=entity_id,
            current=current.value,
            target=target.value,
        )
    return target


def derive_request_status(response_statuses: Iterable[ResponseStatus]) -> RequestStatus:
    """
    Aggregate per-supplier statuses into the request status.

    SUBMITTED and DECLINED count as responded. VIEWED is still awaiting a
    response.
    """
    statuses = [ResponseStatus(s) for s in response_statuses]
    responded = [s for s in statuses if s in (ResponseStatus.SUBMITTED, ResponseStatus.DECLINED)]
    if not responded:
        return RequestStatus.OPEN
    if len(responded) == len(statuses):
        return RequestStatus.FULLY_QUOTED
    return RequestStatus.PARTIALLY_QUOTED
