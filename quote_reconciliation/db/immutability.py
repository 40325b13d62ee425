"""
ORM listener keeping purchase orders immutable after creation.

Only status, payment tracking, notes and updated_at may change on an
existing order. Anything else is rejected at flush time.
"""

from sqlalchemy import event, inspect

from quote_reconciliation.db.models import Order
from quote_reconciliation.errors import ConflictError


MUTABLE_ORDER_FIELDS = frozenset({
    "status",
    "deposit_paid",
    "balance_paid",
    "paid_at",
    "balance_due",
    "notes",
    "updated_at",
})


def changed_columns(target) -> list:
    """Column attributes with pending changes on a persistent instance."""
    insp = inspect(target)
    changed = []
    for attr in insp.mapper.column_attrs:
        if insp.attrs[attr.key].history.has_changes():
            changed.append(attr.key)
    return changed


@event.listens_for(Order, "before_update")
def _check_order_immutability(mapper, connection, target):
    blocked = [key for key in changed_columns(target) if key not in MUTABLE_ORDER_FIELDS]
    if blocked:
        raise ConflictError(
            f"Order {target.order_number} is immutable; cannot modify {', '.join(sorted(blocked))}",
            entity="Order",
            entity_id=target.id,
        )
