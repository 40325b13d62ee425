"""
Supplier Quote Reconciliation & Order Generation Engine
"""

__version__ = "1.0.0"
__description__ = "Reconciles supplier quotes against requested items and turns paid invoices into supplier orders"

from quote_reconciliation.main import (
    accept_quote_line,
    apply_review,
    create_orders_from_invoice,
    preview_orders,
    reconcile,
)
from quote_reconciliation.state import ReconciliationState
from quote_reconciliation.schemas.output import ReconciliationOutput

__all__ = [
    "reconcile",
    "apply_review",
    "accept_quote_line",
    "preview_orders",
    "create_orders_from_invoice",
    "ReconciliationState",
    "ReconciliationOutput",
]
