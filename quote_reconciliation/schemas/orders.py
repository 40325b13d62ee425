"""
Order generation schemas.
Shared by the dry-run preview and the persisted creation path.
"""

from typing import List, Optional
from pydantic import BaseModel, Field

from quote_reconciliation.services.statuses import OrderStatus


class OrderLinePlan(BaseModel):
    """One purchase-order line, either an item or one of its components."""
    requested_item_id: str
    name: str
    description: Optional[str] = None
    quantity: float
    unit_price: float
    total_price: float
    currency: Optional[str] = None
    is_component: bool = False
    parent_item_id: Optional[str] = None
    component_id: Optional[str] = None
    quote_line_id: Optional[str] = None
    lead_time: Optional[str] = None


class SupplierOrderGroup(BaseModel):
    """Lines grouped under one supplier, with financial roll-ups."""
    supplier_key: str
    supplier_id: Optional[str] = None
    supplier_name: str
    supplier_email: Optional[str] = None
    supplier_quote_id: Optional[str] = None
    currency: str
    lines: List[OrderLinePlan] = Field(default_factory=list)
    subtotal: float = 0.0
    shipping_cost: float = 0.0
    total: float = 0.0
    deposit_required: Optional[float] = None
    deposit_percent: Optional[float] = None
    balance_due: Optional[float] = None
    payment_terms: Optional[str] = None
    shipping_terms: Optional[str] = None

    @property
    def item_ids(self) -> List[str]:
        return [line.requested_item_id for line in self.lines if not line.is_component]


class ExcludedItem(BaseModel):
    """An invoice item left out of order generation, and why."""
    id: str
    name: str
    reason: str
    order_number: Optional[str] = None


class OrderPreview(BaseModel):
    invoice_id: str
    invoice_number: Optional[str] = None
    invoice_total: float = 0.0
    total_paid: float = 0.0
    is_paid: bool = False
    payment_percent: float = 0.0
    groups: List[SupplierOrderGroup] = Field(default_factory=list)
    items_without_supplier: List[ExcludedItem] = Field(default_factory=list)
    already_ordered: List[ExcludedItem] = Field(default_factory=list)
    can_create_orders: bool = False


class CreatedOrder(BaseModel):
    id: str
    order_number: str
    status: OrderStatus
    supplier_id: Optional[str] = None
    supplier_name: str
    currency: str
    line_count: int
    subtotal: float
    shipping_cost: float
    total: float
    deposit_required: Optional[float] = None
    balance_due: Optional[float] = None


class OrderCreationResult(BaseModel):
    invoice_id: str
    orders: List[CreatedOrder] = Field(default_factory=list)
    items_without_supplier: List[ExcludedItem] = Field(default_factory=list)
    already_ordered: List[ExcludedItem] = Field(default_factory=list)
