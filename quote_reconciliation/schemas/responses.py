"""
Supplier response schemas: quote submissions, declines and request status.
"""

from datetime import datetime
from typing import Dict, List, Optional
from pydantic import BaseModel, Field

from quote_reconciliation.services.statuses import RequestStatus, ResponseStatus


class QuoteSubmissionLine(BaseModel):
    requested_item_id: str
    unit_price: float = Field(ge=0)
    quantity: Optional[float] = Field(default=None, gt=0)
    currency: Optional[str] = None
    lead_time: Optional[str] = None
    notes: Optional[str] = None


class QuoteSubmission(BaseModel):
    """A supplier's priced response to a request."""
    quote_number: Optional[str] = None
    lines: List[QuoteSubmissionLine]
    shipping_cost: Optional[float] = Field(default=None, ge=0)
    deposit_required: Optional[float] = Field(default=None, ge=0)
    deposit_percent: Optional[float] = Field(default=None, ge=0, le=100)
    payment_terms: Optional[str] = None
    shipping_terms: Optional[str] = None
    valid_until: Optional[datetime] = None
    supplier_notes: Optional[str] = None


class DeclineRequest(BaseModel):
    reason: Optional[str] = None


class SupplierRequestState(BaseModel):
    id: str
    rfq_id: str
    status: ResponseStatus
    viewed_at: Optional[datetime] = None
    responded_at: Optional[datetime] = None
    decline_reason: Optional[str] = None
    latest_quote_id: Optional[str] = None
    latest_quote_version: Optional[int] = None


class RequestStatusSummary(BaseModel):
    """Derived aggregate status of a request for quote."""
    rfq_id: str
    status: RequestStatus
    response_counts: Dict[str, int] = Field(default_factory=dict)
