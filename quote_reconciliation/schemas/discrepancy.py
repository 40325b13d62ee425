"""
Discrepancy schemas.
Discrepancies are informational: they never block submission or review.
"""

from typing import Any, List, Optional
from pydantic import BaseModel, Field


class DiscrepancyDetail(BaseModel):
    """Details of a single discrepancy."""
    type: str  # quantity_mismatch, total_mismatch, missing_shipping, missing_taxes, supplier_mismatch
    severity: str  # low, medium, high
    match_index: Optional[int] = None
    requested_value: Optional[Any] = None
    quoted_value: Optional[Any] = None
    explanation: str


class QuoteDiscrepancyReport(BaseModel):
    """Quote-level comparison of declared against computed figures."""
    calculated_total: float = 0.0
    quote_total: Optional[float] = None
    total_mismatch: bool = False
    has_shipping: bool = False
    shipping_fee: Optional[float] = None
    has_taxes: bool = False
    taxes: Optional[float] = None
    supplier_name_similarity: Optional[float] = None
    quantity_discrepancy_count: int = 0
    details: List[DiscrepancyDetail] = Field(default_factory=list)

    def messages(self) -> List[str]:
        return [detail.explanation for detail in self.details]

    def highest_severity(self) -> Optional[str]:
        order = {"low": 1, "medium": 2, "high": 3}
        if not self.details:
            return None
        return max(self.details, key=lambda d: order.get(d.severity, 0)).severity
