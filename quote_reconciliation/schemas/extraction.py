"""
Extraction schemas.
Structured output of the external document-understanding service.
"""

from typing import Optional, List
from pydantic import BaseModel, ConfigDict, Field


class SupplierInfo(BaseModel):
    """Quote-level figures declared by the supplier."""
    company_name: Optional[str] = None
    quote_number: Optional[str] = None
    quote_date: Optional[str] = None
    valid_until: Optional[str] = None
    subtotal: Optional[float] = None
    shipping: Optional[float] = None
    taxes: Optional[float] = None
    total: Optional[float] = None


class ExtractedLineItem(BaseModel):
    """
    One row pulled from a quote document.
    Never mutated once extracted; corrections live in review overrides.
    """
    model_config = ConfigDict(frozen=True)

    product_name: str = ""
    product_name_original: Optional[str] = None
    sku: Optional[str] = None
    quantity: Optional[float] = None
    unit_price: Optional[float] = None
    total_price: Optional[float] = None
    brand: Optional[str] = None
    description: Optional[str] = None
    lead_time: Optional[str] = None

    def line_total(self) -> float:
        """Stated line total, else unit price times quantity (quantity defaults to 1)."""
        if self.total_price:
            return self.total_price
        return (self.unit_price or 0.0) * (self.quantity or 1)


class QuoteExtraction(BaseModel):
    """Full extraction result for one uploaded quote document."""
    supplier_info: SupplierInfo = Field(default_factory=SupplierInfo)
    extracted_items: List[ExtractedLineItem] = Field(default_factory=list)
    notes: Optional[str] = None
    extraction_warnings: List[str] = Field(default_factory=list)
