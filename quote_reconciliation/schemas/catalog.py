"""
Catalog schemas.
Represents the requested items a supplier was asked to price.
"""

from typing import Optional, List
from pydantic import BaseModel, ConfigDict, Field


class ItemComponent(BaseModel):
    """A sub-part of a requested item, ordered as its own line."""
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    model_number: Optional[str] = None
    quantity: Optional[float] = None
    price: Optional[float] = None


class RequestedItem(BaseModel):
    """
    A catalog entry the business asked a supplier to price.
    Read-only for the duration of a reconciliation round.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    sku: Optional[str] = None
    model_number: Optional[str] = None
    brand: Optional[str] = None
    quantity: float = 1
    unit_type: Optional[str] = None
    trade_price: Optional[float] = None
    components: List[ItemComponent] = Field(default_factory=list)
