"""
Quote acceptance schemas.
"""

from typing import List, Optional
from pydantic import BaseModel, Field


class AcceptanceResult(BaseModel):
    """Outcome of accepting one quote line. Failures are reported as data."""
    success: bool
    error: Optional[str] = None
    code: Optional[str] = None
    item_id: Optional[str] = None
    quote_line_id: Optional[str] = None
    trade_price: Optional[float] = None
    rrp: Optional[float] = None
    markup_percent: Optional[float] = None


class SessionSyncResult(BaseModel):
    """What a session sync committed into the catalog."""
    session_id: str
    supplier_quote_id: Optional[str] = None
    accepted: List[AcceptanceResult] = Field(default_factory=list)
    skipped_indexes: List[int] = Field(default_factory=list)
    components_created: int = 0
