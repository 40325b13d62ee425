"""
Review schemas for reconciliation sessions.
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, List, Literal, Optional, Union
from pydantic import BaseModel, Field

from quote_reconciliation.schemas.discrepancy import QuoteDiscrepancyReport
from quote_reconciliation.schemas.extraction import SupplierInfo
from quote_reconciliation.schemas.matching import MatchResult, MatchSummary
from quote_reconciliation.services.statuses import SessionStatus


class ReviewDecision(str, Enum):
    APPROVED = "approved"
    REJECTED = "rejected"
    REASSIGNED = "reassigned"
    RESOLVED = "resolved"


class ExtraResolution(str, Enum):
    """How an extra line was handled outside the matching flow."""
    COMPONENT = "component"  # filed as a component of an existing item
    CATALOG = "catalog"  # to be added to the catalog as a new item


class ApproveAction(BaseModel):
    action: Literal["approve"] = "approve"
    match_index: int = Field(ge=0)
    reviewer: str
    unit_price: Optional[float] = Field(default=None, ge=0)
    quantity: Optional[float] = Field(default=None, gt=0)


class ReassignAction(BaseModel):
    action: Literal["reassign"] = "reassign"
    match_index: int = Field(ge=0)
    reviewer: str
    requested_item_id: str


class RejectAction(BaseModel):
    action: Literal["reject"] = "reject"
    match_index: int = Field(ge=0)
    reviewer: str


class ResolveExtraAction(BaseModel):
    action: Literal["resolve_extra"] = "resolve_extra"
    match_index: int = Field(ge=0)
    reviewer: str
    resolution: ExtraResolution
    parent_item_id: Optional[str] = None


class FinalizeAction(BaseModel):
    action: Literal["finalize"] = "finalize"
    reviewer: str


ReviewAction = Annotated[
    Union[ApproveAction, ReassignAction, RejectAction, ResolveExtraAction, FinalizeAction],
    Field(discriminator="action"),
]


class ReviewRecord(BaseModel):
    """The current reviewed decision on one match result."""
    decision: ReviewDecision
    reviewer: str
    reviewed_at: datetime
    unit_price: Optional[float] = None
    quantity: Optional[float] = None
    requested_item_id: Optional[str] = None
    resolution: Optional[ExtraResolution] = None
    parent_item_id: Optional[str] = None

    def same_as(self, other: Optional["ReviewRecord"]) -> bool:
        """Equal decision and payload, ignoring when it was recorded."""
        if other is None:
            return False
        return self.model_dump(exclude={"reviewed_at"}) == other.model_dump(exclude={"reviewed_at"})


class SessionState(BaseModel):
    """Snapshot of a reconciliation session after a read or a review action."""
    session_id: str
    supplier_request_id: str
    round: int
    status: SessionStatus
    results: List[MatchResult] = Field(default_factory=list)
    reviews: List[Optional[ReviewRecord]] = Field(default_factory=list)
    supplier_info: SupplierInfo = Field(default_factory=SupplierInfo)
    discrepancy_report: Optional[QuoteDiscrepancyReport] = None
    summary: MatchSummary = Field(default_factory=MatchSummary)
    updated_at: Optional[datetime] = None
