"""
Shared state object for the reconciliation graph.
Every node reads from this state and returns the fields it updates.
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from quote_reconciliation.schemas.catalog import RequestedItem
from quote_reconciliation.schemas.discrepancy import QuoteDiscrepancyReport
from quote_reconciliation.schemas.extraction import QuoteExtraction
from quote_reconciliation.schemas.matching import MatchingSettings, MatchResult


class ReasoningLogEntry(BaseModel):
    """A single entry in the reasoning log."""
    timestamp: datetime
    agent_name: str
    message: str
    confidence: Optional[float] = None
    action: Optional[str] = None


class ReconciliationState(BaseModel):
    """
    State for one reconciliation round.

    Inputs are the requested catalog items and the extraction of one supplier
    quote. Nodes fill in match results, the discrepancy report and the review
    flag, appending to the reasoning log as they go.
    """

    # Round identification
    supplier_request_id: str
    processing_timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    # Inputs
    requested_items: List[RequestedItem]
    extraction: QuoteExtraction
    expected_supplier_name: Optional[str] = None
    settings: MatchingSettings = Field(default_factory=MatchingSettings)
    total_tolerance: Optional[float] = None

    # Matching phase
    match_results: List[MatchResult] = Field(default_factory=list)

    # Discrepancy phase
    discrepancy_report: Optional[QuoteDiscrepancyReport] = None

    # Review routing
    needs_review: bool = False
    review_reasons: List[str] = Field(default_factory=list)

    # Audit trail
    reasoning_log: List[ReasoningLogEntry] = Field(default_factory=list)

    def add_reasoning(
        self,
        agent_name: str,
        message: str,
        confidence: Optional[float] = None,
        action: Optional[str] = None
    ) -> None:
        """Add an entry to the reasoning log."""
        self.reasoning_log.append(
            ReasoningLogEntry(
                timestamp=datetime.now(timezone.utc),
                agent_name=agent_name,
                message=message,
                confidence=confidence,
                action=action,
            )
        )

    def get_agent_reasoning(self) -> str:
        """Get a human-readable summary of the reasoning."""
        if not self.reasoning_log:
            return "No reasoning available."

        lines = []
        for entry in self.reasoning_log:
            conf_str = f" (confidence: {entry.confidence:.0f})" if entry.confidence else ""
            lines.append(f"[{entry.agent_name}] {entry.message}{conf_str}")

        return "\n".join(lines)

    def get_summary(self) -> Dict[str, Any]:
        """Get a summary of the current state."""
        return {
            "supplier_request_id": self.supplier_request_id,
            "matching_status": "completed" if self.match_results else "pending",
            "discrepancies_found": len(self.discrepancy_report.details) if self.discrepancy_report else 0,
            "needs_review": self.needs_review,
            "total_agents_participated": len(set(log.agent_name for log in self.reasoning_log)),
        }
