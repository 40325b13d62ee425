"""
Output schemas for a reconciliation run.
"""

from datetime import datetime
from typing import List
from pydantic import BaseModel, ConfigDict, Field

from quote_reconciliation.schemas.review import SessionState


class ReconciliationOutput(BaseModel):
    """What a reconcile call hands back: the new session plus the routing verdict."""
    supplier_request_id: str
    processing_timestamp: datetime
    session: SessionState
    needs_review: bool = False
    review_reasons: List[str] = Field(default_factory=list)
    agent_reasoning: str = ""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "supplier_request_id": "5f0c6c1e-0d7a-4c55-9a53-2f1f8e3c9a10",
                "processing_timestamp": "2026-01-30T10:30:00Z",
                "session": {"session_id": "...", "round": 1, "status": "OPEN", "results": []},
                "needs_review": True,
                "review_reasons": ["1 partial matches need confirmation"],
                "agent_reasoning": "[MatchingAgent] ...",
            }
        }
    )

    @property
    def results(self) -> list:
        return self.session.results
