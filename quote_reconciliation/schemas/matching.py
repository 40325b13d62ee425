"""
Match result schemas.

A MatchResult is a tagged union on ``status``: each variant only carries the
fields that make sense for it, so a Missing result can never hold an
extracted item and an Extra result can never point at a requested item.
"""

from typing import Annotated, List, Literal, Optional, Union
from pydantic import BaseModel, Field, TypeAdapter

from quote_reconciliation.config import get_config
from quote_reconciliation.schemas.catalog import RequestedItem
from quote_reconciliation.schemas.extraction import ExtractedLineItem


config = get_config()


class MatchingSettings(BaseModel):
    """Matcher scoring constants. Defaults come from config; tests override freely."""
    sku_exact_score: int = config.SKU_EXACT_SCORE
    sku_partial_score: int = config.SKU_PARTIAL_SCORE
    brand_bonus: int = config.BRAND_BONUS
    name_multi_word_score: int = config.NAME_MULTI_WORD_SCORE
    name_short_single_word_score: int = config.NAME_SHORT_SINGLE_WORD_SCORE
    name_single_word_score: int = config.NAME_SINGLE_WORD_SCORE
    short_name_max_tokens: int = config.SHORT_NAME_MAX_TOKENS
    min_token_length: int = config.MIN_TOKEN_LENGTH
    matched_threshold: int = config.MATCHED_THRESHOLD
    identifier_accept_threshold: int = config.IDENTIFIER_ACCEPT_THRESHOLD
    name_accept_threshold: int = config.NAME_ACCEPT_THRESHOLD
    suggestion_word_score: int = config.SUGGESTION_WORD_SCORE
    suggestion_max_confidence: int = config.SUGGESTION_MAX_CONFIDENCE
    suggestion_limit: int = config.SUGGESTION_LIMIT


class SuggestedMatch(BaseModel):
    """A candidate requested item proposed for an unmatched extracted item."""
    requested_item: RequestedItem
    confidence: int = Field(ge=0, le=100)


class MatchedResult(BaseModel):
    status: Literal["matched"] = "matched"
    confidence: int = Field(ge=0, le=100)
    requested_item: RequestedItem
    extracted_item: ExtractedLineItem
    discrepancies: List[str] = Field(default_factory=list)
    manually_matched: bool = False


class PartialResult(BaseModel):
    status: Literal["partial"] = "partial"
    confidence: int = Field(ge=0, le=100)
    requested_item: RequestedItem
    extracted_item: ExtractedLineItem
    discrepancies: List[str] = Field(default_factory=list)


class MissingResult(BaseModel):
    """A requested item no extracted line claimed."""
    status: Literal["missing"] = "missing"
    confidence: int = Field(default=0, ge=0, le=100)
    requested_item: RequestedItem
    discrepancies: List[str] = Field(default_factory=list)


class ExtraResult(BaseModel):
    """An extracted line with no acceptable requested counterpart."""
    status: Literal["extra"] = "extra"
    confidence: int = Field(default=0, ge=0, le=100)
    extracted_item: ExtractedLineItem
    discrepancies: List[str] = Field(default_factory=list)
    suggested_matches: List[SuggestedMatch] = Field(default_factory=list)


MatchResult = Annotated[
    Union[MatchedResult, PartialResult, MissingResult, ExtraResult],
    Field(discriminator="status"),
]

match_results_adapter = TypeAdapter(List[MatchResult])


def linked_item_id(result) -> Optional[str]:
    """Requested item id a Matched/Partial result claims, else None."""
    if isinstance(result, (MatchedResult, PartialResult)):
        return result.requested_item.id
    return None


class MatchSummary(BaseModel):
    """Counts over one set of match results."""
    total_requested: int = 0
    total_extracted: int = 0
    matched: int = 0
    partial: int = 0
    missing: int = 0
    extra: int = 0
    approved: int = 0
    rejected: int = 0
    quantity_discrepancies: int = 0
