from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from archiv.domain.models import Asset


class MatchType(str, Enum):
    SEMANTIC = "semantic"
    KEYWORD = "keyword"
    BOTH = "both"


@dataclass(frozen=True)
class ScoredHit:
    # One fused candidate before hydration.
    asset_id: str
    vector_score: float
    keyword_match: bool
    score: float
    match_type: MatchType


@dataclass(frozen=True)
class SearchResult:
    asset: Asset
    url: str
    score: float
    match_type: MatchType
