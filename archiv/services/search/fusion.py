from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Sequence

from archiv.domain.search import MatchType, ScoredHit
from archiv.providers.vector_index.base import VectorMatch, VectorMetadata


def passes_filters(
    metadata: VectorMetadata,
    *,
    tag_ids: Sequence[str] | None = None,
    mime_type_prefix: str | None = None,
) -> bool:
    # The index filters on equality only, so mime prefix and tag membership are checked here.
    if mime_type_prefix and not metadata.mime_type.startswith(mime_type_prefix):
        return False
    if tag_ids and not set(tag_ids).intersection(metadata.tag_ids):
        return False
    return True


def filter_semantic_matches(
    matches: Iterable[VectorMatch],
    *,
    min_score: float,
    tag_ids: Sequence[str] | None = None,
    mime_type_prefix: str | None = None,
) -> list[VectorMatch]:
    return [
        match
        for match in matches
        if match.score >= min_score
        and passes_filters(match.metadata, tag_ids=tag_ids, mime_type_prefix=mime_type_prefix)
    ]


@dataclass
class _Candidate:
    vector_score: float = 0.0
    keyword_match: bool = False


def _match_type(candidate: _Candidate) -> MatchType:
    if candidate.vector_score > 0 and candidate.keyword_match:
        return MatchType.BOTH
    if candidate.keyword_match:
        return MatchType.KEYWORD
    return MatchType.SEMANTIC


def fuse_results(
    semantic_matches: Iterable[VectorMatch],
    keyword_ids: Iterable[str],
    *,
    limit: int,
    min_score: float,
    keyword_boost: float,
    tag_ids: Sequence[str] | None = None,
    mime_type_prefix: str | None = None,
) -> list[ScoredHit]:
    """Merge semantic matches and keyword hits into one ranked list of ids.

    Semantic matches below ``min_score`` or failing the tag/mime filters are
    dropped before the union; keyword hits are taken as-is. The combined score is
    the similarity plus ``keyword_boost`` for keyword hits. Equal scores keep
    insertion order: semantic matches in index order, then keyword-only hits.
    """
    candidates: dict[str, _Candidate] = {}
    for match in filter_semantic_matches(
        semantic_matches,
        min_score=min_score,
        tag_ids=tag_ids,
        mime_type_prefix=mime_type_prefix,
    ):
        candidates[match.id] = _Candidate(vector_score=match.score)

    for asset_id in keyword_ids:
        candidate = candidates.get(asset_id)
        if candidate is None:
            candidates[asset_id] = _Candidate(keyword_match=True)
        else:
            candidate.keyword_match = True

    hits = [
        ScoredHit(
            asset_id=asset_id,
            vector_score=candidate.vector_score,
            keyword_match=candidate.keyword_match,
            score=candidate.vector_score + (keyword_boost if candidate.keyword_match else 0.0),
            match_type=_match_type(candidate),
        )
        for asset_id, candidate in candidates.items()
    ]
    # list.sort is stable, including with reverse=True.
    hits.sort(key=lambda hit: hit.score, reverse=True)
    return hits[:limit]


def rank_semantic(
    matches: Iterable[VectorMatch],
    *,
    limit: int,
    min_score: float,
    tag_ids: Sequence[str] | None = None,
    mime_type_prefix: str | None = None,
) -> list[ScoredHit]:
    # Similarity-only ranking without keyword fusion.
    hits = [
        ScoredHit(
            asset_id=match.id,
            vector_score=match.score,
            keyword_match=False,
            score=match.score,
            match_type=MatchType.SEMANTIC,
        )
        for match in filter_semantic_matches(
            matches,
            min_score=min_score,
            tag_ids=tag_ids,
            mime_type_prefix=mime_type_prefix,
        )
    ]
    hits.sort(key=lambda hit: hit.score, reverse=True)
    return hits[:limit]
