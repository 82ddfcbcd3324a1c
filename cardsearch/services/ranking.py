# services/ranking.py
"""
Ranking Service
---------------
1. Field sort: any sortable document field, asc/desc, in place.
2. Weighted score sort: sum of user weights over a document's tags,
   name tie-break.
3. Similarity ranking: every candidate scored against a reference
   document with the combined similarity.

Complexity:
- Sorting: O(M log M).
- Similarity ranking: O(M * cost(metric)).
"""

from collections import defaultdict
from typing import List, NamedTuple

from cardsearch.services.analytics import tag_frequency
from cardsearch.services.similarity import SimilarityOptions

SORT_FIELDS = (
    "score", "name", "creator", "tag_count", "rarity_sum", "favorite",
    "date_added", "date_last_interaction", "interaction_volume", "storage_size",
)
TEXT_FIELDS = {"name": "name", "creator": "creator_name"}
CLOUD_SIZE = 24


def weighted_score(doc, weights: dict):
    if not weights:
        return 0.0
    return sum(weights.get(t, 0.0) for t in doc.tags)


def _sort_key(by, weights):
    if by == "score":
        return lambda d: (weighted_score(d, weights), d.name.casefold())
    if by in TEXT_FIELDS:
        attr = TEXT_FIELDS[by]
        return lambda d: (getattr(d, attr) or "").casefold()
    if by in SORT_FIELDS:
        return lambda d: float(getattr(d, by) or 0)
    return lambda d: 0.0


def sort_documents(documents: list, by="score", direction="desc", weights: dict = None):
    """Sort in place and return the same list. Ties keep their order."""
    documents.sort(key=_sort_key(by, weights or {}), reverse=(direction != "asc"))
    return documents


class ScoredDocument(NamedTuple):
    document: object
    score: float


class SimilarityResult(NamedTuple):
    reference_id: str
    rows: List[ScoredDocument]
    candidates: int
    top_tags: list

    @property
    def documents(self):
        return [r.document for r in self.rows]


def shares_min_tags(doc, reference_tags, min_shared):
    if not min_shared:
        return True
    c = 0
    for t in doc.tags:
        if t in reference_tags:
            c += 1
            if c >= min_shared:
                return True
    return False


def ids_sharing_tags(reference_tags, tag_to_ids: dict, min_shared):
    """Ids sharing at least `min_shared` tags, counted over the inverted index."""
    hits = defaultdict(int)
    for t in reference_tags:
        for doc_id in tag_to_ids.get(t, ()):
            hits[doc_id] += 1
    return {doc_id for doc_id, c in hits.items() if c >= min_shared}


def rank_similar(reference, documents: list, engine, options: SimilarityOptions = None,
                 min_shared=0, limit=None, tag_to_ids: dict = None):
    """
    Rank all other documents by combined similarity to `reference`.

    The min-shared-tags prefilter is skipped when tag similarity is off.
    It reads `tag_to_ids` when given and scans the tag sets otherwise;
    either way candidates keep the order of `documents`.
    Sorted by score desc, then name; truncated to `limit` when given.
    """
    opts = options or SimilarityOptions()
    candidates = [d for d in documents if d.id != reference.id]
    if opts.uses_tags and min_shared:
        if tag_to_ids is not None:
            keep = ids_sharing_tags(reference.tag_set, tag_to_ids, min_shared)
            candidates = [d for d in candidates if d.id in keep]
        else:
            candidates = [d for d in candidates if shares_min_tags(d, reference.tag_set, min_shared)]

    scored = []
    for doc in candidates:
        s = engine.combined(reference, doc, opts)
        scored.append(ScoredDocument(doc, s if s == s else 0.0))  # NaN guard

    scored.sort(key=lambda x: (-x.score, x.document.name.casefold()))
    if limit is not None and limit >= 0 and len(scored) > limit:
        scored = scored[:limit]

    top = tag_frequency([r.document for r in scored])[:CLOUD_SIZE]
    return SimilarityResult(reference.id, scored, len(candidates), top)
