# services/search.py
"""
Search service
---------------
Free-text search over the corpus with additive relevance scoring.
No boolean filtering and no field sorting here.
"""

# weights (name match highest, token membership next, body substring lowest)
W_NAME = 0.45
W_TOKENS = 0.35
W_BODY = 0.20


def normalize_query(query: str):
    if not query or not isinstance(query, str):
        return ""
    return query.strip().lower()


def relevance_score(doc, text: str, token_hit: bool):
    """
    Additive relevance of one document for a lower-cased query.

    - name:   W_NAME if the query is a substring of the name
    - tokens: W_TOKENS if every query token is in the name/creator index
    - body:   W_BODY if the query is a substring of notes or description
    """
    if not text:
        return 0.0

    score = 0.0
    if text in (doc.name or "").lower():
        score += W_NAME
    if token_hit:
        score += W_TOKENS
    if text in (doc.creator_notes_text or "").lower() or text in (doc.description_text or "").lower():
        score += W_BODY
    return score


def search_documents(documents: list, query: str, token_index):
    """
    Rank documents matching the query.

    Returns:
        list of (document, score) ordered by score desc, then name.
        With an empty query every document is returned with score 0,
        in the given order.
    """
    text = normalize_query(query)
    if not text:
        return [(d, 0.0) for d in documents]

    token_ids = token_index.search(text)
    results = []
    for doc in documents:
        score = relevance_score(doc, text, doc.id in token_ids)

        # discard non-matching documents
        if score <= 0:
            continue
        results.append((doc, round(score, 6)))

    results.sort(key=lambda x: (-x[1], x[0].name.casefold()))
    return results
