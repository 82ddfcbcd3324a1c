# services/analytics.py
"""
Analytics service
-----------------
Tag statistics over whatever rows the user is looking at, plus
corpus-level overview numbers.
"""

from collections import defaultdict


def tag_frequency(documents: list):
    """
    Count each tag once per document.

    Returns:
        list of (tag, count) sorted by count desc, then tag asc
    """
    freq = defaultdict(int)
    for doc in documents:
        for t in set(doc.tags):
            freq[t] += 1
    return sorted(freq.items(), key=lambda x: (-x[1], x[0]))


def suggest_tags(frequency: list, prefix: str = "", limit: int = 200):
    """Prefix filter over a tag frequency list, most frequent first."""
    p = (prefix or "").strip().lower()
    out = []
    for tag, _count in frequency:
        if p and not tag.startswith(p):
            continue
        out.append(tag)
        if len(out) >= limit:
            break
    return out


def overview_stats(corpus):
    """
    High-level corpus statistics.

    Returns:
        dict with document, tag and inferred-tag counts
    """
    used_tags = set()
    favorites = 0
    inferred = 0
    for doc in corpus.documents:
        used_tags.update(doc.tags)
        inferred += len(doc.inferred_tags)
        if doc.favorite:
            favorites += 1

    text_index = corpus.text_index
    return {
        "total_documents": len(corpus.documents),
        "tag_universe": len(corpus.tag_universe),
        "used_tags": len(used_tags),
        "favorites": favorites,
        "inferred_tags": inferred,
        "normalization_errors": len(corpus.errors),
        "text_index_built": bool(text_index and text_index.built),
        "text_vocab_size": text_index.vocab_size if text_index else 0,
    }
