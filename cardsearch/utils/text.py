# utils/text.py
"""
Tokenizers
----------
Three token surfaces are used by the engine:
- name tokens: ASCII [a-z0-9] runs, for the name/creator token index.
- word tokens: Unicode letter/number runs, for text similarity and BM25.
- tag normalization: trimmed, lower-cased tag strings.
"""

import re

_NAME_SPLIT = re.compile(r"[^a-z0-9]+")
_WORD_RUN = re.compile(r"[^\W_]+")

STOPWORDS = frozenset([
    "a", "an", "the", "and", "or", "but", "if", "to", "in", "on", "with", "for", "of", "at",
    "by", "from", "up", "out", "over", "under", "then", "so", "than", "too", "very", "can",
    "will", "just", "is", "are", "was", "were", "be", "been", "being", "have", "has", "had",
    "do", "does", "did", "i", "you", "he", "she", "it", "we", "they", "them", "this", "that",
    "these", "those",
])


def normalize_tag(value):
    if not isinstance(value, str):
        return ""
    return value.strip().lower()


def normalize_tags(values):
    """Normalize a raw tag list, dropping empties and duplicates (first wins)."""
    if not isinstance(values, (list, tuple)):
        return []
    out = []
    seen = set()
    for v in values:
        if v is None:
            continue
        t = str(v).strip().lower()
        if t and t not in seen:
            seen.add(t)
            out.append(t)
    return out


def name_tokens(text):
    if not text:
        return []
    return [t for t in _NAME_SPLIT.split(str(text).lower()) if t]


def word_tokens(text):
    if not text:
        return []
    return _WORD_RUN.findall(str(text).lower())


def ngrams(tokens, min_n=1, max_n=3):
    """All n-grams for n in [min_n, max_n]; duplicates kept for TF."""
    out = []
    for n in range(min_n, max_n + 1):
        for i in range(0, len(tokens) - n + 1):
            out.append(" ".join(tokens[i:i + n]))
    return out


def text_ngrams(text, min_n=1, max_n=3):
    return ngrams(word_tokens(text), min_n, max_n)


def index_tokens(text):
    """Unigrams and bigrams for the BM25 index, stop words excluded.

    A bigram is dropped when either side is a stop word.
    """
    raw = word_tokens(text)
    toks = []
    for i, w1 in enumerate(raw):
        w1_stop = w1 in STOPWORDS
        if not w1_stop:
            toks.append(w1)
        if i + 1 < len(raw):
            w2 = raw[i + 1]
            if not w1_stop and w2 not in STOPWORDS:
                toks.append(w1 + " " + w2)
    return toks
