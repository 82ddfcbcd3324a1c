# services/similarity.py
"""
Similarity Engine
-----------------
Pairwise document similarity over tag sets, text, or an alpha blend.

Each metric is a pure function registered in a lookup table keyed
by an enum.

Tag metrics work on the two tag sets A and B. All are bounded to [0, 1]
except `overlap`, an additive IDF-boosted count. `hamming` and `manhattan`
give identical results on binary membership vectors; both are kept as
separate entry points.

Text metrics work on notes + description of each document. Most are in
[0, 1]; `overlap-text` is an unbounded shared-word count.
"""

import logging
import math
import re
from dataclasses import dataclass
from enum import Enum
from functools import partial
from typing import Callable, Dict, NamedTuple

from cardsearch.utils.text import text_ngrams

logger = logging.getLogger(__name__)

_ASCII_WORD_SPLIT = re.compile(r"\W+", re.ASCII)
SEMANTIC_HASH_WORDS = 32
WINKLER_PREFIX = 4
WINKLER_THRESHOLD = 0.7
WINKLER_SCALE = 0.1


class TagMetric(str, Enum):
    OVERLAP = "overlap"
    JACCARD = "jaccard"
    TANIMOTO = "tanimoto"
    DICE = "dice"
    OCHIAI = "ochiai"
    SIMPSON = "simpson"
    BRAUN_BLANQUET = "braun-blanquet"
    HAMMING = "hamming"
    MANHATTAN = "manhattan"
    EUCLIDEAN = "euclidean"
    COSINE = "cosine"
    NONE = "none"

    @classmethod
    def parse(cls, value):
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value or "").strip().lower())
        except ValueError:
            logger.warning("Unknown tag metric %r; using cosine", value)
            return cls.COSINE


class TextMetric(str, Enum):
    COSINE = "cosine"
    COSINE_1GRAM = "cosine-1gram"
    COSINE_2GRAM = "cosine-2gram"
    COSINE_3GRAM = "cosine-3gram"
    COSINE_4GRAM = "cosine-4gram"
    BM25 = "bm25"
    JACCARD = "jaccard"
    JACCARD_TEXT = "jaccard-text"
    JACCARD_2GRAM = "jaccard-2gram"
    JACCARD_3GRAM = "jaccard-3gram"
    JACCARD_4GRAM = "jaccard-4gram"
    DICE_TEXT = "dice-text"
    OVERLAP_TEXT = "overlap-text"
    LEVENSHTEIN = "levenshtein"
    JARO_WINKLER = "jaro-winkler"
    LCS = "lcs"
    SEMANTIC_HASH = "semantic-hash"
    NONE = "none"

    @classmethod
    def parse(cls, value):
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value or "").strip().lower())
        except ValueError:
            logger.warning("Unknown text metric %r; using bm25", value)
            return cls.BM25


UNBOUNDED_TAG_METRICS = frozenset([TagMetric.OVERLAP])


class TagWeighting(NamedTuple):
    idf: Dict[str, float]
    weight_tags: bool = True
    idf_multiplier: float = 1.0


@dataclass
class SimilarityOptions:
    tag_mode: str = "cosine"
    text_mode: str = "cosine"
    weight_tags: bool = True
    include_tags: bool = True
    include_text: bool = True
    alpha: float = 0.6
    idf_multiplier: float = 1.0
    ngram_min: int = 1
    ngram_max: int = 3

    def __post_init__(self):
        if not 0.0 <= self.alpha <= 1.0:
            raise ValueError(f"alpha must be within [0, 1], got {self.alpha!r}")

    @property
    def uses_tags(self):
        return self.include_tags and TagMetric.parse(self.tag_mode) is not TagMetric.NONE


# --- shared math -------------------------------------------------------------

def cosine_sparse(ma, mb):
    """Cosine of two sparse {key: weight} vectors; 0 for missing/empty."""
    if not ma or not mb:
        return 0.0
    na = sum(v * v for v in ma.values())
    nb = sum(v * v for v in mb.values())
    small, big = (ma, mb) if len(ma) < len(mb) else (mb, ma)
    dot = 0.0
    for k, va in small.items():
        vb = big.get(k)
        if vb:
            dot += va * vb
    if not dot or not na or not nb:
        return 0.0
    return dot / math.sqrt(na * nb)


def term_frequencies(tokens):
    tf = {}
    for t in tokens:
        tf[t] = tf.get(t, 0) + 1
    return tf


# --- tag metrics -------------------------------------------------------------

def tag_overlap(a, b, w: TagWeighting):
    s = 0.0
    for t in a & b:
        if w.weight_tags:
            s += 1 + w.idf.get(t, 0.0) * (w.idf_multiplier - 1)
        else:
            s += 1
    return s


def tag_jaccard(a, b, w: TagWeighting):
    union = len(a | b)
    return len(a & b) / union if union else 0.0


def tag_dice(a, b, w: TagWeighting):
    total = len(a) + len(b)
    return 2 * len(a & b) / total if total else 0.0


def tag_ochiai(a, b, w: TagWeighting):
    denom = math.sqrt(len(a) * len(b))
    return len(a & b) / denom if denom else 0.0


def tag_simpson(a, b, w: TagWeighting):
    smallest = min(len(a), len(b))
    return len(a & b) / smallest if smallest else 0.0


def tag_braun_blanquet(a, b, w: TagWeighting):
    largest = max(len(a), len(b))
    return len(a & b) / largest if largest else 0.0


def tag_hamming(a, b, w: TagWeighting):
    union = a | b
    if not union:
        return 1.0
    diff = sum(1 for t in union if (t in a) != (t in b))
    return 1 - diff / len(union)


def tag_manhattan(a, b, w: TagWeighting):
    union = a | b
    if not union:
        return 1.0
    dist = sum(abs(int(t in a) - int(t in b)) for t in union)
    return 1 - dist / len(union)


def tag_euclidean(a, b, w: TagWeighting):
    union = a | b
    if not union:
        return 1.0
    dist = sum((int(t in a) - int(t in b)) ** 2 for t in union)
    return 1 - math.sqrt(dist) / math.sqrt(len(union))


def tag_cosine(a, b, w: TagWeighting):
    if w.weight_tags:
        wa = {t: (w.idf.get(t) or 1.0) for t in a}
        wb = {t: (w.idf.get(t) or 1.0) for t in b}
    else:
        wa = dict.fromkeys(a, 1.0)
        wb = dict.fromkeys(b, 1.0)
    return cosine_sparse(wa, wb)


def tag_none(a, b, w: TagWeighting):
    return 0.0


TAG_METRICS: Dict[TagMetric, Callable] = {
    TagMetric.OVERLAP: tag_overlap,
    TagMetric.JACCARD: tag_jaccard,
    TagMetric.TANIMOTO: tag_jaccard,
    TagMetric.DICE: tag_dice,
    TagMetric.OCHIAI: tag_ochiai,
    TagMetric.SIMPSON: tag_simpson,
    TagMetric.BRAUN_BLANQUET: tag_braun_blanquet,
    TagMetric.HAMMING: tag_hamming,
    TagMetric.MANHATTAN: tag_manhattan,
    TagMetric.EUCLIDEAN: tag_euclidean,
    TagMetric.COSINE: tag_cosine,
    TagMetric.NONE: tag_none,
}


# --- string algorithms -------------------------------------------------------

def levenshtein_distance(a: str, b: str) -> int:
    if len(a) < len(b):
        a, b = b, a
    prev = list(range(len(b) + 1))
    for i in range(1, len(a) + 1):
        cur = [i] + [0] * len(b)
        ca = a[i - 1]
        for j in range(1, len(b) + 1):
            cost = 0 if ca == b[j - 1] else 1
            cur[j] = min(cur[j - 1] + 1, prev[j] + 1, prev[j - 1] + cost)
        prev = cur
    return prev[len(b)]


def levenshtein_similarity(a: str, b: str) -> float:
    max_len = max(len(a), len(b))
    if max_len == 0:
        return 1.0
    return 1 - levenshtein_distance(a, b) / max_len


def jaro_similarity(a: str, b: str) -> float:
    if a == b:
        return 1.0
    len1, len2 = len(a), len(b)
    if len1 == 0 or len2 == 0:
        return 0.0
    window = max(len1, len2) // 2 - 1
    matched1 = [False] * len1
    matched2 = [False] * len2
    matches = 0
    for i in range(len1):
        start = max(0, i - window)
        end = min(i + window + 1, len2)
        for j in range(start, end):
            if matched2[j] or a[i] != b[j]:
                continue
            matched1[i] = matched2[j] = True
            matches += 1
            break
    if matches == 0:
        return 0.0

    transpositions = 0
    k = 0
    for i in range(len1):
        if not matched1[i]:
            continue
        while not matched2[k]:
            k += 1
        if a[i] != b[k]:
            transpositions += 1
        k += 1
    return (matches / len1 + matches / len2 + (matches - transpositions / 2) / matches) / 3


def jaro_winkler_similarity(a: str, b: str) -> float:
    jaro = jaro_similarity(a, b)
    if jaro < WINKLER_THRESHOLD:
        return jaro
    prefix = 0
    for i in range(min(len(a), len(b), WINKLER_PREFIX)):
        if a[i] != b[i]:
            break
        prefix += 1
    return jaro + WINKLER_SCALE * prefix * (1 - jaro)


def longest_common_subsequence(a: str, b: str) -> int:
    prev = [0] * (len(b) + 1)
    for i in range(1, len(a) + 1):
        cur = [0] * (len(b) + 1)
        ca = a[i - 1]
        for j in range(1, len(b) + 1):
            if ca == b[j - 1]:
                cur[j] = prev[j - 1] + 1
            else:
                cur[j] = max(prev[j], cur[j - 1])
        prev = cur
    return prev[len(b)]


def lcs_similarity(a: str, b: str) -> float:
    max_len = max(len(a), len(b))
    if not max_len:
        return 1.0
    return longest_common_subsequence(a, b) / max_len


def semantic_hash(text: str):
    """Top words by frequency; ties keep first-seen order."""
    words = [w for w in _ASCII_WORD_SPLIT.split(text.lower()) if w]
    counts = term_frequencies(words)
    ranked = sorted(counts.items(), key=lambda kv: -kv[1])
    return [w for w, _ in ranked[:SEMANTIC_HASH_WORDS]]


def semantic_hash_similarity(a: str, b: str) -> float:
    ha, hb = semantic_hash(a), semantic_hash(b)
    longest = max(len(ha), len(hb))
    if not longest:
        return 0.0
    matches = sum(1 for x, y in zip(ha, hb) if x == y)
    return matches / longest


# --- text metrics ------------------------------------------------------------

class TextContext(NamedTuple):
    ngram_min: int
    ngram_max: int
    bm25_vector: Callable  # doc_id -> sparse vector or None


def _ngram_range(ctx, fixed):
    return fixed if fixed else (ctx.ngram_min, ctx.ngram_max)


def text_cosine(a, b, ctx, ngram_range=None):
    lo, hi = _ngram_range(ctx, ngram_range)
    return cosine_sparse(
        term_frequencies(text_ngrams(a.text, lo, hi)),
        term_frequencies(text_ngrams(b.text, lo, hi)),
    )


def text_bm25(a, b, ctx):
    return cosine_sparse(ctx.bm25_vector(a.id), ctx.bm25_vector(b.id))


def text_jaccard(a, b, ctx, ngram_range=None):
    lo, hi = _ngram_range(ctx, ngram_range)
    sa = set(text_ngrams(a.text, lo, hi))
    sb = set(text_ngrams(b.text, lo, hi))
    union = len(sa | sb)
    return len(sa & sb) / union if union else 0.0


def text_dice(a, b, ctx):
    sa = set(text_ngrams(a.text, 1, 1))
    sb = set(text_ngrams(b.text, 1, 1))
    total = len(sa) + len(sb)
    return 2 * len(sa & sb) / total if total else 0.0


def text_overlap(a, b, ctx):
    return float(len(set(text_ngrams(a.text, 1, 1)) & set(text_ngrams(b.text, 1, 1))))


def text_levenshtein(a, b, ctx):
    return levenshtein_similarity(a.text, b.text)


def text_jaro_winkler(a, b, ctx):
    return jaro_winkler_similarity(a.text, b.text)


def text_lcs(a, b, ctx):
    return lcs_similarity(a.text, b.text)


def text_semantic_hash(a, b, ctx):
    return semantic_hash_similarity(a.text, b.text)


def text_none(a, b, ctx):
    return 0.0


TEXT_METRICS: Dict[TextMetric, Callable] = {
    TextMetric.COSINE: text_cosine,
    TextMetric.COSINE_1GRAM: partial(text_cosine, ngram_range=(1, 1)),
    TextMetric.COSINE_2GRAM: partial(text_cosine, ngram_range=(1, 2)),
    TextMetric.COSINE_3GRAM: partial(text_cosine, ngram_range=(1, 3)),
    TextMetric.COSINE_4GRAM: partial(text_cosine, ngram_range=(1, 4)),
    TextMetric.BM25: text_bm25,
    TextMetric.JACCARD: text_jaccard,
    TextMetric.JACCARD_TEXT: partial(text_jaccard, ngram_range=(1, 1)),
    TextMetric.JACCARD_2GRAM: partial(text_jaccard, ngram_range=(2, 2)),
    TextMetric.JACCARD_3GRAM: partial(text_jaccard, ngram_range=(3, 3)),
    TextMetric.JACCARD_4GRAM: partial(text_jaccard, ngram_range=(4, 4)),
    TextMetric.DICE_TEXT: text_dice,
    TextMetric.OVERLAP_TEXT: text_overlap,
    TextMetric.LEVENSHTEIN: text_levenshtein,
    TextMetric.JARO_WINKLER: text_jaro_winkler,
    TextMetric.LCS: text_lcs,
    TextMetric.SEMANTIC_HASH: text_semantic_hash,
    TextMetric.NONE: text_none,
}


def blend(tag_sim, text_sim, alpha, include_tags=True, include_text=True):
    if include_tags and include_text:
        return alpha * tag_sim + (1 - alpha) * text_sim
    if include_tags:
        return tag_sim
    if include_text:
        return text_sim
    return 0.0


class SimilarityEngine:
    """Scores document pairs against one corpus' IDF table and text index."""

    def __init__(self, idf: dict, text_index_provider: Callable):
        self.idf = idf
        self._text_index_provider = text_index_provider

    def _bm25_vector(self, doc_id):
        return self._text_index_provider().vector(doc_id)

    def tag_similarity(self, a, b, mode="jaccard", weight_tags=True, idf_multiplier=1.0):
        metric = TagMetric.parse(mode)
        weighting = TagWeighting(self.idf, weight_tags, idf_multiplier)
        return TAG_METRICS[metric](a.tag_set, b.tag_set, weighting)

    def text_similarity(self, a, b, mode="cosine", ngram_min=1, ngram_max=3):
        metric = TextMetric.parse(mode)
        if metric is TextMetric.NONE:
            return 0.0
        if not a.text.strip() or not b.text.strip():
            return 0.0
        ctx = TextContext(ngram_min, ngram_max, self._bm25_vector)
        return TEXT_METRICS[metric](a, b, ctx)

    def combined(self, a, b, options: SimilarityOptions = None):
        opts = options or SimilarityOptions()
        tag_sim = text_sim = 0.0
        if opts.include_tags:
            tag_sim = self.tag_similarity(a, b, opts.tag_mode, opts.weight_tags, opts.idf_multiplier)
        if opts.include_text:
            text_sim = self.text_similarity(a, b, opts.text_mode, opts.ngram_min, opts.ngram_max)
        return blend(tag_sim, text_sim, opts.alpha, opts.include_tags, opts.include_text)
