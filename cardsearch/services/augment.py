# services/augment.py
"""
Probable-Tag Augmentation
-------------------------
Infers missing tags from n-gram / tag co-occurrence.

Phase 1: for every document, collect its set of n-grams and count
         df(g) and co-occurrence(tag, g) (each tag once per document).
Phase 2: for every document, score each absent tag as
         sum over its n-grams g of P(tag|g) = co-occurrence(tag, g) / df(g)
         and keep tags with score >= min_score backed by >= min_evidence
         distinct n-grams, best `max_add` first.

Both phases run in batches. Documents are never mutated: changed ones are
returned as new records, with rarity computed from the IDF table passed in.
"""

import dataclasses
import logging
import re
from collections import defaultdict
from typing import Dict, List, NamedTuple

from cardsearch.services.index import rarity_sum
from cardsearch.utils.batching import BatchRunner

logger = logging.getLogger(__name__)

_HTML_TAG = re.compile(r"<[^>]+>")
_HTML_ENTITY = re.compile(r"&[a-z0-9#]+;")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")


class AugmentationReport(NamedTuple):
    added_total: int
    documents_changed: int
    added: Dict[str, List[str]]  # doc id -> inferred tags, best first


def augmentation_tokens(text):
    s = _HTML_TAG.sub(" ", text or "").lower()
    s = _HTML_ENTITY.sub(" ", s)
    return _NON_ALNUM.sub(" ", s).split()


def ngram_set(tokens, min_n, max_n):
    out = set()
    for n in range(min_n, max_n + 1):
        for i in range(0, len(tokens) - n + 1):
            out.add(" ".join(tokens[i:i + n]))
    return out


def augment_documents(documents: list, idf: dict, ngram_min=1, ngram_max=3,
                      min_score=0.35, min_evidence=2, max_add=6, runner: BatchRunner = None):
    """
    Returns:
        tuple: (new document list in the same order, AugmentationReport)
    """
    runner = runner or BatchRunner(batch_size=len(documents) or 1)
    total = len(documents)

    ngram_df = defaultdict(int)
    ngram_tags = defaultdict(lambda: defaultdict(int))
    per_doc = [None] * total

    def scan(start, stop):
        for i in range(start, stop):
            doc = documents[i]
            toks = augmentation_tokens(doc.text)
            if not toks:
                continue
            grams = ngram_set(toks, ngram_min, ngram_max)
            per_doc[i] = grams
            doc_tags = set(doc.tags)
            for g in grams:
                ngram_df[g] += 1
                counts = ngram_tags[g]
                for t in doc_tags:
                    counts[t] += 1

    result = list(documents)
    added = {}

    def score(start, stop):
        for i in range(start, stop):
            grams = per_doc[i]
            if not grams:
                continue
            doc = documents[i]
            have = doc.tag_set
            scores = defaultdict(float)
            evidence = defaultdict(int)
            for g in grams:
                df = ngram_df.get(g, 0)
                if df <= 0:
                    continue
                for tag, c in ngram_tags[g].items():
                    if tag in have:
                        continue
                    scores[tag] += c / df
                    evidence[tag] += 1

            picks = [
                (tag, sc) for tag, sc in scores.items()
                if sc >= min_score and evidence[tag] >= min_evidence
            ]
            picks.sort(key=lambda x: (-x[1], x[0]))
            new_tags = [tag for tag, _ in picks[:max_add]]
            if not new_tags:
                continue

            tags = doc.tags + tuple(new_tags)
            result[i] = dataclasses.replace(
                doc,
                tags=tags,
                inferred_tags=doc.inferred_tags | frozenset(new_tags),
                tag_count=len(tags),
                rarity_sum=rarity_sum(tags, idf),
            )
            added[doc.id] = new_tags

    runner.report(0.02, "Preparing")
    runner.run(total, scan, 0.02, 0.50, "Scanning texts")
    runner.run(total, score, 0.50, 0.98, "Scoring & applying")

    added_total = sum(len(v) for v in added.values())
    runner.report(0.99, f"Applied ~{added_total} tags")
    logger.info("Probable tags: %d added across %d documents", added_total, len(added))
    return result, AugmentationReport(added_total, len(added), added)
