# config.py
"""
Engine configuration
--------------------
Module-level defaults, each overridable from the environment.
EngineConfig snapshots them and is handed to the engine at construction.
"""

import logging
import os
from dataclasses import dataclass


def _env_int(name, default):
    try:
        return int(os.environ.get(name, default))
    except (TypeError, ValueError):
        return default


def _env_float(name, default):
    try:
        return float(os.environ.get(name, default))
    except (TypeError, ValueError):
        return default


# BM25 text index
BM25_K1 = _env_float("CARDSEARCH_BM25_K1", 1.5)
BM25_B = _env_float("CARDSEARCH_BM25_B", 0.75)
TEXT_MIN_DF = _env_int("CARDSEARCH_TEXT_MIN_DF", 1)  # tokens with df <= this are dropped
TEXT_MAX_DF_RATIO = _env_float("CARDSEARCH_TEXT_MAX_DF_RATIO", 0.01)

# Cooperative batching
BATCH_SIZE = _env_int("CARDSEARCH_BATCH_SIZE", 300)

# Probable-tag augmentation
AUGMENT_NGRAM_MIN = _env_int("CARDSEARCH_AUGMENT_NGRAM_MIN", 1)
AUGMENT_NGRAM_MAX = _env_int("CARDSEARCH_AUGMENT_NGRAM_MAX", 3)
AUGMENT_MIN_SCORE = _env_float("CARDSEARCH_AUGMENT_MIN_SCORE", 0.35)
AUGMENT_MIN_EVIDENCE = _env_int("CARDSEARCH_AUGMENT_MIN_EVIDENCE", 2)
AUGMENT_MAX_ADD = _env_int("CARDSEARCH_AUGMENT_MAX_ADD", 6)

# Similarity defaults
SIMILARITY_ALPHA = _env_float("CARDSEARCH_SIMILARITY_ALPHA", 0.6)
SIMILARITY_TAG_MODE = os.environ.get("CARDSEARCH_SIMILARITY_TAG_MODE", "cosine")
SIMILARITY_TEXT_MODE = os.environ.get("CARDSEARCH_SIMILARITY_TEXT_MODE", "cosine")
SIMILARITY_LIMIT = _env_int("CARDSEARCH_SIMILARITY_LIMIT", 500)
NGRAM_MIN = 1
NGRAM_MAX = 3

# HTTP adapter
PORT = _env_int("PORT", 5000)
LOG_LEVEL = os.environ.get("CARDSEARCH_LOG_LEVEL", "INFO")


@dataclass
class EngineConfig:
    k1: float = BM25_K1
    b: float = BM25_B
    text_min_df: int = TEXT_MIN_DF
    text_max_df_ratio: float = TEXT_MAX_DF_RATIO
    batch_size: int = BATCH_SIZE
    augment_ngram_min: int = AUGMENT_NGRAM_MIN
    augment_ngram_max: int = AUGMENT_NGRAM_MAX
    augment_min_score: float = AUGMENT_MIN_SCORE
    augment_min_evidence: int = AUGMENT_MIN_EVIDENCE
    augment_max_add: int = AUGMENT_MAX_ADD
    alpha: float = SIMILARITY_ALPHA
    tag_mode: str = SIMILARITY_TAG_MODE
    text_mode: str = SIMILARITY_TEXT_MODE
    similarity_limit: int = SIMILARITY_LIMIT
    ngram_min: int = NGRAM_MIN
    ngram_max: int = NGRAM_MAX

    def __post_init__(self):
        if self.batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if not 0.0 <= self.alpha <= 1.0:
            raise ValueError("alpha must be within [0, 1]")


def configure_logging(level=None):
    logging.basicConfig(
        level=(level or LOG_LEVEL).upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
