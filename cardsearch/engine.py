# engine.py
"""
Card Search Engine
------------------
Explicit lifecycle around one corpus: create -> ingest -> query -> dispose.

- ingest() accepts exactly one payload; later deliveries are logged and
  ignored, including after a failed first delivery.
- the build and the tag augmentation pass run in batches and hold a busy
  flag; queries issued while busy raise EngineBusyError.
- hooks: on_progress(fraction, message), on_ready(corpus),
  on_select(doc_id).
"""

import logging
import time

from cardsearch.config import EngineConfig
from cardsearch.errors import (
    CardSearchError,
    EngineBusyError,
    EngineNotReadyError,
    UnknownDocumentError,
)
from cardsearch.models import Corpus
from cardsearch.services.augment import augment_documents
from cardsearch.services.index import TagIndex, TokenIndex
from cardsearch.services.query import QueryAPI
from cardsearch.services.text_index import ensure_text_index
from cardsearch.utils.batching import BatchRunner
from cardsearch.utils.loader import normalize_payload

logger = logging.getLogger(__name__)

WAITING = "waiting"
LOADING = "loading"
READY = "ready"
AUGMENTING = "augmenting"
DISPOSED = "disposed"


def build_corpus(payload, config: EngineConfig = None, runner: BatchRunner = None):
    """Normalize a payload and build every index on it. Raises SchemaError."""
    config = config or EngineConfig()
    runner = runner or BatchRunner(batch_size=config.batch_size)
    t0 = time.perf_counter()

    runner.report(0.06, "Checking schema")
    normalized = normalize_payload(payload, runner=runner)

    tag_index = TagIndex().build_index(normalized.documents, runner=runner)
    token_index = TokenIndex().build_index(normalized.documents, runner=runner)

    runner.report(0.72, "Warming caches")
    corpus = Corpus(
        documents=normalized.documents,
        by_id=normalized.by_id,
        tag_universe=normalized.tag_universe,
        tag_frequency=dict(tag_index.tag_frequency),
        tag_to_ids=dict(tag_index.tag_to_ids),
        idf=tag_index.idf,
        token_index=token_index,
        asset_tags=normalized.asset_tags,
        errors=normalized.errors,
    )
    logger.info(
        "Store built in %.1fms: %d rows, %d tags",
        (time.perf_counter() - t0) * 1000, len(corpus.documents), len(corpus.tag_universe),
    )
    return corpus


class CardSearchEngine:
    def __init__(self, config: EngineConfig = None, on_progress=None, on_ready=None,
                 on_select=None, should_cancel=None, yield_hook=None):
        self.config = config or EngineConfig()
        self.on_progress = on_progress
        self.on_ready = on_ready
        self.on_select = on_select
        self.should_cancel = should_cancel
        self.yield_hook = yield_hook
        self.corpus = None
        self.status = WAITING
        self.busy = False
        self._delivered = False
        self._query = None

    def _runner(self):
        return BatchRunner(
            batch_size=self.config.batch_size,
            on_progress=self._progress,
            yield_hook=self.yield_hook,
            should_cancel=self.should_cancel,
        )

    def _progress(self, fraction, message):
        if self.on_progress:
            self.on_progress(fraction, message)

    @property
    def ready(self):
        return self.corpus is not None and not self.busy and self.status != DISPOSED

    def ingest(self, payload):
        """
        Build the corpus from the one payload this engine accepts.

        Returns:
            bool: False when a payload was already delivered
        """
        if self.status == DISPOSED:
            raise CardSearchError("engine disposed")
        if self._delivered:
            logger.debug("Payload already processed; ignoring subsequent delivery")
            return False
        self._delivered = True

        self.status = LOADING
        self.busy = True
        runner = self._runner()
        runner.report(0.05, "Parsing incoming payload")
        try:
            corpus = build_corpus(payload, self.config, runner)
        except CardSearchError as e:
            self.status = f"failed: {e}"
            self._progress(1.0, str(e))
            raise
        finally:
            self.busy = False

        self._publish(corpus)
        runner.report(0.98, "Ready")
        self.status = READY
        if self.on_ready:
            self.on_ready(corpus)
        return True

    def _publish(self, corpus):
        self.corpus = corpus
        self._query = QueryAPI(corpus, self.config, self.ensure_text_index)

    def _require_ready(self):
        if self.busy:
            raise EngineBusyError(f"engine is {self.status}")
        if self.corpus is None or self.status == DISPOSED:
            raise EngineNotReadyError("no corpus ingested")

    @property
    def query(self) -> QueryAPI:
        self._require_ready()
        return self._query

    def ensure_text_index(self, rebuild=False):
        self._require_ready()
        return ensure_text_index(self.corpus, self.config, rebuild=rebuild, on_progress=self._progress)

    def augment_probable_tags(self, ngram_min=None, ngram_max=None, min_score=None,
                              min_evidence=None, max_add=None):
        """
        Exclusive-write pass: infer probable tags and publish a new corpus
        snapshot. Rarity keeps using the IDF table current before the pass.
        The text index is carried over since text does not change.
        """
        self._require_ready()
        cfg = self.config
        old = self.corpus
        self.busy = True
        self.status = AUGMENTING
        runner = self._runner()
        try:
            documents, report = augment_documents(
                old.documents,
                old.idf,
                ngram_min=cfg.augment_ngram_min if ngram_min is None else ngram_min,
                ngram_max=cfg.augment_ngram_max if ngram_max is None else ngram_max,
                min_score=cfg.augment_min_score if min_score is None else min_score,
                min_evidence=cfg.augment_min_evidence if min_evidence is None else min_evidence,
                max_add=cfg.augment_max_add if max_add is None else max_add,
                runner=runner,
            )
            tag_index = TagIndex().build_index(documents, idf=old.idf, runner=runner)
            corpus = Corpus(
                documents=documents,
                by_id={d.id: d for d in documents},
                tag_universe=old.tag_universe,
                tag_frequency=dict(tag_index.tag_frequency),
                tag_to_ids=dict(tag_index.tag_to_ids),
                idf=old.idf,
                token_index=old.token_index,
                asset_tags=old.asset_tags,
                errors=old.errors,
                text_index=old.text_index,
            )
        finally:
            self.busy = False
            self.status = READY

        self._publish(corpus)
        self._progress(1.0, f"Applied ~{report.added_total} probable tags")
        return report

    def request_detail(self, doc_id):
        """Forward a user selection to the host application."""
        self._require_ready()
        if doc_id not in self.corpus.by_id:
            raise UnknownDocumentError(doc_id)
        if self.on_select:
            self.on_select(doc_id)

    def dispose(self):
        self.corpus = None
        self._query = None
        self.on_progress = self.on_ready = self.on_select = None
        self.status = DISPOSED
