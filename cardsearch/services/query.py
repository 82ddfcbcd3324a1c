# services/query.py
"""
Query Facade
------------
The API consumed by the rendering layer. Composes:

1. boolean filter + tag-count / rarity ranges
2. free-text search (relevance-ranked)
3. "at least M of a tag bundle" filter
4. field or weighted-score sort (skipped while a search query is active,
   relevance order wins)

All results are plain ordered lists of Documents.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Union

from cardsearch.config import EngineConfig
from cardsearch.errors import UnknownDocumentError
from cardsearch.services.analytics import suggest_tags, tag_frequency
from cardsearch.services.expressions import parse_bool_expr, parse_tag_bundle, parse_weights
from cardsearch.services.ranking import rank_similar, sort_documents
from cardsearch.services.search import normalize_query, search_documents
from cardsearch.services.similarity import SimilarityEngine, SimilarityOptions
from cardsearch.services.text_index import ensure_text_index


@dataclass
class QueryState:
    search: str = ""
    expr: str = ""
    sort_by: str = "score"
    sort_dir: str = "desc"
    weights: str = ""
    bundle: Union[str, List[str]] = ""
    bundle_min: int = 0
    tag_count_min: int = 0
    tag_count_max: Optional[int] = None
    rarity_min: Optional[float] = None
    rarity_max: Optional[float] = None


@dataclass
class QueryResult:
    rows: list
    total: int
    after_boolean: int
    after_bundle: int
    relevance: Dict[str, float] = field(default_factory=dict)
    tag_frequency: list = field(default_factory=list)

    def suggest(self, prefix="", limit=200):
        return suggest_tags(self.tag_frequency, prefix, limit)


def matches_bundle(doc, bundle: set, minimum: int):
    return sum(1 for t in doc.tags if t in bundle) >= minimum


class QueryAPI:
    def __init__(self, corpus, config: EngineConfig = None, text_index_provider=None):
        self.corpus = corpus
        self.config = config or EngineConfig()
        self._text_index_provider = text_index_provider or (
            lambda: ensure_text_index(self.corpus, self.config)
        )
        self.similarity = SimilarityEngine(corpus.idf, self._text_index_provider)

    def ensure_text_index(self):
        return self._text_index_provider()

    def _doc(self, doc_id):
        doc = self.corpus.get(doc_id)
        if doc is None:
            raise UnknownDocumentError(doc_id)
        return doc

    def default_options(self, **overrides) -> SimilarityOptions:
        """Options from the engine config; `None` overrides are ignored. Raises ValueError."""
        cfg = self.config
        fields = dict(
            tag_mode=cfg.tag_mode, text_mode=cfg.text_mode, alpha=cfg.alpha,
            ngram_min=cfg.ngram_min, ngram_max=cfg.ngram_max,
        )
        fields.update((k, v) for k, v in overrides.items() if v is not None)
        return SimilarityOptions(**fields)

    # --- filtering & search -------------------------------------------------

    def filter(self, expr="", tag_count_min=0, tag_count_max=None, rarity_min=None, rarity_max=None):
        """Corpus rows passing the expression and ranges, in corpus order."""
        be = parse_bool_expr(expr)
        out = []
        for doc in self.corpus.documents:
            if not be.evaluate(doc):
                continue
            if doc.tag_count < (tag_count_min or 0):
                continue
            if tag_count_max is not None and doc.tag_count > tag_count_max:
                continue
            if rarity_min is not None and doc.rarity_sum < rarity_min:
                continue
            if rarity_max is not None and doc.rarity_sum > rarity_max:
                continue
            out.append(doc)
        return out

    def search_tokens(self, query):
        return self.corpus.token_index.search(query)

    def search(self, query, documents=None):
        docs = self.corpus.documents if documents is None else documents
        return search_documents(docs, query, self.corpus.token_index)

    def sort(self, documents, by="score", direction="desc", weights_expression=""):
        return sort_documents(documents, by, direction, parse_weights(weights_expression))

    # --- similarity ---------------------------------------------------------

    def tag_similarity(self, a, b, mode="jaccard", weight_tags=True, idf_multiplier=1.0):
        return self.similarity.tag_similarity(a, b, mode, weight_tags, idf_multiplier)

    def text_similarity_by_id(self, id_a, id_b, mode="cosine", ngram_min=1, ngram_max=3):
        a, b = self.corpus.get(id_a), self.corpus.get(id_b)
        if a is None or b is None:
            return 0.0
        return self.similarity.text_similarity(a, b, mode, ngram_min, ngram_max)

    def combined_similarity(self, id_a, id_b, options: SimilarityOptions = None):
        a, b = self.corpus.get(id_a), self.corpus.get(id_b)
        if a is None or b is None:
            return 0.0
        return self.similarity.combined(a, b, options or self.default_options())

    def rank_similar(self, reference_id, options: SimilarityOptions = None, min_shared=0, limit=None):
        reference = self._doc(reference_id)
        if limit is None:
            limit = self.config.similarity_limit
        return rank_similar(
            reference, self.corpus.documents, self.similarity,
            options or self.default_options(), min_shared=min_shared, limit=limit,
            tag_to_ids=self.corpus.tag_to_ids,
        )

    # --- full pipeline ------------------------------------------------------

    def apply(self, state: QueryState = None):
        st = state or QueryState()

        filtered = self.filter(
            st.expr, st.tag_count_min, st.tag_count_max, st.rarity_min, st.rarity_max,
        )

        relevance = {}
        text = normalize_query(st.search)
        if text:
            ranked = self.search(text, filtered)
            rows = [doc for doc, _ in ranked]
            relevance = {doc.id: score for doc, score in ranked}
        else:
            rows = list(filtered)

        bundle = parse_tag_bundle(st.bundle) if isinstance(st.bundle, str) else [
            t.strip().lower() for t in st.bundle if t and t.strip()
        ]
        if bundle and st.bundle_min > 0:
            wanted = set(bundle)
            rows = [d for d in rows if matches_bundle(d, wanted, st.bundle_min)]

        if not text:
            self.sort(rows, st.sort_by, st.sort_dir, st.weights)

        return QueryResult(
            rows=rows,
            total=len(self.corpus.documents),
            after_boolean=len(filtered),
            after_bundle=len(rows),
            relevance=relevance,
            tag_frequency=tag_frequency(rows),
        )
