# services/text_index.py
"""
BM25 Text Index
---------------
Sparse BM25 vector per document over notes + description.

- Text surface: notes x2 + description x2 (weighting by repetition).
- Tokens: unigrams + bigrams, stop words excluded (see utils.text.index_tokens).
- DF cutoffs: drop df <= min_df and df / N > max_df_ratio.
- IDF(t) = ln(1 + (N - df + 0.5) / (df + 0.5))
- w(t, d) = IDF(t) * f * (k1 + 1) / (f + k1 * (1 - b + b * len / avgdl))

Built lazily once per corpus and cached on it.
"""

import logging
import math
import time

from cardsearch.utils.text import index_tokens

logger = logging.getLogger(__name__)


def weighted_text(doc):
    notes = doc.creator_notes_text or ""
    desc = doc.description_text or ""
    return (notes + " " + notes + " " + desc + " " + desc).strip()


class TextIndex:
    def __init__(self, k1=1.5, b=0.75, min_df=1, max_df_ratio=0.01):
        self.k1 = k1
        self.b = b
        self.min_df = min_df
        self.max_df_ratio = max_df_ratio
        self.idf = {}
        self.vectors = {}
        self.df = {}
        self.n = 0
        self.avgdl = 0.0
        self.built = False

    @property
    def vocab_size(self):
        return len(self.idf)

    def build(self, documents: list, on_progress=None):
        """
        Two passes: term frequencies + df, then IDF and BM25 weights.
        Documents are visited in corpus order, so floats are reproducible.
        """
        t0 = time.perf_counter()
        if on_progress:
            on_progress(0.76, "Token DF pass")

        df = {}
        docs = []
        total_len = 0
        for doc in documents:
            toks = index_tokens(weighted_text(doc))
            tf = {}
            for t in toks:
                tf[t] = tf.get(t, 0) + 1
            for t in tf:
                df[t] = df.get(t, 0) + 1
            docs.append((doc.id, tf, len(toks)))
            total_len += len(toks)

        if on_progress:
            on_progress(0.82, "Computing text IDF")
        n = max(1, len(docs))
        idf = {}
        for t, dfi in df.items():
            if dfi <= self.min_df:
                continue
            if dfi / n > self.max_df_ratio:
                continue
            idf[t] = math.log(1 + (n - dfi + 0.5) / (dfi + 0.5))

        if on_progress:
            on_progress(0.86, "Building BM25 vectors")
        avgdl = total_len / n
        k1, b = self.k1, self.b
        vectors = {}
        for doc_id, tf, length in docs:
            vec = {}
            for t, f in tf.items():
                itf = idf.get(t)
                if not itf:
                    continue
                denom = f + k1 * (1 - b + b * (length / avgdl))
                vec[t] = itf * (f * (k1 + 1)) / denom
            vectors[doc_id] = vec

        self.df = df
        self.idf = idf
        self.vectors = vectors
        self.n = n
        self.avgdl = avgdl
        self.built = True
        logger.info(
            "Text index built in %.1fms: %d docs, %d terms",
            (time.perf_counter() - t0) * 1000, n, len(idf),
        )
        return self

    def vector(self, doc_id):
        return self.vectors.get(doc_id)


def ensure_text_index(corpus, config=None, rebuild=False, on_progress=None):
    """Build the corpus' text index on first use and cache it on the corpus."""
    if corpus.text_index is not None and corpus.text_index.built and not rebuild:
        return corpus.text_index
    if config is None:
        index = TextIndex()
    else:
        index = TextIndex(
            k1=config.k1, b=config.b,
            min_df=config.text_min_df, max_df_ratio=config.text_max_df_ratio,
        )
    corpus.text_index = index.build(corpus.documents, on_progress=on_progress)
    return corpus.text_index
