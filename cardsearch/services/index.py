# services/index.py
"""
Tag & Token Index Service
-------------------------
Inverted indexes over the normalized corpus.

Data Structures:
1. Inverted Tag Index: HashMap<Tag, Set<DocID>>
2. Tag Frequency: HashMap<Tag, Integer> (number of documents carrying the tag)
3. IDF Table: HashMap<Tag, Float>, log((N+1)/(df+1)) + 1
4. Token Index: HashMap<Token, Set<DocID>> over name + creator name

Complexity:
- Index Build: O(N * Avg_Tags)
- Token Query: O(T * P) where P is the smallest posting set.
"""

import math
from collections import defaultdict

from cardsearch.utils.batching import run_batched
from cardsearch.utils.text import name_tokens


def compute_idf(tag_frequency: dict, total_docs: int):
    """Smoothed natural-log IDF. Strictly decreasing in df, and > 0 at df == N."""
    return {
        tag: math.log((total_docs + 1) / (df + 1)) + 1.0
        for tag, df in tag_frequency.items()
    }


def rarity_sum(tags, idf: dict):
    return sum(idf.get(t, 0.0) for t in tags)


class TagIndex:
    def __init__(self):
        self.tag_to_ids = defaultdict(set)
        self.tag_frequency = defaultdict(int)  # df(t)
        self.idf = {}
        self.total_docs = 0

    def build_index(self, documents: list, idf: dict = None, runner=None):
        """
        Count df and fill the inverted index, then derive IDF (unless one is
        supplied) and set tag_count / rarity_sum on every document.
        Both passes run in batches when a runner is given.
        """
        self.tag_to_ids = defaultdict(set)
        self.tag_frequency = defaultdict(int)
        self.total_docs = len(documents)

        def count(start, stop):
            for doc in documents[start:stop]:
                seen_in_doc = set()
                for t in doc.tags:
                    if t in seen_in_doc:
                        continue
                    seen_in_doc.add(t)
                    self.tag_to_ids[t].add(doc.id)
                    self.tag_frequency[t] += 1

        def rarity(start, stop):
            self.apply_rarity(documents[start:stop])

        run_batched(runner, self.total_docs, count, 0.28, 0.44, "Inverted index")
        self.idf = dict(idf) if idf is not None else compute_idf(self.tag_frequency, self.total_docs)
        run_batched(runner, self.total_docs, rarity, 0.44, 0.58, "IDF & rarity")
        return self

    def apply_rarity(self, documents: list):
        for doc in documents:
            doc.tag_count = len(doc.tags)
            doc.rarity_sum = rarity_sum(doc.tags, self.idf)

    def get_idf(self, tag):
        return self.idf.get(tag, 0.0)


class TokenIndex:
    def __init__(self):
        self.token_to_ids = defaultdict(set)
        self.all_ids = []

    def tokenize(self, text):
        return name_tokens(text)

    def build_index(self, documents: list, runner=None):
        self.token_to_ids = defaultdict(set)
        self.all_ids = [d.id for d in documents]

        def step(start, stop):
            for doc in documents[start:stop]:
                toks = set(self.tokenize(doc.name)) | set(self.tokenize(doc.creator_name))
                for t in toks:
                    self.token_to_ids[t].add(doc.id)

        run_batched(runner, len(documents), step, 0.58, 0.72, "String index")
        return self

    def search(self, query):
        """
        AND across query tokens. An empty query means "no filter" and
        returns every id.
        """
        tokens = self.tokenize(query)
        if not tokens:
            return set(self.all_ids)
        current = None
        for t in tokens:
            postings = self.token_to_ids.get(t)
            if not postings:
                return set()
            current = set(postings) if current is None else current & postings
            if not current:
                return set()
        return current
