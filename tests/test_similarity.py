"""
Unit tests for tag-set metrics, text metrics and the blended similarity.
"""

import math

import pytest

from cardsearch.models import Document
from cardsearch.services.similarity import (
    TAG_METRICS,
    TEXT_METRICS,
    UNBOUNDED_TAG_METRICS,
    SimilarityEngine,
    SimilarityOptions,
    TagMetric,
    TagWeighting,
    TextMetric,
    blend,
    cosine_sparse,
    jaro_similarity,
    jaro_winkler_similarity,
    lcs_similarity,
    levenshtein_distance,
    levenshtein_similarity,
    longest_common_subsequence,
    semantic_hash,
    semantic_hash_similarity,
)

BOUNDED_SELF_ONE = [
    TagMetric.JACCARD, TagMetric.TANIMOTO, TagMetric.DICE, TagMetric.COSINE,
    TagMetric.OCHIAI, TagMetric.SIMPSON, TagMetric.BRAUN_BLANQUET,
]


def text_doc(doc_id, text, notes=""):
    return Document(id=doc_id, name=doc_id, description_text=text, creator_notes_text=notes)


class TestTagMetrics:
    """Set metrics on the three-document scenario."""

    def setup_method(self):
        self.idf = {"a": math.log(4 / 3) + 1, "b": 1.0, "c": math.log(4 / 3) + 1}
        self.engine = SimilarityEngine(self.idf, lambda: None)
        self.doc1 = Document(id="1", name="Doc1", tags=["a", "b"])
        self.doc2 = Document(id="2", name="Doc2", tags=["b", "c"])
        self.doc3 = Document(id="3", name="Doc3", tags=["a", "b", "c"])

    def sim(self, mode, a, b, **kw):
        return self.engine.tag_similarity(a, b, mode=mode, **kw)

    def test_jaccard_scenario(self):
        assert self.sim("jaccard", self.doc1, self.doc3) == pytest.approx(2 / 3)
        assert self.sim("jaccard", self.doc1, self.doc2) == pytest.approx(1 / 3)
        assert self.sim("tanimoto", self.doc1, self.doc3) == pytest.approx(2 / 3)

    def test_ratio_metrics(self):
        assert self.sim("dice", self.doc1, self.doc3) == pytest.approx(0.8)
        assert self.sim("ochiai", self.doc1, self.doc3) == pytest.approx(2 / math.sqrt(6))
        assert self.sim("simpson", self.doc1, self.doc3) == pytest.approx(1.0)
        assert self.sim("braun-blanquet", self.doc1, self.doc3) == pytest.approx(2 / 3)

    def test_distance_metrics(self):
        assert self.sim("hamming", self.doc1, self.doc3) == pytest.approx(2 / 3)
        assert self.sim("manhattan", self.doc1, self.doc3) == pytest.approx(2 / 3)
        assert self.sim("euclidean", self.doc1, self.doc3) == pytest.approx(1 - 1 / math.sqrt(3))

    def test_hamming_and_manhattan_agree(self):
        pairs = [(self.doc1, self.doc2), (self.doc1, self.doc3), (self.doc2, self.doc3)]
        for a, b in pairs:
            assert self.sim("hamming", a, b) == self.sim("manhattan", a, b)

    def test_overlap_is_idf_boosted(self):
        assert self.sim("overlap", self.doc1, self.doc3) == pytest.approx(2.0)
        boosted = self.sim("overlap", self.doc1, self.doc3, idf_multiplier=2.0)
        assert boosted == pytest.approx(2 + self.idf["a"] + self.idf["b"])
        assert self.sim("overlap", self.doc1, self.doc3, weight_tags=False, idf_multiplier=3.0) == 2.0

    def test_cosine_weighted_and_unweighted(self):
        assert self.sim("cosine", self.doc1, self.doc3, weight_tags=False) == pytest.approx(2 / math.sqrt(6))
        ia = self.idf["a"]
        expected = (ia * ia + 1) / math.sqrt((ia * ia + 1) * (2 * ia * ia + 1))
        assert self.sim("cosine", self.doc1, self.doc3) == pytest.approx(expected)

    def test_none_is_zero(self):
        assert self.sim("none", self.doc1, self.doc3) == 0

    def test_unknown_mode_falls_back_to_cosine(self):
        assert self.sim("bogus", self.doc1, self.doc3) == self.sim("cosine", self.doc1, self.doc3)

    def test_symmetry(self):
        docs = [self.doc1, self.doc2, self.doc3, Document(id="4", tags=["d"])]
        for metric in TagMetric:
            for a in docs:
                for b in docs:
                    assert self.sim(metric, a, b, idf_multiplier=2.5) == pytest.approx(
                        self.sim(metric, b, a, idf_multiplier=2.5)
                    )

    def test_self_similarity_is_one(self):
        for metric in BOUNDED_SELF_ONE:
            for d in (self.doc1, self.doc2, self.doc3):
                assert self.sim(metric, d, d) == pytest.approx(1.0)

    def test_bounded_metrics_stay_in_range(self):
        docs = [self.doc1, self.doc2, self.doc3, Document(id="4", tags=["d"]), Document(id="5")]
        for metric in TagMetric:
            if metric in UNBOUNDED_TAG_METRICS:
                continue
            for a in docs:
                for b in docs:
                    assert 0.0 <= self.sim(metric, a, b) <= 1.0

    def test_empty_sets(self):
        empty = Document(id="e")
        w = TagWeighting({})
        assert TAG_METRICS[TagMetric.JACCARD](empty.tag_set, empty.tag_set, w) == 0.0
        assert TAG_METRICS[TagMetric.HAMMING](empty.tag_set, empty.tag_set, w) == 1.0
        assert TAG_METRICS[TagMetric.EUCLIDEAN](empty.tag_set, empty.tag_set, w) == 1.0
        assert TAG_METRICS[TagMetric.COSINE](empty.tag_set, self.doc1.tag_set, w) == 0.0

    def test_every_metric_is_registered(self):
        assert set(TAG_METRICS) == set(TagMetric)
        assert set(TEXT_METRICS) == set(TextMetric)


class TestStringAlgorithms:
    """Edit distance, Jaro-Winkler, LCS and the semantic hash."""

    def test_levenshtein(self):
        assert levenshtein_distance("kitten", "sitting") == 3
        assert levenshtein_distance("", "abc") == 3
        assert levenshtein_similarity("kitten", "sitting") == pytest.approx(1 - 3 / 7)
        assert levenshtein_similarity("", "") == 1.0

    def test_jaro(self):
        assert jaro_similarity("MARTHA", "MARHTA") == pytest.approx(0.944444, abs=1e-5)
        assert jaro_similarity("DIXON", "DICKSONX") == pytest.approx(0.766667, abs=1e-5)
        assert jaro_similarity("abc", "") == 0.0
        assert jaro_similarity("same", "same") == 1.0

    def test_jaro_winkler(self):
        assert jaro_winkler_similarity("MARTHA", "MARHTA") == pytest.approx(0.961111, abs=1e-5)
        assert jaro_winkler_similarity("DIXON", "DICKSONX") == pytest.approx(0.813333, abs=1e-5)

    def test_jaro_winkler_no_bonus_below_threshold(self):
        a, b = "abcdef", "abzzzz"
        assert jaro_similarity(a, b) < 0.7
        assert jaro_winkler_similarity(a, b) == jaro_similarity(a, b)

    def test_lcs(self):
        assert longest_common_subsequence("ABCBDAB", "BDCABA") == 4
        assert lcs_similarity("ABCBDAB", "BDCABA") == pytest.approx(4 / 7)
        assert lcs_similarity("", "") == 1.0

    def test_semantic_hash_orders_by_frequency(self):
        assert semantic_hash("b a b c b a") == ["b", "a", "c"]
        assert len(semantic_hash(" ".join(f"w{i}" for i in range(50)))) == 32

    def test_semantic_hash_similarity(self):
        assert semantic_hash_similarity("red red blue", "red red blue") == 1.0
        assert semantic_hash_similarity("red red blue", "red red green") == pytest.approx(0.5)
        assert semantic_hash_similarity("", "") == 0.0


class TestTextMetrics:
    """Text similarity dispatch over document text."""

    def setup_method(self):
        self.engine = SimilarityEngine({}, lambda: None)
        self.a = text_doc("a", "red green blue")
        self.b = text_doc("b", "red green yellow")

    def test_cosine_identical(self):
        same = text_doc("c", "red green blue")
        assert self.engine.text_similarity(self.a, same, "cosine-1gram") == pytest.approx(1.0)

    def test_cosine_unigram(self):
        assert self.engine.text_similarity(self.a, self.b, "cosine-1gram") == pytest.approx(2 / 3)

    def test_cosine_default_range(self):
        # 1..3 grams: 6 grams each, 3 shared (red, green, red green)
        assert self.engine.text_similarity(self.a, self.b, "cosine") == pytest.approx(3 / 6)

    def test_jaccard_variants(self):
        assert self.engine.text_similarity(self.a, self.b, "jaccard-text") == pytest.approx(0.5)
        assert self.engine.text_similarity(self.a, self.b, "jaccard-2gram") == pytest.approx(1 / 3)
        assert self.engine.text_similarity(self.a, self.b, "jaccard", ngram_min=1, ngram_max=1) == pytest.approx(0.5)

    def test_dice_and_overlap(self):
        assert self.engine.text_similarity(self.a, self.b, "dice-text") == pytest.approx(2 / 3)
        assert self.engine.text_similarity(self.a, self.b, "overlap-text") == 2.0

    def test_character_metrics_use_joined_text(self):
        s = self.engine.text_similarity(self.a, self.b, "levenshtein")
        assert s == pytest.approx(levenshtein_similarity(self.a.text, self.b.text))
        assert 0 < self.engine.text_similarity(self.a, self.b, "lcs") <= 1
        assert 0 < self.engine.text_similarity(self.a, self.b, "jaro-winkler") <= 1

    def test_empty_text_scores_zero(self):
        empty = text_doc("e", "   ")
        for metric in TextMetric:
            assert self.engine.text_similarity(self.a, empty, metric) == 0.0

    def test_notes_are_part_of_the_text(self):
        a = text_doc("a", "", notes="shared words here")
        b = text_doc("b", "shared words here")
        assert self.engine.text_similarity(a, b, "jaccard-text") == pytest.approx(1.0)


class TestBlend:
    def test_alpha_must_be_a_fraction(self):
        for alpha in (-0.1, 1.5, float("nan")):
            with pytest.raises(ValueError):
                SimilarityOptions(alpha=alpha)
        assert SimilarityOptions(alpha=0).alpha == 0

    def test_blend_rules(self):
        assert blend(1.0, 0.0, 0.6) == pytest.approx(0.6)
        assert blend(0.5, 1.0, 0.25) == pytest.approx(0.875)
        assert blend(0.5, 1.0, 0.25, include_text=False) == 0.5
        assert blend(0.5, 1.0, 0.25, include_tags=False) == 1.0
        assert blend(0.5, 1.0, 0.25, include_tags=False, include_text=False) == 0.0

    def test_combined(self):
        engine = SimilarityEngine({}, lambda: None)
        a = Document(id="a", tags=["x", "y"], description_text="red green blue")
        b = Document(id="b", tags=["x"], description_text="red green yellow")
        opts = SimilarityOptions(tag_mode="jaccard", text_mode="jaccard-text", alpha=0.5)
        assert engine.combined(a, b, opts) == pytest.approx(0.5 * 0.5 + 0.5 * 0.5)
        opts.include_text = False
        assert engine.combined(a, b, opts) == pytest.approx(0.5)


def test_cosine_sparse_handles_missing_vectors():
    assert cosine_sparse(None, {"a": 1}) == 0.0
    assert cosine_sparse({}, {"a": 1}) == 0.0
    assert cosine_sparse({"a": 1.0, "b": 1.0}, {"a": 2.0}) == pytest.approx(1 / math.sqrt(2))
