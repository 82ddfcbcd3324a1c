"""
Unit tests for field sorting, weighted-score sorting and similarity ranking.
"""

import pytest

from cardsearch.errors import UnknownDocumentError
from cardsearch.services import ranking
from cardsearch.services.ranking import ids_sharing_tags, rank_similar, shares_min_tags, weighted_score
from cardsearch.services.similarity import SimilarityOptions

TAGS_ONLY = SimilarityOptions(tag_mode="jaccard", include_text=False)


def ids(docs):
    return [d.id for d in docs]


class TestSort:
    def rows(self, query):
        return list(query.corpus.documents)

    def test_weighted_score_with_name_tie_break(self, library_query):
        rows = library_query.sort(
            self.rows(library_query), "score", "desc",
            "weight(\"female\") = 2; weight('mage') = 1.5; weight(\"female\")=1",
        )
        assert ids(rows) == ["d1", "d5", "d3", "d4", "d2"]

    def test_weighted_score_ascending(self, library_query):
        rows = library_query.sort(self.rows(library_query), "score", "asc", 'weight("female")=1')
        assert ids(rows) == ["d2", "d4", "d1", "d3", "d5"]

    def test_boolean_field_keeps_ties_in_order(self, library_query):
        rows = library_query.sort(self.rows(library_query), "favorite", "desc")
        assert ids(rows) == ["d1", "d2", "d3", "d4", "d5"]

    def test_numeric_field(self, library_query):
        rows = library_query.sort(self.rows(library_query), "date_added", "asc")
        assert ids(rows) == ["d5", "d2", "d3", "d1", "d4"]

    def test_text_fields(self, library_query):
        rows = library_query.sort(self.rows(library_query), "name", "asc")
        assert ids(rows) == ["d1", "d2", "d3", "d4", "d5"]
        rows = library_query.sort(self.rows(library_query), "creator", "desc")
        assert ids(rows) == ["d5", "d3", "d4", "d1", "d2"]

    def test_sort_is_in_place(self, library_query):
        rows = self.rows(library_query)
        assert library_query.sort(rows, "date_added", "desc") is rows

    def test_weighted_score(self, library_corpus):
        d1 = library_corpus.get("d1")
        assert weighted_score(d1, {"mage": 1.5, "female": 1.0}) == pytest.approx(2.5)
        assert weighted_score(d1, {}) == 0.0


class TestRankSimilar:
    def test_ranked_by_score(self, scenario_query):
        result = scenario_query.rank_similar("doc1", TAGS_ONLY)
        assert result.reference_id == "doc1"
        assert ids(result.documents) == ["doc3", "doc2"]
        assert result.rows[0].score == pytest.approx(2 / 3)
        assert result.rows[1].score == pytest.approx(1 / 3)
        assert result.candidates == 2

    def test_reference_is_excluded(self, scenario_query):
        result = scenario_query.rank_similar("doc3", TAGS_ONLY)
        assert "doc3" not in ids(result.documents)

    def test_min_shared_prefilter(self, scenario_query):
        result = scenario_query.rank_similar("doc1", TAGS_ONLY, min_shared=2)
        assert ids(result.documents) == ["doc3"]
        assert result.candidates == 1

    def test_prefilter_skipped_without_tag_similarity(self, scenario_query):
        opts = SimilarityOptions(include_tags=False, text_mode="jaccard-text")
        result = scenario_query.rank_similar("doc1", opts, min_shared=2)
        assert ids(result.documents) == ["doc2", "doc3"]
        assert all(r.score == 0 for r in result.rows)

        opts = SimilarityOptions(tag_mode="none", include_text=False)
        result = scenario_query.rank_similar("doc1", opts, min_shared=2)
        assert result.candidates == 2

    def test_limit(self, scenario_query):
        result = scenario_query.rank_similar("doc1", TAGS_ONLY, limit=1)
        assert ids(result.documents) == ["doc3"]
        assert result.candidates == 2

    def test_top_tags_come_from_ranked_rows(self, scenario_query):
        result = scenario_query.rank_similar("doc1", TAGS_ONLY)
        assert result.top_tags == [("b", 2), ("c", 2), ("a", 1)]

    def test_unknown_reference(self, scenario_query):
        with pytest.raises(UnknownDocumentError):
            scenario_query.rank_similar("nope")

    def test_default_options(self, library_query):
        result = library_query.rank_similar("d1")
        assert len(result.rows) == 4
        scores = [r.score for r in result.rows]
        assert scores == sorted(scores, reverse=True)


def test_shares_min_tags(scenario_corpus):
    doc2 = scenario_corpus.get("doc2")
    assert shares_min_tags(doc2, {"a", "b"}, 0)
    assert shares_min_tags(doc2, {"a", "b"}, 1)
    assert not shares_min_tags(doc2, {"a", "b"}, 2)


class TestTagPrefilter:
    """The inverted-index prefilter keeps exactly what a tag-set scan keeps."""

    def test_index_matches_scan(self, library_corpus):
        for ref in library_corpus.documents:
            for m in (1, 2, 3):
                kept = ids_sharing_tags(ref.tag_set, library_corpus.tag_to_ids, m)
                scanned = {d.id for d in library_corpus.documents if shares_min_tags(d, ref.tag_set, m)}
                assert kept == scanned

    def test_rank_similar_same_rows_either_way(self, library_query):
        corpus = library_query.corpus
        ref = corpus.get("d1")
        indexed = rank_similar(ref, corpus.documents, library_query.similarity, TAGS_ONLY,
                               min_shared=1, tag_to_ids=corpus.tag_to_ids)
        scanned = rank_similar(ref, corpus.documents, library_query.similarity, TAGS_ONLY, min_shared=1)
        assert ids(indexed.documents) == ids(scanned.documents)
        assert indexed.candidates == scanned.candidates == 3
        assert "d4" not in ids(indexed.documents)

    def test_query_uses_inverted_index(self, library_query, monkeypatch):
        def no_scan(*args):
            raise AssertionError("tag sets scanned")

        monkeypatch.setattr(ranking, "shares_min_tags", no_scan)
        result = library_query.rank_similar("d1", TAGS_ONLY, min_shared=2)
        assert ids(result.documents) == ["d5"]
