import pytest

from cardsearch.engine import build_corpus
from cardsearch.services.query import QueryAPI
from factories import library_payload, scenario_payload


@pytest.fixture
def scenario_corpus():
    return build_corpus(scenario_payload())


@pytest.fixture
def scenario_query(scenario_corpus):
    return QueryAPI(scenario_corpus)


@pytest.fixture
def library_corpus():
    return build_corpus(library_payload())


@pytest.fixture
def library_query(library_corpus):
    return QueryAPI(library_corpus)
