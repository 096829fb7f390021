import pytest

from paper_ledger.errors import AlreadyVerified, NotFound, SelfCitation, Unauthorized
from paper_ledger.models import Capability
from paper_ledger.store import LedgerStore

from conftest import ADMIN, ALICE, BOB, CAROL

INDEXER = "indexer"


@pytest.fixture
def recorder(ledger):
    ledger.grant(Capability.CITATION_RECORDER, INDEXER, ADMIN)
    return INDEXER


def test_record_citation_requires_recorder_capability(ledger, papers):
    paper_a, paper_b = papers
    with pytest.raises(Unauthorized):
        ledger.record_citation(paper_b, paper_a, BOB, BOB)

    assert ledger.citations.get_citations_of(paper_a) == []
    assert ledger.citations.get_references_of(paper_b) == []
    assert ledger.registry.get_paper(paper_a).citation_count == 0


def test_record_citation(ledger, papers, recorder):
    paper_a, paper_b = papers
    citation_id = ledger.record_citation(paper_b, paper_a, BOB, recorder)
    assert citation_id == 1

    citation = ledger.citations.get_citation_details(citation_id)
    assert citation.citing_paper_id == paper_b
    assert citation.cited_paper_id == paper_a
    assert citation.creator == BOB
    assert citation.is_verified is False

    assert ledger.citations.get_citations_of(paper_a) == [citation_id]
    assert ledger.citations.get_references_of(paper_b) == [citation_id]
    assert ledger.citations.get_citations_of(paper_b) == []
    assert ledger.citations.get_citation_count(paper_a) == 1
    assert ledger.registry.get_paper(paper_a).citation_count == 1
    assert ledger.registry.get_paper(paper_b).citation_count == 0


def test_self_citation_is_rejected(ledger, papers, recorder):
    paper_a, _ = papers
    with pytest.raises(SelfCitation):
        ledger.record_citation(paper_a, paper_a, ALICE, recorder)
    assert ledger.citations.get_citations_of(paper_a) == []
    assert ledger.registry.get_paper(paper_a).citation_count == 0


@pytest.mark.parametrize("citing, cited", [(1, 99), (99, 1)])
def test_citation_to_missing_paper(ledger, papers, recorder, citing, cited):
    with pytest.raises(NotFound):
        ledger.record_citation(citing, cited, ALICE, recorder)
    assert ledger.get_events("CitationRecorded") == []
    # no id was consumed by the failed attempt
    assert ledger.record_citation(2, 1, BOB, recorder) == 1


def test_citations_are_listed_in_creation_order(ledger, recorder):
    ids = [ledger.register_paper(f"h{i}", f"paper {i}", "", [], [], ALICE) for i in range(4)]
    target = ids[0]
    created = [ledger.record_citation(citing, target, ALICE, recorder) for citing in (ids[3], ids[1], ids[2])]
    assert ledger.citations.get_citations_of(target) == created
    # the same pair may be cited more than once
    again = ledger.record_citation(ids[3], target, ALICE, recorder)
    assert ledger.citations.get_citations_of(target) == created + [again]
    assert ledger.citations.get_references_of(ids[3]) == [created[0], again]
    assert ledger.registry.get_paper(target).citation_count == 4


def test_verify_citation(ledger, papers, recorder, verifier):
    paper_a, paper_b = papers
    citation_id = ledger.record_citation(paper_b, paper_a, BOB, recorder)

    with pytest.raises(Unauthorized):
        ledger.verify_citation(citation_id, ALICE)
    assert ledger.citations.get_verified_citation_count(paper_a) == 0

    ledger.verify_citation(citation_id, verifier)
    assert ledger.citations.get_citation_details(citation_id).is_verified
    assert ledger.citations.get_verified_citation_count(paper_a) == 1

    with pytest.raises(AlreadyVerified):
        ledger.verify_citation(citation_id, verifier)


def test_verify_missing_citation(ledger, verifier):
    with pytest.raises(NotFound):
        ledger.verify_citation(7, verifier)
    with pytest.raises(NotFound):
        ledger.citations.get_citation_details(7)


def test_verified_count_filters_unverified(ledger, recorder, verifier):
    target = ledger.register_paper("t", "target", "", [], [], ALICE)
    citers = [ledger.register_paper(f"c{i}", "citer", "", [], [], BOB) for i in range(3)]
    citation_ids = [ledger.record_citation(c, target, BOB, recorder) for c in citers]
    ledger.verify_citation(citation_ids[1], verifier)

    assert ledger.citations.get_citation_count(target) == 3
    assert ledger.citations.get_verified_citation_count(target) == 1


def test_queries_for_unknown_paper_are_empty(ledger):
    assert ledger.citations.get_citations_of(5) == []
    assert ledger.citations.get_references_of(5) == []
    assert ledger.citations.get_citation_count(5) == 0
    assert ledger.citations.get_verified_citation_count(5) == 0


def test_researcher_citation_count(ledger, recorder):
    a1 = ledger.register_paper("a1", "a1", "", [], [], ALICE)
    a2 = ledger.register_paper("a2", "a2", "", [], [], ALICE)
    b1 = ledger.register_paper("b1", "b1", "", [], [], BOB)
    ledger.record_citation(b1, a1, BOB, recorder)
    ledger.record_citation(b1, a2, BOB, recorder)
    ledger.record_citation(a1, b1, ALICE, recorder)

    assert ledger.citations.get_researcher_citation_count(ALICE) == 2
    assert ledger.citations.get_researcher_citation_count(BOB) == 1
    assert ledger.citations.get_researcher_citation_count(CAROL) == 0


def test_network_stats_and_pagerank(ledger, recorder):
    assert ledger.citations.calculate_pagerank() == {}
    empty = ledger.citations.get_network_stats()
    assert empty['total_papers'] == 0 and empty['is_dag'] is True

    hub = ledger.register_paper("hub", "hub", "", [], [], ALICE)
    leaves = [ledger.register_paper(f"l{i}", "leaf", "", [], [], BOB) for i in range(3)]
    for leaf in leaves:
        ledger.record_citation(leaf, hub, BOB, recorder)

    stats = ledger.citations.get_network_stats()
    assert stats['total_papers'] == 4
    assert stats['total_citations'] == 3
    assert stats['verified_citations'] == 0
    assert stats['max_citations'] == 3
    assert stats['average_citations'] == pytest.approx(0.75)
    assert stats['is_dag'] is True
    assert 0.0 < stats['network_density'] <= 1.0

    ranks = ledger.citations.calculate_pagerank()
    assert set(ranks) == {hub, *leaves}
    assert sum(ranks.values()) == pytest.approx(1.0)
    assert all(ranks[hub] > ranks[leaf] for leaf in leaves)


def test_graph_can_be_built_from_a_snapshot(ledger, papers, recorder):
    snapshot = ledger.store.state
    ledger.register_paper("late", "late", "", [], [], CAROL)
    ledger.record_citation(papers[1], papers[0], BOB, recorder)

    graph = ledger.citations.to_networkx(snapshot)
    assert set(graph.nodes) == set(papers)
    assert graph.number_of_edges() == 0
    assert ledger.citations.to_networkx().number_of_nodes() == 3


def test_network_stats_read_the_state_once(ledger, papers, monkeypatch):
    reads = []
    committed = LedgerStore.state

    def counting_state(store):
        reads.append(store)
        return committed.fget(store)

    monkeypatch.setattr(LedgerStore, "state", property(counting_state))
    stats = ledger.citations.get_network_stats()
    assert stats['total_papers'] == 2
    assert len(reads) == 1
