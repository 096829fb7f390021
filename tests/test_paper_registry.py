import pytest

from paper_ledger.errors import AlreadyVerified, AttestationCallFailed, InvalidAddress, NotFound, Unauthorized

from conftest import ADMIN, ALICE, BOB, CAROL


def test_register_assigns_sequential_ids_and_defaults(ledger, papers, origin):
    paper_a, paper_b = papers
    assert (paper_a, paper_b) == (1, 2)

    paper = ledger.registry.get_paper(paper_a)
    assert paper.owner == ALICE
    assert paper.title == "Ledgers for Science"
    assert paper.metadata_uri == "ipfs://a"
    assert paper.keywords == ["ledgers", "royalties"]
    assert paper.co_authors == [CAROL]
    assert paper.citation_count == 0
    assert paper.is_verified is False

    assert origin.verify_ownership(paper_a, ALICE)
    assert origin.verify_ownership(paper_b, BOB)
    assert not origin.verify_ownership(paper_a, BOB)


def test_author_and_keyword_indexes(ledger, papers):
    paper_a, paper_b = papers
    paper_c = ledger.register_paper("bafy-c", "More Ledgers", "", ["ledgers"], [], ALICE)

    assert ledger.registry.get_papers_by_author(ALICE) == [paper_a, paper_c]
    assert ledger.registry.get_papers_by_author(BOB) == [paper_b]
    assert ledger.registry.get_papers_by_author("nobody") == []
    assert ledger.registry.get_papers_by_keyword("ledgers") == [paper_a, paper_c]
    assert ledger.registry.get_papers_by_keyword("citations") == [paper_b]
    assert ledger.registry.get_papers_by_keyword("unknown") == []
    assert [p.id for p in ledger.registry.get_papers()] == [paper_a, paper_b, paper_c]


def test_duplicate_keywords_and_co_authors_are_indexed_once(ledger):
    paper_id = ledger.register_paper("h", "t", "", ["graphs", "graphs", " graphs "], [BOB, BOB, ALICE], ALICE)
    assert ledger.registry.get_paper_keywords(paper_id) == ["graphs"]
    # the owner is never listed as their own co-author
    assert ledger.registry.get_paper_co_authors(paper_id) == [BOB]
    assert ledger.registry.get_papers_by_keyword("graphs") == [paper_id]


def test_is_co_author(ledger, papers):
    paper_a, _ = papers
    assert ledger.registry.is_co_author(paper_a, ALICE)
    assert ledger.registry.is_co_author(paper_a, CAROL)
    assert not ledger.registry.is_co_author(paper_a, BOB)
    with pytest.raises(NotFound):
        ledger.registry.is_co_author(99, ALICE)


def test_missing_paper_queries_fail(ledger):
    with pytest.raises(NotFound):
        ledger.registry.get_paper(1)
    with pytest.raises(NotFound):
        ledger.registry.get_paper_keywords(1)


def test_null_co_author_is_rejected(ledger):
    with pytest.raises(InvalidAddress):
        ledger.register_paper("h", "t", "", [], [""], ALICE)
    assert ledger.registry.get_papers() == []


def test_origin_failure_rolls_back_registration(ledger, origin):
    origin.fail_next = "register_asset"
    with pytest.raises(AttestationCallFailed):
        ledger.register_paper("h", "t", "", ["kw"], [], ALICE)

    assert ledger.registry.get_papers() == []
    assert ledger.registry.get_papers_by_author(ALICE) == []
    assert ledger.registry.get_papers_by_keyword("kw") == []
    assert ledger.get_events("PaperRegistered") == []
    # the id counter rolled back as well
    assert ledger.register_paper("h", "t", "", [], [], ALICE) == 1


def test_origin_rejects_already_registered_asset(ledger, origin):
    origin.register_asset(1, BOB)
    with pytest.raises(AttestationCallFailed):
        ledger.register_paper("h", "t", "", [], [], ALICE)
    assert not ledger.registry.paper_exists(1)


def test_verify_paper(ledger, papers, verifier):
    paper_a, _ = papers
    ledger.verify_paper(paper_a, verifier)
    assert ledger.registry.get_paper(paper_a).is_verified

    with pytest.raises(AlreadyVerified):
        ledger.verify_paper(paper_a, verifier)
    assert ledger.registry.get_paper(paper_a).is_verified
    assert len(ledger.get_events("PaperVerified")) == 1


def test_verify_paper_requires_capability(ledger, papers):
    paper_a, _ = papers
    with pytest.raises(Unauthorized):
        ledger.verify_paper(paper_a, ALICE)
    assert not ledger.registry.get_paper(paper_a).is_verified


def test_verify_missing_paper(ledger, verifier):
    with pytest.raises(NotFound):
        ledger.verify_paper(42, verifier)


def test_admin_can_verify_without_explicit_grant(ledger, papers):
    ledger.verify_paper(papers[1], ADMIN)
    assert ledger.registry.get_paper(papers[1]).is_verified


def test_citation_count_is_only_updated_by_the_graph(ledger, papers):
    paper_a, _ = papers
    with pytest.raises(Unauthorized):
        ledger.registry.increment_citation_count(paper_a, ALICE)
    assert ledger.registry.get_paper(paper_a).citation_count == 0


def test_returned_records_are_detached_copies(ledger, papers):
    paper = ledger.registry.get_paper(papers[0])
    paper.citation_count = 100
    paper.keywords.append("tampered")
    fresh = ledger.registry.get_paper(papers[0])
    assert fresh.citation_count == 0
    assert "tampered" not in fresh.keywords
