import pytest

from paper_ledger.core import ResearchLedger
from paper_ledger.models import Capability
from paper_ledger.origin import InMemoryOriginProtocol
from paper_ledger.store import LedgerStore
from paper_ledger.transfers import InMemoryTransferGateway

ADMIN = "admin"
TREASURY = "treasury"
ALICE = "alice"
BOB = "bob"
CAROL = "carol"
VERIFIER = "verifier"


@pytest.fixture
def origin():
    return InMemoryOriginProtocol()


@pytest.fixture
def transfers():
    return InMemoryTransferGateway()


@pytest.fixture
def store():
    return LedgerStore()


@pytest.fixture
def ledger(store, origin, transfers):
    return ResearchLedger(store, origin, transfers, admin=ADMIN, fee_basis_points=500, treasury=TREASURY)


@pytest.fixture
def papers(ledger):
    """Paper A owned by alice (carol co-authors), paper B owned by bob."""
    paper_a = ledger.register_paper(
        "bafy-a", "Ledgers for Science", "ipfs://a", ["ledgers", "royalties"], [CAROL], ALICE
    )
    paper_b = ledger.register_paper("bafy-b", "Citations at Scale", "ipfs://b", ["citations"], [], BOB)
    return paper_a, paper_b


@pytest.fixture
def verifier(ledger):
    ledger.grant(Capability.PAPER_VERIFIER, VERIFIER, ADMIN)
    ledger.grant(Capability.CITATION_VERIFIER, VERIFIER, ADMIN)
    return VERIFIER
