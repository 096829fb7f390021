import logging
from typing import List, Optional, Sequence

from . import chain
from .config import Settings, get_settings
from .errors import NotFound, SelfCitation, Unauthorized
from .models import Capability, LedgerEvent, RoyaltyEntry, normalize_principal
from .origin import InMemoryOriginProtocol, OriginProtocol
from .paper_registry import PaperRegistry
from .citation_graph import CitationGraph
from .roles import RoleStore
from .royalty_ledger import RoyaltyLedger
from .store import LedgerStore
from .transfers import InMemoryTransferGateway, TransferGateway

logger = logging.getLogger(__name__)


class ResearchLedger:
    """Paper -> citation -> royalty lifecycle over one transactional store.

    The facade owns no state. It wires the components together, bootstraps
    the owner-admin and the registry's recorder role on a fresh store, and
    adds the authorization rule the components do not enforce themselves:
    only an owner or co-author of the citing paper may cite from it.
    """

    def __init__(
        self,
        store: LedgerStore,
        origin: OriginProtocol,
        transfers: TransferGateway,
        admin: str,
        fee_basis_points: int = 500,
        treasury: Optional[str] = None,
    ):
        self.store = store
        self.origin = origin
        self.transfers = transfers
        for collaborator in (origin, transfers):
            if hasattr(collaborator, "snapshot") and hasattr(collaborator, "restore"):
                store.enlist(collaborator)

        self.roles = RoleStore(store)
        self.registry = PaperRegistry(store, self.roles, origin)
        self.citations = CitationGraph(store, self.roles, self.registry)
        self.royalties = RoyaltyLedger(store, self.roles, origin, transfers)
        self._bootstrap(admin, fee_basis_points, treasury)

    def _bootstrap(self, admin: str, fee_basis_points: int, treasury: Optional[str]) -> None:
        with self.store.transaction() as state:
            if not state.admin:
                state.admin = normalize_principal(admin)
                state.fee_basis_points = fee_basis_points
                state.treasury = normalize_principal(treasury or admin)
                logger.info("Initialized ledger: admin %s, fee %d bps", state.admin, fee_basis_points)
            if not self.roles.has_capability(Capability.CITATION_RECORDER, self.registry.principal):
                self.roles.grant(Capability.CITATION_RECORDER, self.registry.principal, state.admin)

    # Roles

    def grant(self, capability: Capability, principal: str, caller: str) -> None:
        self.roles.grant(capability, principal, caller)

    def revoke(self, capability: Capability, principal: str, caller: str) -> None:
        self.roles.revoke(capability, principal, caller)

    # Papers and citations

    def register_paper(
        self,
        content_hash: str,
        title: str,
        metadata_uri: str,
        keywords: List[str],
        co_authors: List[str],
        caller: str,
    ) -> int:
        return self.registry.register_paper(content_hash, title, metadata_uri, keywords, co_authors, caller)

    def verify_paper(self, paper_id: int, caller: str) -> None:
        self.registry.verify_paper(paper_id, caller)

    def cite_paper(self, citing_paper_id: int, cited_paper_id: int, caller: str) -> int:
        """Cite ``cited_paper_id`` from a paper the caller (co-)authored."""
        with self.store.transaction():
            for paper_id in (citing_paper_id, cited_paper_id):
                if not self.registry.paper_exists(paper_id):
                    raise NotFound(f"paper {paper_id} does not exist")
            if not self.registry.is_co_author(citing_paper_id, caller):
                raise Unauthorized(f"{normalize_principal(caller)} is not an author of paper {citing_paper_id}")
            if citing_paper_id == cited_paper_id:
                raise SelfCitation(f"paper {citing_paper_id} cannot cite itself")
            return self.citations.record_citation(
                citing_paper_id, cited_paper_id, creator=caller, caller=self.registry.principal
            )

    def record_citation(self, citing_paper_id: int, cited_paper_id: int, creator: str, caller: str) -> int:
        return self.citations.record_citation(citing_paper_id, cited_paper_id, creator, caller)

    def verify_citation(self, citation_id: int, caller: str) -> None:
        self.citations.verify_citation(citation_id, caller)

    # Royalties

    def pay_royalty(self, paper_id: int, researcher: str, reason: str, gross_amount: int, payer: str) -> int:
        return self.royalties.pay_royalty(paper_id, researcher, reason, gross_amount, payer)

    def batch_pay_royalties(
        self, entries: Sequence[RoyaltyEntry], payer: str, total_funds: Optional[int] = None
    ) -> List[int]:
        return self.royalties.batch_pay_royalties(entries, payer, total_funds)

    def withdraw_royalties(self, caller: str) -> int:
        return self.royalties.withdraw_royalties(caller)

    def update_fee_basis_points(self, new_value: int, caller: str) -> None:
        self.royalties.update_fee_basis_points(new_value, caller)

    def update_treasury(self, new_principal: str, caller: str) -> None:
        self.royalties.update_treasury(new_principal, caller)

    # Events

    def get_events(self, name: Optional[str] = None) -> List[LedgerEvent]:
        """Committed events, oldest first. Inside a transaction, only the events it emitted so far."""
        events = self.store.state.events
        if name is None:
            return list(events)
        return [event for event in events if event.name == name]


def build_ledger(settings: Optional[Settings] = None) -> ResearchLedger:
    """Wire a ledger from configuration."""
    settings = settings or get_settings()

    if settings.origin_backend == "web3" or settings.transfer_backend == "web3":
        w3 = chain.connect(settings.rpc_url)
    else:
        w3 = None

    if settings.origin_backend == "web3":
        origin: OriginProtocol = chain.build_origin(settings, w3)
    else:
        origin = InMemoryOriginProtocol()

    if settings.transfer_backend == "web3":
        transfers: TransferGateway = chain.build_transfers(settings, w3)
    else:
        transfers = InMemoryTransferGateway()

    return ResearchLedger(
        LedgerStore(settings.data_file),
        origin,
        transfers,
        admin=settings.admin_address,
        fee_basis_points=settings.fee_basis_points,
        treasury=settings.treasury,
    )
