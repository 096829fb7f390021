import logging
import networkx as nx
import numpy as np
from typing import Dict, List, Optional

from .errors import AlreadyVerified, NotFound, SelfCitation
from .models import Capability, Citation, normalize_principal
from .paper_registry import CITATION_GRAPH_PRINCIPAL, PaperRegistry
from .roles import RoleStore
from .store import LedgerState, LedgerStore

logger = logging.getLogger(__name__)


class CitationGraph:
    """Citation edges between registered papers, indexed in both directions."""

    principal = CITATION_GRAPH_PRINCIPAL

    def __init__(self, store: LedgerStore, roles: RoleStore, registry: PaperRegistry):
        self._store = store
        self._roles = roles
        self._registry = registry

    def record_citation(self, citing_paper_id: int, cited_paper_id: int, creator: str, caller: str) -> int:
        """Record that ``citing_paper_id`` cites ``cited_paper_id``; caller must be a recorder."""
        with self._store.transaction() as state:
            self._roles.require(Capability.CITATION_RECORDER, caller)
            if citing_paper_id == cited_paper_id:
                raise SelfCitation(f"paper {citing_paper_id} cannot cite itself")
            for paper_id in (citing_paper_id, cited_paper_id):
                if paper_id not in state.papers:
                    raise NotFound(f"paper {paper_id} does not exist")

            citation_id = state.next_id("citation_counter")
            state.citations[citation_id] = Citation(
                id=citation_id,
                citing_paper_id=citing_paper_id,
                cited_paper_id=cited_paper_id,
                creator=normalize_principal(creator),
            )
            state.incoming_citations.setdefault(cited_paper_id, []).append(citation_id)
            state.outgoing_citations.setdefault(citing_paper_id, []).append(citation_id)
            self._registry.increment_citation_count(cited_paper_id, self.principal)
            state.emit(
                "CitationRecorded",
                citation_id=citation_id,
                citing_paper_id=citing_paper_id,
                cited_paper_id=cited_paper_id,
                creator=normalize_principal(creator),
            )

        logger.info("Citation %d: paper %d cites paper %d", citation_id, citing_paper_id, cited_paper_id)
        return citation_id

    def verify_citation(self, citation_id: int, caller: str) -> None:
        with self._store.transaction() as state:
            self._roles.require(Capability.CITATION_VERIFIER, caller)
            citation = self._get(state, citation_id)
            if citation.is_verified:
                raise AlreadyVerified(f"citation {citation_id} is already verified")
            citation.is_verified = True
            state.emit("CitationVerified", citation_id=citation_id, verifier=normalize_principal(caller))
        logger.info("Citation %d verified by %s", citation_id, caller)

    # Queries

    @staticmethod
    def _get(state: LedgerState, citation_id: int) -> Citation:
        citation = state.citations.get(citation_id)
        if citation is None:
            raise NotFound(f"citation {citation_id} does not exist")
        return citation

    def get_citation_details(self, citation_id: int) -> Citation:
        return self._get(self._store.state, citation_id).model_copy()

    def get_citations_of(self, paper_id: int) -> List[int]:
        """Citation ids where ``paper_id`` is cited, oldest first."""
        return list(self._store.state.incoming_citations.get(paper_id, []))

    def get_references_of(self, paper_id: int) -> List[int]:
        """Citation ids where ``paper_id`` is the citing paper, oldest first."""
        return list(self._store.state.outgoing_citations.get(paper_id, []))

    def get_citation_count(self, paper_id: int) -> int:
        return len(self._store.state.incoming_citations.get(paper_id, []))

    def get_verified_citation_count(self, paper_id: int) -> int:
        state = self._store.state
        return sum(
            1 for citation_id in state.incoming_citations.get(paper_id, [])
            if state.citations[citation_id].is_verified
        )

    def get_researcher_citation_count(self, principal: str) -> int:
        """Citations received by all papers the principal owns."""
        state = self._store.state
        paper_ids = state.papers_by_author.get(normalize_principal(principal), [])
        return sum(len(state.incoming_citations.get(paper_id, [])) for paper_id in paper_ids)

    # Network analytics

    def to_networkx(self, state: Optional[LedgerState] = None) -> nx.DiGraph:
        """Paper graph with an edge per citing pair, weighted by citation multiplicity."""
        if state is None:
            state = self._store.state
        graph = nx.DiGraph()
        graph.add_nodes_from(state.papers)
        for citation in state.citations.values():
            u, v = citation.citing_paper_id, citation.cited_paper_id
            if graph.has_edge(u, v):
                graph[u][v]['weight'] += 1
            else:
                graph.add_edge(u, v, weight=1)
        return graph

    def calculate_pagerank(self, damping: float = 0.85, max_iter: int = 100) -> Dict[int, float]:
        graph = self.to_networkx()
        if graph.number_of_nodes() == 0:
            return {}
        return nx.pagerank(graph, alpha=damping, max_iter=max_iter, weight='weight')

    def get_network_stats(self) -> Dict:
        state = self._store.state
        graph = self.to_networkx(state)
        total_papers = len(state.papers)

        citation_counts = [len(state.incoming_citations.get(paper_id, [])) for paper_id in state.papers]
        average_citations = float(np.mean(citation_counts)) if citation_counts else 0.0
        max_citations = int(max(citation_counts)) if citation_counts else 0

        try:
            network_density = float(nx.density(graph))
        except (ZeroDivisionError, nx.NetworkXError):
            network_density = 0.0

        return {
            'total_papers': total_papers,
            'total_citations': len(state.citations),
            'verified_citations': sum(1 for c in state.citations.values() if c.is_verified),
            'average_citations': average_citations,
            'max_citations': max_citations,
            'network_density': network_density,
            'is_dag': nx.is_directed_acyclic_graph(graph) if total_papers > 0 else True,
        }
