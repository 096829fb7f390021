import logging
from typing import List, Optional

from .errors import AlreadyVerified, InvalidAddress, NotFound, Unauthorized
from .models import Capability, Paper, is_null_principal, normalize_principal
from .origin import OriginProtocol
from .roles import RoleStore
from .store import LedgerState, LedgerStore

logger = logging.getLogger(__name__)

PAPER_REGISTRY_PRINCIPAL = "paper-registry"
CITATION_GRAPH_PRINCIPAL = "citation-graph"


def _unique(values: List[str]) -> List[str]:
    seen = set()
    result = []
    for value in values:
        if value not in seen:
            seen.add(value)
            result.append(value)
    return result


class PaperRegistry:
    """Paper records plus the by-author and by-keyword indexes."""

    principal = PAPER_REGISTRY_PRINCIPAL

    def __init__(
        self,
        store: LedgerStore,
        roles: RoleStore,
        origin: OriginProtocol,
        citation_graph_principal: str = CITATION_GRAPH_PRINCIPAL,
    ):
        self._store = store
        self._roles = roles
        self._origin = origin
        self._citation_graph_principal = citation_graph_principal

    def register_paper(
        self,
        content_hash: str,
        title: str,
        metadata_uri: str,
        keywords: List[str],
        co_authors: List[str],
        caller: str,
    ) -> int:
        """Register a paper owned by ``caller`` and attest it with the origin service."""
        if is_null_principal(caller):
            raise InvalidAddress("papers need an owner")
        if any(is_null_principal(c) for c in co_authors):
            raise InvalidAddress("co-author cannot be the null principal")
        owner = normalize_principal(caller)
        keywords = _unique([k.strip() for k in keywords if k.strip()])
        co_authors = _unique([normalize_principal(c) for c in co_authors if normalize_principal(c) != owner])

        with self._store.transaction() as state:
            paper_id = state.next_id("paper_counter")
            state.papers[paper_id] = Paper(
                id=paper_id,
                content_hash=content_hash,
                owner=owner,
                title=title,
                metadata_uri=metadata_uri,
                keywords=keywords,
                co_authors=co_authors,
            )
            state.papers_by_author.setdefault(owner, []).append(paper_id)
            for keyword in keywords:
                state.papers_by_keyword.setdefault(keyword, []).append(paper_id)
            self._origin.register_asset(paper_id, owner)
            state.emit("PaperRegistered", paper_id=paper_id, owner=owner, content_hash=content_hash)

        logger.info("Registered paper %d '%s' for %s", paper_id, title, owner)
        return paper_id

    def verify_paper(self, paper_id: int, caller: str) -> None:
        with self._store.transaction() as state:
            self._roles.require(Capability.PAPER_VERIFIER, caller)
            paper = self._get(state, paper_id)
            if paper.is_verified:
                raise AlreadyVerified(f"paper {paper_id} is already verified")
            paper.is_verified = True
            state.emit("PaperVerified", paper_id=paper_id, verifier=normalize_principal(caller))
        logger.info("Paper %d verified by %s", paper_id, caller)

    def increment_citation_count(self, paper_id: int, caller: str) -> int:
        """Bump the cached citation counter; only the citation graph may call this."""
        with self._store.transaction() as state:
            if caller != self._citation_graph_principal:
                raise Unauthorized("only the citation graph may update citation counts")
            paper = self._get(state, paper_id)
            paper.citation_count += 1
            return paper.citation_count

    # Queries

    @staticmethod
    def _get(state: LedgerState, paper_id: int) -> Paper:
        paper = state.papers.get(paper_id)
        if paper is None:
            raise NotFound(f"paper {paper_id} does not exist")
        return paper

    def paper_exists(self, paper_id: int) -> bool:
        return paper_id in self._store.state.papers

    def get_paper(self, paper_id: int) -> Paper:
        return self._get(self._store.state, paper_id).model_copy(deep=True)

    def get_papers(self) -> List[Paper]:
        return [p.model_copy(deep=True) for p in self._store.state.papers.values()]

    def get_paper_keywords(self, paper_id: int) -> List[str]:
        return list(self._get(self._store.state, paper_id).keywords)

    def get_paper_co_authors(self, paper_id: int) -> List[str]:
        return list(self._get(self._store.state, paper_id).co_authors)

    def get_papers_by_author(self, principal: str) -> List[int]:
        return list(self._store.state.papers_by_author.get(normalize_principal(principal), []))

    def get_papers_by_keyword(self, keyword: str) -> List[int]:
        return list(self._store.state.papers_by_keyword.get(keyword.strip(), []))

    def get_owner(self, paper_id: int) -> str:
        return self._get(self._store.state, paper_id).owner

    def is_co_author(self, paper_id: int, principal: Optional[str]) -> bool:
        paper = self._get(self._store.state, paper_id)
        principal = normalize_principal(principal)
        return principal == paper.owner or principal in paper.co_authors
