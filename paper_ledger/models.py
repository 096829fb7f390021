from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional
from datetime import datetime, timezone
from enum import Enum
from web3 import Web3

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def normalize_principal(principal: Optional[str]) -> str:
    """Wallet addresses are stored in checksum form, anything else verbatim."""
    if principal is None:
        return ""
    principal = principal.strip()
    if Web3.is_address(principal):
        return Web3.to_checksum_address(principal)
    return principal


def is_null_principal(principal: Optional[str]) -> bool:
    return normalize_principal(principal) in ("", ZERO_ADDRESS)


class Capability(str, Enum):
    CITATION_RECORDER = "citation_recorder"
    CITATION_VERIFIER = "citation_verifier"
    PAPER_VERIFIER = "paper_verifier"


class Paper(BaseModel):
    id: int
    content_hash: str
    owner: str
    title: str
    metadata_uri: str = ""
    keywords: List[str] = []
    co_authors: List[str] = []
    citation_count: int = 0
    is_verified: bool = False
    created_at: datetime = Field(default_factory=utc_now)


class Citation(BaseModel):
    id: int
    citing_paper_id: int
    cited_paper_id: int
    creator: str
    is_verified: bool = False
    created_at: datetime = Field(default_factory=utc_now)


class RoyaltyPayment(BaseModel):
    id: int
    paper_id: int
    researcher: str
    amount: int  # net of fee
    gross_amount: int
    fee: int
    payer: str
    reason: str
    created_at: datetime = Field(default_factory=utc_now)


class RoyaltyEntry(BaseModel):
    paper_id: int
    researcher: str
    reason: str
    amount: int


class Withdrawal(BaseModel):
    id: int
    researcher: str
    amount: int
    created_at: datetime = Field(default_factory=utc_now)


class LedgerEvent(BaseModel):
    name: str
    payload: Dict[str, Any] = {}
    created_at: datetime = Field(default_factory=utc_now)


class AuthorizationDecision(BaseModel):
    allowed: bool
    capability: Optional[Capability] = None
    principal: str
    reason: str = ""
