"""Origin attestation collaborator.

The ledger only depends on ``OriginProtocol``: register an asset, confirm an
owner, record a royalty payment. ``InMemoryOriginProtocol`` is the test and
development double; it additionally keeps licence metadata and a provenance
history per asset. The network adapter lives in ``chain.py``.
"""

import copy
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from .errors import AttestationCallFailed, Unauthorized
from .models import normalize_principal, utc_now

logger = logging.getLogger(__name__)


class OriginProtocol(ABC):
    @abstractmethod
    def register_asset(self, asset_id: int, creator: str) -> None:
        """Register ``asset_id`` to ``creator``; fails if already registered."""

    @abstractmethod
    def verify_ownership(self, asset_id: int, claimed_owner: str) -> bool:
        ...

    @abstractmethod
    def record_royalty_payment(self, asset_id: int, recipient: str, amount: int) -> None:
        """Fails if ``asset_id`` is unknown."""


class ProvenanceRecord(BaseModel):
    action: str
    actor: str
    detail: str = ""
    created_at: datetime = Field(default_factory=utc_now)


class Asset(BaseModel):
    asset_id: int
    owner: str
    license: str = ""
    royalties_recorded: int = 0
    created_at: datetime = Field(default_factory=utc_now)
    history: List[ProvenanceRecord] = []


class InMemoryOriginProtocol(OriginProtocol):
    def __init__(self):
        self.assets: Dict[int, Asset] = {}
        self.fail_next: Optional[str] = None

    # Transactional participant
    def snapshot(self):
        return copy.deepcopy(self.assets)

    def restore(self, snapshot) -> None:
        self.assets = snapshot

    def _maybe_fail(self, operation: str) -> None:
        if self.fail_next == operation:
            self.fail_next = None
            raise AttestationCallFailed(f"origin service unavailable during {operation}")

    def register_asset(self, asset_id: int, creator: str) -> None:
        self._maybe_fail("register_asset")
        if asset_id in self.assets:
            raise AttestationCallFailed(f"asset {asset_id} already registered")
        creator = normalize_principal(creator)
        asset = Asset(asset_id=asset_id, owner=creator)
        asset.history.append(ProvenanceRecord(action="registered", actor=creator))
        self.assets[asset_id] = asset

    def verify_ownership(self, asset_id: int, claimed_owner: str) -> bool:
        self._maybe_fail("verify_ownership")
        asset = self.assets.get(asset_id)
        return asset is not None and asset.owner == normalize_principal(claimed_owner)

    def record_royalty_payment(self, asset_id: int, recipient: str, amount: int) -> None:
        self._maybe_fail("record_royalty_payment")
        asset = self.assets.get(asset_id)
        if asset is None:
            raise AttestationCallFailed(f"asset {asset_id} is not registered")
        asset.royalties_recorded += amount
        asset.history.append(
            ProvenanceRecord(action="royalty", actor=normalize_principal(recipient), detail=str(amount))
        )

    # Mock-only surface, never called by the ledger core

    def get_asset_details(self, asset_id: int) -> Asset:
        asset = self.assets.get(asset_id)
        if asset is None:
            raise AttestationCallFailed(f"asset {asset_id} is not registered")
        return asset

    def set_license(self, asset_id: int, license_terms: str, caller: str) -> None:
        asset = self.get_asset_details(asset_id)
        caller = normalize_principal(caller)
        if asset.owner != caller:
            raise Unauthorized(f"{caller} does not own asset {asset_id}")
        asset.license = license_terms
        asset.history.append(ProvenanceRecord(action="licensed", actor=caller, detail=license_terms))

    def get_license(self, asset_id: int) -> str:
        return self.get_asset_details(asset_id).license

    def get_history(self, asset_id: int) -> List[ProvenanceRecord]:
        return list(self.get_asset_details(asset_id).history)

    def transfer_ownership(self, asset_id: int, new_owner: str, caller: str) -> None:
        asset = self.get_asset_details(asset_id)
        caller = normalize_principal(caller)
        if asset.owner != caller:
            raise Unauthorized(f"{caller} does not own asset {asset_id}")
        asset.owner = normalize_principal(new_owner)
        asset.history.append(ProvenanceRecord(action="transferred", actor=caller, detail=asset.owner))
        logger.info("Origin asset %s transferred from %s to %s", asset_id, caller, asset.owner)
