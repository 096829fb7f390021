import logging
from typing import List

from .errors import AlreadyGranted, InvalidAddress, NotGranted, Unauthorized
from .models import AuthorizationDecision, Capability, is_null_principal, normalize_principal
from .store import LedgerStore

logger = logging.getLogger(__name__)


class RoleStore:
    """Capability assignments; the owner-admin implicitly holds every capability."""

    def __init__(self, store: LedgerStore):
        self._store = store

    @property
    def admin(self) -> str:
        return self._store.state.admin

    def is_admin(self, principal: str) -> bool:
        admin = self._store.state.admin
        return bool(admin) and normalize_principal(principal) == admin

    def check(self, capability: Capability, principal: str) -> AuthorizationDecision:
        principal = normalize_principal(principal)
        state = self._store.state
        if state.admin and principal == state.admin:
            return AuthorizationDecision(allowed=True, capability=capability, principal=principal, reason="admin")
        if state.roles.get(capability.value, {}).get(principal, False):
            return AuthorizationDecision(allowed=True, capability=capability, principal=principal, reason="granted")
        return AuthorizationDecision(
            allowed=False,
            capability=capability,
            principal=principal,
            reason=f"{principal or '<anonymous>'} lacks {capability.value}",
        )

    def has_capability(self, capability: Capability, principal: str) -> bool:
        return self.check(capability, principal).allowed

    def require(self, capability: Capability, principal: str) -> None:
        decision = self.check(capability, principal)
        if not decision.allowed:
            raise Unauthorized(decision.reason)

    def require_admin(self, caller: str) -> None:
        if not self.is_admin(caller):
            raise Unauthorized(f"{normalize_principal(caller) or '<anonymous>'} is not the owner-admin")

    def grant(self, capability: Capability, principal: str, caller: str) -> None:
        with self._store.transaction() as state:
            self.require_admin(caller)
            if is_null_principal(principal):
                raise InvalidAddress("cannot grant a capability to the null principal")
            principal = normalize_principal(principal)
            holders = state.roles.setdefault(capability.value, {})
            if holders.get(principal, False):
                raise AlreadyGranted(f"{principal} already holds {capability.value}")
            holders[principal] = True
            state.emit("RoleGranted", capability=capability.value, principal=principal)
        logger.info("Granted %s to %s", capability.value, principal)

    def revoke(self, capability: Capability, principal: str, caller: str) -> None:
        with self._store.transaction() as state:
            self.require_admin(caller)
            principal = normalize_principal(principal)
            holders = state.roles.get(capability.value, {})
            if not holders.get(principal, False):
                raise NotGranted(f"{principal} does not hold {capability.value}")
            del holders[principal]
            state.emit("RoleRevoked", capability=capability.value, principal=principal)
        logger.info("Revoked %s from %s", capability.value, principal)

    def members(self, capability: Capability) -> List[str]:
        holders = self._store.state.roles.get(capability.value, {})
        return [principal for principal, granted in holders.items() if granted]
