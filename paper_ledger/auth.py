import logging
import secrets
import time
from threading import Lock
from typing import Dict, Optional, Tuple

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_keys.exceptions import ValidationError as SignatureError
from web3 import Web3

from .models import normalize_principal

logger = logging.getLogger(__name__)


def request_message(method: str, path: str, timestamp: Optional[int] = None, nonce: Optional[str] = None) -> str:
    """The text a caller signs to authorize one request: ``"<METHOD> <path> <unix time> <nonce>"``."""
    if timestamp is None:
        timestamp = int(time.time())
    if nonce is None:
        nonce = secrets.token_hex(8)
    return f"{method.upper()} {path} {timestamp} {nonce}"


def message_matches(message: str, method: str, path: str, max_age_seconds: int, now: Optional[float] = None) -> bool:
    """Whether ``message`` authorizes ``method path`` and its timestamp is still fresh."""
    parts = message.split(" ")
    if len(parts) != 4:
        return False
    signed_method, signed_path, signed_at, _nonce = parts
    try:
        signed_at = int(signed_at)
    except ValueError:
        return False
    if now is None:
        now = time.time()
    return signed_method == method.upper() and signed_path == path and abs(now - signed_at) <= max_age_seconds


class ReplayGuard:
    """Remembers accepted (caller, message) pairs until their timestamps expire."""

    def __init__(self, window_seconds: int):
        self.window_seconds = window_seconds
        self._seen: Dict[Tuple[str, str], float] = {}
        self._lock = Lock()

    def _prune(self, now: float) -> None:
        expired = [key for key, seen_at in self._seen.items() if now - seen_at > self.window_seconds]
        for key in expired:
            del self._seen[key]

    def first_use(self, caller: str, message: str, now: Optional[float] = None) -> bool:
        if now is None:
            now = time.monotonic()
        key = (normalize_principal(caller), message)
        with self._lock:
            self._prune(now)
            if key in self._seen:
                return False
            self._seen[key] = now
            return True


class AuthSystem:
    """Wallet signature helpers; a principal proves itself by signing a message."""

    def generate_key_pair(self) -> Dict[str, str]:
        """Create a fresh wallet (development helper)."""
        acct = Account.create()
        return {
            'address': acct.address,
            'private_key': Web3.to_hex(acct.key),
        }

    def sign_message(self, private_key: str, message: str) -> str:
        """Sign ``message`` with EIP-191 personal_sign semantics."""
        signed = Account.sign_message(encode_defunct(text=message), private_key)
        return Web3.to_hex(signed.signature)

    def recover_address(self, message: str, signature: str) -> str:
        return Account.recover_message(encode_defunct(text=message), signature=signature)

    def verify_signature(self, address: str, message: str, signature: str) -> bool:
        """Check that ``signature`` over ``message`` was produced by ``address``."""
        try:
            recovered = self.recover_address(message, signature)
        except (ValueError, TypeError, SignatureError) as exc:
            logger.debug("Rejected malformed signature for %s: %s", address, exc)
            return False
        return recovered == normalize_principal(address)
