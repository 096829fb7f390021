"""web3 adapters for the origin service and value transfers.

The origin contract is expected to expose
``registerAsset(uint256 assetId, address creator)``,
``verifyOwnership(uint256 assetId, address owner) returns (bool)`` and
``recordRoyaltyPayment(uint256 assetId, address recipient, uint256 amount)``;
its ABI is read from the Hardhat artifacts directory.
"""

import json
import logging
import os
from typing import Any, Dict, Optional

from eth_account import Account
from web3 import Web3
from web3.exceptions import Web3Exception

from .errors import AttestationCallFailed, TransferFailed
from .origin import OriginProtocol
from .transfers import TransferGateway

logger = logging.getLogger(__name__)

CHAIN_ERRORS = (Web3Exception, ValueError, OSError)


def connect(rpc_url: str) -> Web3:
    w3 = Web3(Web3.HTTPProvider(rpc_url))
    if not w3.is_connected():
        raise ConnectionError(f"could not reach node at {rpc_url}")
    logger.info("Connected to %s, block %s", rpc_url, w3.eth.block_number)
    return w3


def load_contract(w3: Web3, artifacts_dir: str, contract_name: str, address: str):
    """Build a contract handle from a Hardhat artifact ``<name>.sol/<name>.json``."""
    artifact_path = os.path.join(artifacts_dir, f"{contract_name}.sol", f"{contract_name}.json")
    with open(artifact_path, 'r') as f:
        abi = json.load(f)['abi']
    return w3.eth.contract(address=Web3.to_checksum_address(address), abi=abi)


class _Signer:
    def __init__(self, w3: Web3, private_key: str):
        self.w3 = w3
        self.account = Account.from_key(private_key)

    def send(self, tx: Dict[str, Any]):
        tx.setdefault('from', self.account.address)
        tx.setdefault('nonce', self.w3.eth.get_transaction_count(self.account.address))
        tx.setdefault('gasPrice', self.w3.eth.gas_price)
        signed_tx = self.w3.eth.account.sign_transaction(tx, self.account.key)
        tx_hash = self.w3.eth.send_raw_transaction(signed_tx.raw_transaction)
        receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash)
        if receipt.status != 1:
            raise RuntimeError(f"transaction {tx_hash.hex()} reverted")
        return receipt


class Web3OriginProtocol(OriginProtocol):
    def __init__(self, w3: Web3, contract, private_key: str, gas: int = 2000000):
        self.contract = contract
        self.signer = _Signer(w3, private_key)
        self.gas = gas

    def _transact(self, fn, action: str) -> None:
        try:
            tx = fn.build_transaction({
                'from': self.signer.account.address,
                'gas': self.gas,
            })
            receipt = self.signer.send(tx)
        except (RuntimeError,) + CHAIN_ERRORS as exc:
            logger.error("Origin %s failed: %s", action, exc)
            raise AttestationCallFailed(f"origin {action} failed: {exc}") from exc
        logger.info("Origin %s mined in tx %s", action, receipt.transactionHash.hex())

    def register_asset(self, asset_id: int, creator: str) -> None:
        self._transact(
            self.contract.functions.registerAsset(asset_id, Web3.to_checksum_address(creator)),
            f"registerAsset({asset_id})",
        )

    def verify_ownership(self, asset_id: int, claimed_owner: str) -> bool:
        if not Web3.is_address(claimed_owner):
            return False
        try:
            return bool(
                self.contract.functions.verifyOwnership(
                    asset_id, Web3.to_checksum_address(claimed_owner)
                ).call()
            )
        except CHAIN_ERRORS as exc:
            logger.error("Origin verifyOwnership(%s) failed: %s", asset_id, exc)
            raise AttestationCallFailed(f"origin verifyOwnership failed: {exc}") from exc

    def record_royalty_payment(self, asset_id: int, recipient: str, amount: int) -> None:
        self._transact(
            self.contract.functions.recordRoyaltyPayment(
                asset_id, Web3.to_checksum_address(recipient), amount
            ),
            f"recordRoyaltyPayment({asset_id})",
        )


class Web3TransferGateway(TransferGateway):
    """Pays out native value (wei) from the operator account."""

    def __init__(self, w3: Web3, private_key: str, gas: int = 21000):
        self.signer = _Signer(w3, private_key)
        self.gas = gas

    def transfer(self, recipient: str, amount: int, memo: str = "") -> None:
        if not Web3.is_address(recipient):
            raise TransferFailed(f"{recipient} is not a wallet address")
        try:
            receipt = self.signer.send({
                'to': Web3.to_checksum_address(recipient),
                'value': amount,
                'gas': self.gas,
            })
        except (RuntimeError,) + CHAIN_ERRORS as exc:
            logger.error("Transfer of %d to %s failed: %s", amount, recipient, exc)
            raise TransferFailed(f"transfer to {recipient} failed: {exc}") from exc
        logger.info("Sent %d wei to %s (%s) in tx %s", amount, recipient, memo, receipt.transactionHash.hex())


def build_origin(settings, w3: Optional[Web3] = None) -> Web3OriginProtocol:
    if not settings.origin_contract_address or not settings.operator_private_key:
        raise ValueError("web3 origin backend needs origin_contract_address and operator_private_key")
    w3 = w3 or connect(settings.rpc_url)
    contract = load_contract(
        w3, settings.artifacts_dir, settings.origin_contract_name, settings.origin_contract_address
    )
    return Web3OriginProtocol(w3, contract, settings.operator_private_key)


def build_transfers(settings, w3: Optional[Web3] = None) -> Web3TransferGateway:
    if not settings.operator_private_key:
        raise ValueError("web3 transfer backend needs operator_private_key")
    w3 = w3 or connect(settings.rpc_url)
    return Web3TransferGateway(w3, settings.operator_private_key)
