"""End-to-end smoke run against a live server (``python -m paper_ledger``)."""

import json
import os
from typing import Any, Dict

import requests
from eth_account import Account
from eth_account.messages import encode_defunct
from web3 import Web3

from paper_ledger.auth import request_message

BASE_URL = os.environ.get("PAPER_LEDGER_URL", "http://127.0.0.1:8090/")

# Hardhat's first dev key, matching the default admin_address
ADMIN_KEY = os.environ.get(
    "PAPER_LEDGER_ADMIN_KEY", "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"
)


def signed_headers(private_key, method: str, path: str) -> Dict[str, str]:
    account = Account.from_key(private_key)
    message = request_message(method, path)
    signed = Account.sign_message(encode_defunct(text=message), private_key)
    return {
        "x-caller": account.address,
        "x-message": message,
        "x-signature": Web3.to_hex(signed.signature),
    }


class PaperLedgerSmokeTest:
    def __init__(self):
        self.alice = Account.create()
        self.bob = Account.create()
        self.paper_a = None
        self.paper_b = None
        self.citation_id = None

    def post(self, path: str, key, body: Dict[str, Any] = None) -> Dict[str, Any]:
        response = requests.post(f"{BASE_URL}{path}", headers=signed_headers(key, "POST", f"/{path}"), json=body or {})
        result = response.json()
        print(f"POST {path} -> {response.status_code}: {json.dumps(result, indent=2)}")
        response.raise_for_status()
        return result

    def get(self, path: str) -> Dict[str, Any]:
        response = requests.get(f"{BASE_URL}{path}")
        result = response.json()
        print(f"GET {path} -> {response.status_code}: {json.dumps(result, indent=2)}")
        response.raise_for_status()
        return result

    def test_register_papers(self):
        print("\n=== Registering papers ===")
        self.paper_a = self.post("papers", self.alice.key, {
            "content_hash": "bafyalicepaper", "title": "Paper A by Alice",
            "metadata_uri": "ipfs://alice/a", "keywords": ["ledgers"],
        })["paper_id"]
        self.paper_b = self.post("papers", self.bob.key, {
            "content_hash": "bafybobpaper", "title": "Paper B by Bob",
            "metadata_uri": "ipfs://bob/b", "keywords": ["ledgers", "citations"],
        })["paper_id"]
        self.get(f"papers/{self.paper_a}")

    def test_cite_and_verify(self):
        print("\n=== Citing and verifying ===")
        self.citation_id = self.post("papers/cite", self.bob.key, {
            "citing_paper_id": self.paper_b, "cited_paper_id": self.paper_a,
        })["citation_id"]
        self.post(f"citations/verify/{self.citation_id}", ADMIN_KEY)
        self.get(f"citations/{self.citation_id}")
        self.get(f"citations/count/{self.paper_a}")

    def test_royalties(self):
        print("\n=== Paying and withdrawing royalties ===")
        self.post("royalties/pay", self.bob.key, {
            "paper_id": self.paper_a, "researcher": self.alice.address, "reason": "citation", "amount": 10000,
        })
        self.get(f"royalties/balance/{self.alice.address}")
        self.post("royalties/withdraw", self.alice.key)
        self.get(f"royalties/balance/{self.alice.address}")

    def test_stats(self):
        print("\n=== Statistics ===")
        self.get("stats/network")
        self.get("stats/royalties")

    def run_full_test(self):
        try:
            self.test_register_papers()
            self.test_cite_and_verify()
            self.test_royalties()
            self.test_stats()
            print("\n=== Smoke test completed successfully ===")
        except requests.RequestException as e:
            print(f"\nError occurred: {str(e)}")
            if getattr(e, 'response', None) is not None:
                print(f"Response status: {e.response.status_code}")
                print(f"Response content: {e.response.content}")
            raise


if __name__ == "__main__":
    PaperLedgerSmokeTest().run_full_test()
