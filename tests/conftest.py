"""
Pytest fixtures for burn_and_close tests. FakeLedgerClient stands in for the
RPC endpoint: it serves raw 165-byte SPL token account layouts and balances,
and plays back scripted blockhash / simulation / send results.
"""

from __future__ import annotations

import struct
from typing import Dict, List, Optional, Tuple

import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey

import burn_and_close as bc


def token_account_data(mint: Pubkey, owner: Pubkey, amount: int) -> bytes:
    data = bytes(mint) + bytes(owner) + struct.pack("<Q", amount)
    return data + b"\x00" * (bc.TOKEN_ACCOUNT_LEN - len(data))


def make_record(
    *,
    mint: Optional[Pubkey] = None,
    ui_amount: Optional[float] = 0.0,
    amount: int = 0,
    decimals: int = 0,
    lamports: int = 2_039_280,
    owner: Optional[Pubkey] = None,
) -> bc.TokenAccountRecord:
    return bc.TokenAccountRecord(
        address=Pubkey.new_unique(),
        mint=mint or Pubkey.new_unique(),
        owner=owner or Pubkey.new_unique(),
        raw_amount=amount,
        lamports=lamports,
        amount=amount,
        decimals=decimals,
        ui_amount=ui_amount,
    )


class FakeLedgerClient:
    def __init__(self) -> None:
        self.accounts: List[Tuple[Pubkey, int, bytes]] = []
        self.balances: Dict[Pubkey, object] = {}
        self.discovery_error: Optional[Exception] = None
        self.blockhash_results: List[object] = []
        self.simulation_results: List[object] = []
        self.send_results: List[object] = []

        self.simulated: List[object] = []
        self.sent: List[object] = []
        self.calls: List[str] = []

    def add_account(self, mint: Pubkey, owner: Pubkey, amount: int, decimals: int = 6, lamports: int = 2_039_280) -> Pubkey:
        address = Pubkey.new_unique()
        self.accounts.append((address, lamports, token_account_data(mint, owner, amount)))
        ui_amount = amount / (10 ** decimals)
        self.balances[address] = (amount, decimals, ui_amount)
        return address

    @staticmethod
    def _next(script: List[object], default):
        result = script.pop(0) if script else default
        if isinstance(result, Exception):
            raise result
        return result

    def get_token_accounts_by_owner(self, owner):
        self.calls.append("getTokenAccountsByOwner")
        if self.discovery_error is not None:
            raise self.discovery_error
        return list(self.accounts)

    def get_token_account_balance(self, address):
        balance = self.balances[address]
        if isinstance(balance, Exception):
            raise balance
        return balance

    def get_latest_blockhash(self):
        self.calls.append("getLatestBlockhash")
        return self._next(self.blockhash_results, Hash.new_unique())

    def simulate_transaction(self, tx):
        self.calls.append("simulateTransaction")
        self.simulated.append(tx)
        return self._next(self.simulation_results, (None, []))

    def send_and_confirm(self, tx, *, commitment="confirmed", timeout_sec=60):
        self.calls.append("sendTransaction")
        result = self._next(self.send_results, None)
        self.sent.append(tx)
        # Confirmed: every token account touched by the transaction is now closed.
        touched = set(tx.message.account_keys)
        self.accounts = [acc for acc in self.accounts if acc[0] not in touched]
        return result or str(tx.signatures[0])


@pytest.fixture
def wallet() -> Keypair:
    return Keypair()


@pytest.fixture
def client() -> FakeLedgerClient:
    return FakeLedgerClient()
