#!/usr/bin/env python3
"""Burn leftover balances and close every SPL token account of a wallet,
reclaiming the rent-exempt SOL locked in them.

Flow:
  1) Discover the wallet's token accounts (SPL Token program) and query balances
  2) Build BurnChecked (when there is something to burn) + CloseAccount per account
  3) Pack the instructions into compute-budgeted transactions
  4) Simulate each transaction, then send and wait for `confirmed`

Protected mints (USDC by default) are never burned; their accounts are only
closed, which fails on-chain while they still hold a balance.

Env:
  - RPC_ENDPOINT (or RPC_URL)
  - PRIVATE_KEY (or PK): base58 secret key or solana-keygen JSON array
  - SKIP_USDC, PROTECTED_MINTS, MAX_INSTRUCTIONS,
    COMPUTE_UNIT_PRICE, COMPUTE_UNIT_LIMIT, CONFIRM_TIMEOUT_SEC (optional)
"""

from __future__ import annotations

import argparse
import base64
import enum
import json
import os
import struct
import time
import urllib.error
import urllib.request
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

from dotenv import load_dotenv
from solders.compute_budget import set_compute_unit_limit, set_compute_unit_price
from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.transaction import Transaction


# ---------------- Program IDs / constants ----------------
LAMPORTS_PER_SOL = 1_000_000_000

TOKEN_PROGRAM_ID = Pubkey.from_string("TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")
USDC_MINT = Pubkey.from_string("EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v")

# SPL Token instruction indices
CLOSE_ACCOUNT_IX = 9
BURN_CHECKED_IX = 15

# SPL Token account layout: mint(32) owner(32) amount(u64) ...
TOKEN_ACCOUNT_LEN = 165

DEFAULT_MAX_INSTRUCTIONS = 22
DEFAULT_COMPUTE_UNIT_PRICE = 220_000
DEFAULT_COMPUTE_UNIT_LIMIT = 350_000
DEFAULT_CONFIRM_TIMEOUT_SEC = 60
DEFAULT_BALANCE_WORKERS = 8

EXPLORER_TX_URL = "https://solscan.io/tx/{}"

_COMMITMENT_RANK = {"processed": 0, "confirmed": 1, "finalized": 2}


# ---------------- Errors ----------------
class BurnCloseError(Exception):
    """Base class for errors raised by the burn-and-close pipeline."""


class ConfigError(BurnCloseError):
    """Missing or malformed configuration; the run does not start."""


class DiscoveryError(BurnCloseError):
    """Token account enumeration failed; there is nothing to process."""


class BalanceQueryError(BurnCloseError):
    """Balance of a single account could not be fetched."""


class SimulationFailed(BurnCloseError):
    """Pre-flight simulation reported an error for a batch."""


class SubmissionFailed(BurnCloseError):
    """Blockhash fetch, send or confirmation failed for a batch."""


# ---------------- Data structures ----------------
@dataclass(frozen=True, slots=True)
class TokenAccountRecord:
    address: Pubkey
    mint: Pubkey
    owner: Pubkey
    raw_amount: int
    lamports: int = 0

    # From getTokenAccountBalance; ui_amount is None when the balance is unknown.
    amount: Optional[int] = None
    decimals: Optional[int] = None
    ui_amount: Optional[float] = None
    balance_error: Optional[str] = None

    @property
    def balance_known(self) -> bool:
        return self.ui_amount is not None


@dataclass(slots=True)
class AccountInstructions:
    """Burn (optional) + close for a single account; never split across batches."""

    record: TokenAccountRecord
    instructions: List[Instruction]

    @property
    def burns(self) -> bool:
        return len(self.instructions) > 1


@dataclass(slots=True)
class Batch:
    index: int
    budget: Tuple[Instruction, Instruction]
    instructions: List[Instruction] = field(default_factory=list)
    accounts: List[TokenAccountRecord] = field(default_factory=list)

    @property
    def transaction_instructions(self) -> List[Instruction]:
        return [*self.budget, *self.instructions]

    @property
    def rent_lamports(self) -> int:
        return sum(rec.lamports for rec in self.accounts)


class BatchStatus(str, enum.Enum):
    CONFIRMED = "confirmed"
    SIMULATED = "simulated"
    SIMULATION_FAILED = "simulation_failed"
    SUBMISSION_FAILED = "submission_failed"


@dataclass(slots=True)
class ExecutionOutcome:
    batch_index: int
    status: BatchStatus
    signature: Optional[str] = None
    diagnostic: Optional[str] = None
    rent_lamports: int = 0

    @property
    def ok(self) -> bool:
        return self.status in (BatchStatus.CONFIRMED, BatchStatus.SIMULATED)

    def describe(self) -> str:
        if self.status is BatchStatus.CONFIRMED:
            return f"confirmed: {EXPLORER_TX_URL.format(self.signature)}"
        if self.status is BatchStatus.SIMULATED:
            return "simulation ok (dry run, not sent)"
        return f"{self.status.value}: {self.diagnostic}"


# ---------------- RPC helpers ----------------
def rpc_call(rpc_url: str, method: str, params: list, *, max_retries: int = 5) -> dict:
    """Raw JSON-RPC helper with basic 429/backoff handling."""
    payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}
    data = json.dumps(payload).encode("utf-8")
    req = urllib.request.Request(rpc_url, data=data, headers={"Content-Type": "application/json"})

    last_err: Exception | None = None
    for attempt in range(1, max_retries + 1):
        try:
            with urllib.request.urlopen(req, timeout=30) as resp:
                out = json.loads(resp.read().decode("utf-8"))
        except urllib.error.HTTPError as e:
            last_err = e
            if e.code == 429:
                time.sleep(min(2 * attempt, 10))
                continue
            try:
                body = e.read().decode("utf-8", errors="replace")
            except OSError:
                body = ""
            raise RuntimeError(f"RPC HTTPError {e.code} {e.reason}: {body}") from e
        except (urllib.error.URLError, OSError, ValueError) as e:
            last_err = e
            time.sleep(min(1.25 * attempt, 8))
            continue
        if "error" in out:
            raise RuntimeError(f"RPC error: {out['error']}")
        return out

    raise RuntimeError(f"RPC call failed after retries: {method} (last={last_err})")


def _decode_account_data(data_field) -> bytes:
    if isinstance(data_field, list) and data_field:
        raw = data_field[0]
        if isinstance(raw, str) and raw:
            return base64.b64decode(raw)
        return b""
    if isinstance(data_field, str) and data_field:
        return base64.b64decode(data_field)
    return b""


def decode_token_account(data: bytes) -> Tuple[Pubkey, Pubkey, int]:
    """Return (mint, owner, amount) from a raw SPL Token account."""
    if len(data) < TOKEN_ACCOUNT_LEN:
        raise ValueError(f"token account data too short ({len(data)} bytes)")
    mint = Pubkey.from_bytes(data[0:32])
    owner = Pubkey.from_bytes(data[32:64])
    (amount,) = struct.unpack_from("<Q", data, 64)
    return mint, owner, amount


# ---------------- Ledger client ----------------
class LedgerClient:
    """The handful of RPC calls the pipeline needs, bound to one endpoint."""

    def __init__(self, rpc_url: str, *, commitment: str = "confirmed") -> None:
        self.rpc_url = rpc_url
        self.commitment = commitment

    def get_token_accounts_by_owner(self, owner: Pubkey) -> List[Tuple[Pubkey, int, bytes]]:
        resp = rpc_call(
            self.rpc_url,
            "getTokenAccountsByOwner",
            [
                str(owner),
                {"programId": str(TOKEN_PROGRAM_ID)},
                {"encoding": "base64", "commitment": self.commitment},
            ],
        )
        out: List[Tuple[Pubkey, int, bytes]] = []
        for acc in resp.get("result", {}).get("value", []) or []:
            account = acc.get("account") or {}
            out.append(
                (
                    Pubkey.from_string(acc["pubkey"]),
                    int(account.get("lamports", 0) or 0),
                    _decode_account_data(account.get("data")),
                )
            )
        return out

    def get_token_account_balance(self, address: Pubkey) -> Tuple[int, int, Optional[float]]:
        resp = rpc_call(
            self.rpc_url,
            "getTokenAccountBalance",
            [str(address), {"commitment": self.commitment}],
        )
        value = resp.get("result", {}).get("value")
        if not value:
            raise RuntimeError(f"getTokenAccountBalance returned no value: {resp}")
        ui_amount = value.get("uiAmount")
        if ui_amount is None and value.get("uiAmountString") is not None:
            ui_amount = float(value["uiAmountString"])
        return int(value["amount"]), int(value["decimals"]), ui_amount

    def get_latest_blockhash(self) -> Hash:
        resp = rpc_call(
            self.rpc_url,
            "getLatestBlockhash",
            [{"commitment": self.commitment}],
            max_retries=1,
        )
        bh = resp.get("result", {}).get("value", {}).get("blockhash")
        if not bh:
            raise RuntimeError(f"getLatestBlockhash failed: {resp}")
        return Hash.from_string(str(bh))

    def simulate_transaction(self, tx: Transaction) -> Tuple[object, List[str]]:
        """Return (err, logs); err is None when the simulation succeeded."""
        tx_b64 = base64.b64encode(bytes(tx)).decode("utf-8")
        resp = rpc_call(
            self.rpc_url,
            "simulateTransaction",
            [tx_b64, {"encoding": "base64", "commitment": self.commitment}],
            max_retries=1,
        )
        value = resp.get("result", {}).get("value")
        if value is None:
            raise RuntimeError(f"simulateTransaction returned no value: {resp}")
        return value.get("err"), list(value.get("logs") or [])

    def send_and_confirm(
        self,
        tx: Transaction,
        *,
        commitment: str = "confirmed",
        timeout_sec: int = DEFAULT_CONFIRM_TIMEOUT_SEC,
    ) -> str:
        tx_b64 = base64.b64encode(bytes(tx)).decode("utf-8")
        resp = rpc_call(
            self.rpc_url,
            "sendTransaction",
            [
                tx_b64,
                {"encoding": "base64", "skipPreflight": False, "preflightCommitment": commitment},
            ],
            max_retries=1,
        )
        sig = resp.get("result")
        if not sig:
            raise RuntimeError(f"sendTransaction returned no signature: {resp}")
        self.confirm_signature(str(sig), commitment=commitment, timeout_sec=timeout_sec)
        return str(sig)

    def confirm_signature(
        self,
        sig: str,
        *,
        commitment: str = "confirmed",
        timeout_sec: int = DEFAULT_CONFIRM_TIMEOUT_SEC,
        poll_sec: float = 0.8,
    ) -> None:
        wanted = _COMMITMENT_RANK[commitment]
        deadline = time.time() + timeout_sec
        while time.time() < deadline:
            resp = rpc_call(
                self.rpc_url,
                "getSignatureStatuses",
                [[sig], {"searchTransactionHistory": True}],
                max_retries=1,
            )
            val = (resp.get("result", {}).get("value") or [None])[0]
            if val is None:
                time.sleep(poll_sec)
                continue
            err = val.get("err")
            if err:
                raise RuntimeError(f"Transaction {sig} failed: {err}")
            status = (val.get("confirmationStatus") or "").lower()
            if _COMMITMENT_RANK.get(status, -1) >= wanted:
                return
            time.sleep(poll_sec)
        raise TimeoutError(f"Timed out waiting for confirmation: {sig}")


# ---------------- Account classifier ----------------
def _with_balance(client, rec: TokenAccountRecord) -> TokenAccountRecord:
    try:
        amount, decimals, ui_amount = client.get_token_account_balance(rec.address)
    except Exception as exc:
        err = BalanceQueryError(f"balance query failed for {rec.address}: {exc}")
        print(f"  WARN: {err}; burn skipped, close still attempted")
        return TokenAccountRecord(
            address=rec.address,
            mint=rec.mint,
            owner=rec.owner,
            raw_amount=rec.raw_amount,
            lamports=rec.lamports,
            balance_error=str(err),
        )
    return TokenAccountRecord(
        address=rec.address,
        mint=rec.mint,
        owner=rec.owner,
        raw_amount=rec.raw_amount,
        lamports=rec.lamports,
        amount=amount,
        decimals=decimals,
        ui_amount=ui_amount,
    )


def classify_accounts(
    client,
    owner: Pubkey,
    *,
    workers: int = DEFAULT_BALANCE_WORKERS,
) -> List[TokenAccountRecord]:
    """Discover the owner's token accounts and attach their current balances.

    Raises DiscoveryError if enumeration fails. A failed balance query only
    degrades that account to "balance unknown". Discovery order is preserved.
    """
    try:
        raw_accounts = client.get_token_accounts_by_owner(owner)
    except Exception as exc:
        raise DiscoveryError(f"failed to fetch token accounts for {owner}: {exc}") from exc

    decoded: List[TokenAccountRecord] = []
    for address, lamports, data in raw_accounts:
        try:
            mint, acc_owner, amount = decode_token_account(data)
        except ValueError as exc:
            print(f"  WARN: skipping undecodable account {address}: {exc}")
            continue
        decoded.append(
            TokenAccountRecord(
                address=address,
                mint=mint,
                owner=acc_owner,
                raw_amount=amount,
                lamports=lamports,
            )
        )

    if not decoded:
        return []

    with ThreadPoolExecutor(max_workers=max(1, min(workers, len(decoded)))) as pool:
        return list(pool.map(lambda rec: _with_balance(client, rec), decoded))


# ---------------- Instruction builders ----------------
def build_burn_checked_ix(
    token_account: Pubkey,
    mint: Pubkey,
    authority: Pubkey,
    amount: int,
    decimals: int,
) -> Instruction:
    return Instruction(
        program_id=TOKEN_PROGRAM_ID,
        accounts=[
            AccountMeta(pubkey=token_account, is_signer=False, is_writable=True),
            AccountMeta(pubkey=mint, is_signer=False, is_writable=True),
            AccountMeta(pubkey=authority, is_signer=True, is_writable=False),
        ],
        data=struct.pack("<BQB", BURN_CHECKED_IX, int(amount), int(decimals)),
    )


def build_close_token_account_ix(
    token_account: Pubkey,
    destination: Pubkey,
    authority: Pubkey,
) -> Instruction:
    return Instruction(
        program_id=TOKEN_PROGRAM_ID,
        accounts=[
            AccountMeta(pubkey=token_account, is_signer=False, is_writable=True),
            AccountMeta(pubkey=destination, is_signer=False, is_writable=True),
            AccountMeta(pubkey=authority, is_signer=True, is_writable=False),
        ],
        data=bytes([CLOSE_ACCOUNT_IX]),
    )


def should_burn(rec: TokenAccountRecord, protected_mints: Iterable[Pubkey]) -> bool:
    if rec.ui_amount is None or rec.ui_amount <= 0:
        return False
    return rec.mint not in protected_mints


def build_account_instructions(
    rec: TokenAccountRecord,
    wallet: Pubkey,
    protected_mints: frozenset,
) -> List[Instruction]:
    """[burn, close] or [close]; the burn always comes first."""
    ixs: List[Instruction] = []
    if should_burn(rec, protected_mints):
        ixs.append(build_burn_checked_ix(rec.address, rec.mint, wallet, rec.amount or 0, rec.decimals or 0))
    ixs.append(build_close_token_account_ix(rec.address, destination=wallet, authority=wallet))
    return ixs


def build_instructions(
    records: Sequence[TokenAccountRecord],
    wallet: Pubkey,
    protected_mints: frozenset,
) -> List[AccountInstructions]:
    return [
        AccountInstructions(record=rec, instructions=build_account_instructions(rec, wallet, protected_mints))
        for rec in records
    ]


def flatten(groups: Iterable[AccountInstructions]) -> List[Instruction]:
    return [ix for group in groups for ix in group.instructions]


# ---------------- Batch packer ----------------
def compute_budget_ixs(unit_price: int, unit_limit: int) -> Tuple[Instruction, Instruction]:
    return set_compute_unit_price(int(unit_price)), set_compute_unit_limit(int(unit_limit))


def pack_batches(
    groups: Sequence[AccountInstructions],
    *,
    max_instructions: int = DEFAULT_MAX_INSTRUCTIONS,
    unit_price: int = DEFAULT_COMPUTE_UNIT_PRICE,
    unit_limit: int = DEFAULT_COMPUTE_UNIT_LIMIT,
) -> Iterator[Batch]:
    """Greedily pack account groups into batches of at most max_instructions.

    Order is preserved and a group is never split; a group that does not fit
    in the current batch starts the next one.
    """
    budget = compute_budget_ixs(unit_price, unit_limit)
    current = Batch(index=1, budget=budget)
    for group in groups:
        size = len(group.instructions)
        if size > max_instructions:
            raise ValueError(
                f"account {group.record.address} needs {size} instructions, "
                f"more than max_instructions={max_instructions}"
            )
        if len(current.instructions) + size > max_instructions:
            yield current
            current = Batch(index=current.index + 1, budget=budget)
        current.instructions.extend(group.instructions)
        current.accounts.append(group.record)
    if current.instructions:
        yield current


# ---------------- Transaction executor ----------------
def build_transaction(payer: Keypair, batch: Batch, blockhash: Hash) -> Transaction:
    msg = Message.new_with_blockhash(batch.transaction_instructions, payer.pubkey(), blockhash)
    tx = Transaction.new_unsigned(msg)
    tx.sign([payer], blockhash)
    return tx


def _simulate_and_send(
    client,
    payer: Keypair,
    batch: Batch,
    *,
    dry_run: bool,
    confirm_timeout_sec: int,
) -> Optional[str]:
    try:
        blockhash = client.get_latest_blockhash()
    except Exception as exc:
        raise SubmissionFailed(f"blockhash fetch failed: {exc}") from exc

    tx = build_transaction(payer, batch, blockhash)

    try:
        err, logs = client.simulate_transaction(tx)
    except Exception as exc:
        raise SubmissionFailed(f"simulation call failed: {exc}") from exc
    if err is not None:
        tail = f" (last log: {logs[-1]})" if logs else ""
        raise SimulationFailed(f"simulation error {err}{tail}")

    if dry_run:
        return None

    try:
        return client.send_and_confirm(tx, commitment="confirmed", timeout_sec=confirm_timeout_sec)
    except Exception as exc:
        raise SubmissionFailed(f"send/confirm failed: {exc}") from exc


def execute_batch(
    client,
    payer: Keypair,
    batch: Batch,
    *,
    dry_run: bool = False,
    confirm_timeout_sec: int = DEFAULT_CONFIRM_TIMEOUT_SEC,
) -> ExecutionOutcome:
    """Simulate one batch and, unless it fails or this is a dry run, send it."""
    try:
        sig = _simulate_and_send(
            client, payer, batch, dry_run=dry_run, confirm_timeout_sec=confirm_timeout_sec
        )
    except SimulationFailed as exc:
        return ExecutionOutcome(batch.index, BatchStatus.SIMULATION_FAILED, diagnostic=str(exc))
    except SubmissionFailed as exc:
        return ExecutionOutcome(batch.index, BatchStatus.SUBMISSION_FAILED, diagnostic=str(exc))

    if sig is None:
        return ExecutionOutcome(batch.index, BatchStatus.SIMULATED, rent_lamports=batch.rent_lamports)
    return ExecutionOutcome(batch.index, BatchStatus.CONFIRMED, signature=sig, rent_lamports=batch.rent_lamports)


def execute_batches(
    client,
    payer: Keypair,
    batches: Iterable[Batch],
    *,
    dry_run: bool = False,
    confirm_timeout_sec: int = DEFAULT_CONFIRM_TIMEOUT_SEC,
) -> List[ExecutionOutcome]:
    """Run batches one at a time; a failed batch never stops the rest."""
    outcomes: List[ExecutionOutcome] = []
    for batch in batches:
        print(
            f"batch {batch.index}: {len(batch.instructions)} instructions "
            f"for {len(batch.accounts)} accounts"
        )
        outcome = execute_batch(
            client, payer, batch, dry_run=dry_run, confirm_timeout_sec=confirm_timeout_sec
        )
        prefix = "  " if outcome.ok else "  ERROR: "
        print(f"{prefix}batch {batch.index} {outcome.describe()}")
        outcomes.append(outcome)
    return outcomes


# ---------------- Keypair loading ----------------
_B58_ALPHABET = b"123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
_B58_INDEX = {c: i for i, c in enumerate(_B58_ALPHABET)}


def b58decode(s: str) -> bytes:
    s_bytes = s.encode("ascii")
    n = 0
    for ch in s_bytes:
        try:
            n = n * 58 + _B58_INDEX[ch]
        except KeyError as e:
            raise ValueError(f"Invalid base58 character: {chr(ch)!r}") from e
    out = n.to_bytes((n.bit_length() + 7) // 8, "big") if n else b""
    pad = len(s_bytes) - len(s_bytes.lstrip(_B58_ALPHABET[:1]))
    return b"\x00" * pad + out


def parse_private_key(value: str) -> Keypair:
    """Accept a base58 secret key or a solana-keygen JSON array of 64 ints."""
    text = (value or "").strip()
    if not text:
        raise ConfigError("private key is required (--private-key or PRIVATE_KEY)")
    try:
        if text.startswith("["):
            raw = bytes(int(x) for x in json.loads(text))
        else:
            raw = b58decode(text)
        if len(raw) != 64:
            raise ValueError(f"keypair must be 64 bytes (got {len(raw)})")
        return Keypair.from_bytes(raw)
    except (ValueError, TypeError, UnicodeEncodeError) as exc:
        raise ConfigError(f"invalid private key: {exc}") from exc


# ---------------- Configuration ----------------
_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = (env.get(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw.replace("_", ""))
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer (got {raw!r})") from exc


def _env_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = (env.get(name) or "").strip().lower()
    if not raw:
        return default
    if raw in _TRUE:
        return True
    if raw in _FALSE:
        return False
    raise ConfigError(f"{name} must be true/false (got {raw!r})")


@dataclass(slots=True)
class Config:
    rpc_endpoint: str
    private_key: str
    skip_usdc: bool = True
    extra_protected_mints: List[str] = field(default_factory=list)
    max_instructions: int = DEFAULT_MAX_INSTRUCTIONS
    compute_unit_price: int = DEFAULT_COMPUTE_UNIT_PRICE
    compute_unit_limit: int = DEFAULT_COMPUTE_UNIT_LIMIT
    confirm_timeout_sec: int = DEFAULT_CONFIRM_TIMEOUT_SEC
    balance_workers: int = DEFAULT_BALANCE_WORKERS
    dry_run: bool = False

    def validate(self) -> "Config":
        if not (self.rpc_endpoint or "").strip():
            raise ConfigError("RPC endpoint is required (--rpc-endpoint or RPC_ENDPOINT)")
        if not (self.private_key or "").strip():
            raise ConfigError("private key is required (--private-key or PRIVATE_KEY)")
        if self.max_instructions < 2:
            raise ConfigError("max instructions must be at least 2 (one burn + close pair)")
        if self.compute_unit_price < 0:
            raise ConfigError("compute unit price must not be negative")
        if self.compute_unit_limit <= 0:
            raise ConfigError("compute unit limit must be positive")
        if self.confirm_timeout_sec <= 0:
            raise ConfigError("confirm timeout must be positive")
        if self.balance_workers <= 0:
            raise ConfigError("balance workers must be positive")
        self.protected_mints()
        return self

    def protected_mints(self) -> frozenset:
        mints = {USDC_MINT} if self.skip_usdc else set()
        for raw in self.extra_protected_mints:
            try:
                mints.add(Pubkey.from_string(raw.strip()))
            except ValueError as exc:
                raise ConfigError(f"invalid protected mint {raw!r}: {exc}") from exc
        return frozenset(mints)


def build_parser(env: Mapping[str, str]) -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        description="Burn leftover token balances and close all token accounts to reclaim rent."
    )
    ap.add_argument(
        "--rpc-endpoint",
        default=env.get("RPC_ENDPOINT") or env.get("RPC_URL") or "",
        help="RPC endpoint URL (default: env RPC_ENDPOINT / RPC_URL)",
    )
    ap.add_argument(
        "--private-key",
        default=env.get("PRIVATE_KEY") or env.get("PK") or "",
        help="Wallet secret key, base58 or JSON array (default: env PRIVATE_KEY / PK)",
    )
    ap.add_argument(
        "--skip-usdc",
        action=argparse.BooleanOptionalAction,
        default=_env_bool(env, "SKIP_USDC", True),
        help="Never burn USDC; its accounts are only closed (default: true)",
    )
    ap.add_argument(
        "--protect-mint",
        action="append",
        default=None,
        help="Additional mint to exclude from burning (repeatable; replaces env PROTECTED_MINTS)",
    )
    ap.add_argument(
        "--max-instructions",
        type=int,
        default=_env_int(env, "MAX_INSTRUCTIONS", DEFAULT_MAX_INSTRUCTIONS),
        help="Maximum burn/close instructions per transaction (default: 22)",
    )
    ap.add_argument(
        "--compute-unit-price",
        type=int,
        default=_env_int(env, "COMPUTE_UNIT_PRICE", DEFAULT_COMPUTE_UNIT_PRICE),
        help="Compute unit price in micro-lamports (default: 220000)",
    )
    ap.add_argument(
        "--compute-unit-limit",
        type=int,
        default=_env_int(env, "COMPUTE_UNIT_LIMIT", DEFAULT_COMPUTE_UNIT_LIMIT),
        help="Compute unit limit per transaction (default: 350000)",
    )
    ap.add_argument(
        "--confirm-timeout",
        type=int,
        default=_env_int(env, "CONFIRM_TIMEOUT_SEC", DEFAULT_CONFIRM_TIMEOUT_SEC),
        help="Seconds to wait for each confirmation (default: 60)",
    )
    ap.add_argument(
        "--balance-workers",
        type=int,
        default=DEFAULT_BALANCE_WORKERS,
        help="Concurrent balance queries (default: 8)",
    )
    ap.add_argument("--dry-run", action="store_true", help="Simulate every batch but send nothing")
    return ap


def _protected_mints_arg(cli_mints: Optional[List[str]], env: Mapping[str, str]) -> List[str]:
    if cli_mints is not None:
        return list(cli_mints)
    return [m for m in (env.get("PROTECTED_MINTS") or "").split(",") if m.strip()]


def parse_config(argv: Optional[Sequence[str]] = None, env: Optional[Mapping[str, str]] = None) -> Config:
    env = os.environ if env is None else env
    args = build_parser(env).parse_args(argv)
    return Config(
        rpc_endpoint=args.rpc_endpoint.strip(),
        private_key=args.private_key.strip(),
        skip_usdc=args.skip_usdc,
        extra_protected_mints=_protected_mints_arg(args.protect_mint, env),
        max_instructions=args.max_instructions,
        compute_unit_price=args.compute_unit_price,
        compute_unit_limit=args.compute_unit_limit,
        confirm_timeout_sec=args.confirm_timeout,
        balance_workers=args.balance_workers,
        dry_run=args.dry_run,
    ).validate()


# ---------------- Formatting ----------------
def fmt_sol(lamports: int) -> str:
    return f"{lamports / LAMPORTS_PER_SOL:.9f}".rstrip("0").rstrip(".") or "0"


def describe_group(group: AccountInstructions, protected_mints: frozenset) -> str:
    rec = group.record
    if group.burns:
        return f"  burn {rec.amount} (mint {rec.mint}) + close {rec.address}"
    if rec.mint in protected_mints:
        return f"  close {rec.address} (protected mint {rec.mint}, burn skipped)"
    if not rec.balance_known:
        return f"  close {rec.address} (balance unknown, burn skipped)"
    return f"  close {rec.address}"


# ---------------- Main ----------------
def run(config: Config, client=None) -> List[ExecutionOutcome]:
    """One full pass: classify, build, pack and execute."""
    config.validate()
    protected = config.protected_mints()
    keypair = parse_private_key(config.private_key)
    wallet = keypair.pubkey()
    client = client if client is not None else LedgerClient(config.rpc_endpoint)

    print(f"RPC: {config.rpc_endpoint}")
    print(f"Wallet: {wallet}")
    print(f"Mode: {'DRY RUN' if config.dry_run else 'EXECUTE'}")
    print("-" * 80)

    records = classify_accounts(client, wallet, workers=config.balance_workers)
    if not records:
        print("No token accounts found for this wallet")
        return []

    groups = build_instructions(records, wallet, protected)
    for group in groups:
        print(describe_group(group, protected))
    print("-" * 80)

    burns = sum(1 for g in groups if g.burns)
    protected_count = sum(1 for rec in records if rec.mint in protected)
    unknown = sum(1 for rec in records if not rec.balance_known)
    total_rent = sum(rec.lamports for rec in records)

    print("SCAN REPORT")
    print(f"Token accounts:        {len(records)}")
    print(f"Burns:                 {burns}")
    print(f"Closes:                {len(groups)}")
    print(f"Instructions:          {len(flatten(groups))}")
    print(f"Protected (no burn):   {protected_count}")
    print(f"Balance unknown:       {unknown}")
    print(f"Rent reclaimable:      {fmt_sol(total_rent)} SOL")
    print("-" * 80)

    outcomes = execute_batches(
        client,
        keypair,
        pack_batches(
            groups,
            max_instructions=config.max_instructions,
            unit_price=config.compute_unit_price,
            unit_limit=config.compute_unit_limit,
        ),
        dry_run=config.dry_run,
        confirm_timeout_sec=config.confirm_timeout_sec,
    )

    confirmed = [o for o in outcomes if o.status is BatchStatus.CONFIRMED]
    failed = [o for o in outcomes if not o.ok]
    print("-" * 80)
    print("DONE")
    print(f"Batches:           {len(outcomes)}")
    print(f"Confirmed:         {len(confirmed)}")
    print(f"Failed:            {len(failed)}")
    print(f"Rent reclaimed:    {fmt_sol(sum(o.rent_lamports for o in confirmed))} SOL")
    return outcomes


def main(argv: Optional[Sequence[str]] = None) -> int:
    load_dotenv()
    try:
        config = parse_config(argv)
        run(config)
    except (ConfigError, DiscoveryError) as exc:
        print(f"ERROR: {exc}")
        return 2
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
