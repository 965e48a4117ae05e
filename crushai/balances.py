"""
Token balance lookups and tier mapping.

Server-side lookups are never cached: every gated action re-reads the chain.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, List, Sequence, Tuple

from crushai.errors import UpstreamError
from crushai.rpc import SolanaRpcClient

logger = logging.getLogger(__name__)

TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
TOKEN_2022_PROGRAM_ID = "TokenzQdBNbLqP5VEhdkAS6EPFLC1PHnBqCXEpPxuEb"

DEFAULT_TIERS: Tuple[Tuple[int, str], ...] = (
    (0, "FREE"),
    (1_000, "BRONZE"),
    (10_000, "SILVER"),
    (100_000, "GOLD"),
    (1_000_000, "DIAMOND"),
)


def _parsed_info(entry: Any) -> dict:
    try:
        info = entry["account"]["data"]["parsed"]["info"]
    except (KeyError, TypeError):
        return {}
    return info if isinstance(info, dict) else {}


def ui_amount(token_amount: Any) -> Decimal:
    """Normalize a ``tokenAmount`` object to a ui-amount.

    Prefers ``uiAmount``; falls back to ``amount / 10**decimals`` when the
    ui-amount is absent (some Token-2022 encodings omit it).
    """
    if not isinstance(token_amount, dict):
        return Decimal(0)
    try:
        if token_amount.get("uiAmount") is not None:
            return Decimal(str(token_amount["uiAmount"]))
        if token_amount.get("uiAmountString"):
            return Decimal(token_amount["uiAmountString"])
        raw = token_amount.get("amount")
        if raw is None:
            return Decimal(0)
        decimals = int(token_amount.get("decimals") or 0)
        return Decimal(str(raw)) / (Decimal(10) ** decimals)
    except (InvalidOperation, TypeError, ValueError):
        return Decimal(0)


def _accounts(result: Any) -> List[dict]:
    value = result.get("value") if isinstance(result, dict) else result
    return [entry for entry in (value or []) if isinstance(entry, dict)]


def sum_accounts(entries: Iterable[dict]) -> Decimal:
    total = Decimal(0)
    for entry in entries:
        total += ui_amount(_parsed_info(entry).get("tokenAmount"))
    return total


@dataclass(frozen=True)
class Holdings:
    amount: float
    accounts: int


class BalanceOracle:
    """Reads an owner's holdings of a mint from the chain."""

    def __init__(self, rpc: SolanaRpcClient, default_decimals: int = 9):
        self.rpc = rpc
        self.default_decimals = default_decimals

    def token_accounts(self, owner: str, mint: str) -> List[dict]:
        result = self.rpc.get_token_accounts_by_owner(owner, {"mint": mint})
        if not result.ok:
            raise UpstreamError("rpc_unavailable", f"balance lookup failed: {result.message}")
        return _accounts(result.value)

    def holdings(self, owner: str, mint: str) -> Holdings:
        accounts = self.token_accounts(owner, mint)
        total = sum_accounts(accounts)
        if total > 0:
            return Holdings(float(total), len(accounts))

        # Some endpoints only surface Token-2022 accounts through a program filter.
        for program_id in (TOKEN_2022_PROGRAM_ID, TOKEN_PROGRAM_ID):
            result = self.rpc.get_token_accounts_by_owner(owner, {"programId": program_id})
            if not result.ok:
                logger.debug(f"Program scan {program_id} failed: {result.message}")
                continue
            matching = [entry for entry in _accounts(result.value) if _parsed_info(entry).get("mint") == mint]
            total = sum_accounts(matching)
            if total > 0:
                return Holdings(float(total), len(matching))
        return Holdings(0.0, len(accounts))

    def get_balance(self, owner: str, mint: str) -> float:
        """Ui-amount of ``mint`` held by ``owner``; raises UpstreamError if every endpoint fails."""
        return self.holdings(owner, mint).amount

    def get_mint_decimals(self, mint: str) -> int:
        result = self.rpc.get_token_supply(mint)
        if result.ok:
            value = result.value.get("value") if isinstance(result.value, dict) else None
            decimals = value.get("decimals") if isinstance(value, dict) else None
            if isinstance(decimals, int) and not isinstance(decimals, bool):
                return decimals
        logger.warning(f"Could not read decimals for {mint}; assuming {self.default_decimals}")
        return self.default_decimals


class TierTable:
    """Monotonic ascending ``threshold -> label`` table."""

    def __init__(self, tiers: Sequence[Tuple[int, str]] = DEFAULT_TIERS):
        if not tiers:
            raise ValueError("tier table must not be empty")
        thresholds = [threshold for threshold, _ in tiers]
        if thresholds[0] != 0:
            raise ValueError("lowest tier threshold must be 0")
        if any(b <= a for a, b in zip(thresholds, thresholds[1:])):
            raise ValueError("tier thresholds must be strictly ascending")
        self.tiers = tuple(tiers)

    def tier_for(self, balance: float) -> str:
        label = self.tiers[0][1]
        for threshold, name in self.tiers:
            if balance >= threshold:
                label = name
        return label
