"""
Inspection helpers for parsed Solana transactions.

Shared by the polling verifier and the webhook so both paths apply the same
memo, account and balance-delta rules. All token amounts are integers in the
mint's minimal units.
"""

from __future__ import annotations

import re
from functools import lru_cache
from typing import Any, List, Optional, Pattern


def dig(data: Any, *path: Any) -> Any:
    for key in path:
        if isinstance(key, int):
            if not isinstance(data, list) or len(data) <= key:
                return None
        elif not isinstance(data, dict):
            return None
        data = data[key] if isinstance(key, int) else data.get(key)
    return data


def account_keys(tx: Any) -> List[str]:
    """Account keys as plain strings (legacy strings or jsonParsed ``{pubkey}``)."""
    keys = dig(tx, "transaction", "message", "accountKeys")
    if not isinstance(keys, list):
        # Enhanced webhook payloads carry per-account data instead of a message.
        keys = [entry.get("account") for entry in dig(tx, "accountData") or [] if isinstance(entry, dict)]
    out = []
    for key in keys:
        if isinstance(key, dict):
            key = key.get("pubkey")
        if isinstance(key, str) and key:
            out.append(key)
    return out


def log_messages(tx: Any) -> List[str]:
    logs = dig(tx, "meta", "logMessages")
    return [line for line in logs or [] if isinstance(line, str)]


def transaction_signature(tx: Any) -> Optional[str]:
    signature = dig(tx, "transaction", "signatures", 0) or dig(tx, "signature")
    return signature if isinstance(signature, str) and signature else None


def transaction_failed(tx: Any) -> bool:
    return bool(dig(tx, "meta", "err"))


def build_memo(prefix: str, item_id: str, attribution: Optional[str] = None) -> str:
    memo = f"{prefix}:{item_id}"
    if attribution:
        memo += f":ref={attribution}"
    return memo


@lru_cache(maxsize=16)
def _memo_pattern(prefix: str) -> Pattern[str]:
    return re.compile(r"(?<![A-Za-z0-9_-])" + re.escape(prefix) + r":([A-Za-z0-9_-]+)")


def memo_item_ids(logs: List[str], prefix: str) -> List[str]:
    """Every ``<prefix>:<itemId>`` tag found in the logs, in order.

    Ids are matched whole, so ``crush:pp-02-1`` never matches ``crush:pp-02-10``.
    """
    pattern = _memo_pattern(prefix)
    found = []
    for line in logs:
        found.extend(pattern.findall(line))
    return found


def has_memo(tx: Any, prefix: str, item_id: str) -> bool:
    return item_id in memo_item_ids(log_messages(tx), prefix)


def first_memo_item_id(tx: Any, prefix: str) -> Optional[str]:
    ids = memo_item_ids(log_messages(tx), prefix)
    return ids[0] if ids else None


def _raw_amount(balance: Any) -> int:
    amount = dig(balance, "uiTokenAmount", "amount")
    try:
        return int(amount) if amount is not None else 0
    except (TypeError, ValueError):
        return 0


def _treasury_balances(tx: Any, side: str, mint: str, receiver: str) -> List[dict]:
    balances = dig(tx, "meta", side) or []
    return [
        b
        for b in balances
        if isinstance(b, dict) and b.get("mint") == mint and b.get("owner") == receiver
    ]


def treasury_delta(tx: Any, mint: str, receiver: str) -> int:
    """``sum(post) - sum(pre)`` over every receiver-owned account of ``mint``."""
    post = sum(_raw_amount(b) for b in _treasury_balances(tx, "postTokenBalances", mint, receiver))
    pre = sum(_raw_amount(b) for b in _treasury_balances(tx, "preTokenBalances", mint, receiver))
    return post - pre


def receiver_present(tx: Any, mint: str, receiver: str) -> bool:
    """The receiver wallet, or one of its token accounts for ``mint``, is in the account keys."""
    keys = account_keys(tx)
    if receiver in keys:
        return True
    for side in ("preTokenBalances", "postTokenBalances"):
        for balance in _treasury_balances(tx, side, mint, receiver):
            index = balance.get("accountIndex")
            if isinstance(index, int) and 0 <= index < len(keys):
                return True
    return False
