"""
Push-path payment processing for indexer webhooks.

The push payload does not carry the client's reference, so it is re-derived by
scanning the transaction's account keys for one bound to the memo's item.
Delivery is at-least-once: every transaction is processed independently and
failures are logged, never raised to the caller.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Iterable, List, Optional, Sequence

from crushai.audit_logger import get_audit_logger
from crushai.balances import BalanceOracle
from crushai.catalog import Catalog
from crushai.entitlements import EntitlementStore
from crushai.errors import CrushError
from crushai.kv import KeyValueStore, reference_key
from crushai.metrics import payments_granted, webhook_transactions
from crushai.payments.matching import (
    account_keys,
    dig,
    first_memo_item_id,
    transaction_failed,
    transaction_signature,
    treasury_delta,
)
from crushai.payments.verifier import publish_completion

logger = logging.getLogger(__name__)

GRANTED = "granted"
IGNORED = "ignored"
FAILED = "error"


# ============================================================================
# Buyer wallet resolution
# ============================================================================


def buyer_from_pre_balances(tx: Any, mint: str, receiver: str) -> Optional[str]:
    """Owner of the first pre-transfer token balance for ``mint`` that is not the treasury."""
    for balance in dig(tx, "meta", "preTokenBalances") or []:
        if not isinstance(balance, dict):
            continue
        owner = balance.get("owner")
        if owner and owner != receiver and balance.get("mint") in (None, mint):
            return owner
    return None


def buyer_from_transfers(tx: Any, mint: str, receiver: str) -> Optional[str]:
    """``fromUserAccount`` of the first token transfer in an enhanced payload."""
    transfers = dig(tx, "tokenTransfers")
    if not isinstance(transfers, list):
        transfers = dig(tx, "accountData", "tokenTransfers")
    for transfer in transfers or []:
        sender = transfer.get("fromUserAccount") if isinstance(transfer, dict) else None
        if sender:
            return sender
    return None


def buyer_from_fee_payer(tx: Any, mint: str, receiver: str) -> Optional[str]:
    keys = account_keys(tx)
    if keys:
        return keys[0]
    payer = dig(tx, "feePayer")
    return payer if isinstance(payer, str) and payer else None


BuyerStrategy = Callable[[Any, str, str], Optional[str]]

BUYER_STRATEGIES: Sequence[BuyerStrategy] = (
    buyer_from_pre_balances,
    buyer_from_transfers,
    buyer_from_fee_payer,
)


def resolve_buyer_wallet(
    tx: Any, mint: str, receiver: str, strategies: Iterable[BuyerStrategy] = BUYER_STRATEGIES
) -> Optional[str]:
    """First non-empty of: pre-balance owner, transfer-from field, fee payer."""
    for strategy in strategies:
        wallet = strategy(tx, mint, receiver)
        if wallet:
            return wallet
    return None


def extract_transactions(payload: Any) -> List[Any]:
    """Accept a bare list, ``{"transactions": [...]}`` or ``{"data": [...]}``."""
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in ("transactions", "data"):
            if isinstance(payload.get(key), list):
                return payload[key]
    return []


class WebhookProcessor:
    def __init__(
        self,
        catalog: Catalog,
        kv: KeyValueStore,
        entitlements: EntitlementStore,
        oracle: BalanceOracle,
        mint: str,
        receiver: str,
        memo_prefix: str = "crush",
        completion_ttl: int = 15 * 60,
    ):
        self.catalog = catalog
        self.kv = kv
        self.entitlements = entitlements
        self.oracle = oracle
        self.mint = mint
        self.receiver = receiver
        self.memo_prefix = memo_prefix
        self.completion_ttl = completion_ttl

    def find_reference(self, tx: Any, item_id: str) -> Optional[str]:
        keys = account_keys(tx)
        payer = keys[0] if keys else None
        for key in keys:
            if key == payer or key == self.receiver:
                continue
            binding = self.kv.get(reference_key(key))
            if isinstance(binding, dict) and binding.get("itemId") == item_id:
                return key
        return None

    def process_transaction(self, tx: Any, decimals: Optional[int] = None) -> str:
        if not isinstance(tx, dict) or transaction_failed(tx):
            return IGNORED

        item_id = first_memo_item_id(tx, self.memo_prefix)
        if not item_id:
            return IGNORED
        purchasable = self.catalog.resolve(item_id)
        if purchasable is None:
            return IGNORED

        if decimals is None:
            decimals = self.oracle.get_mint_decimals(self.mint)
        delta = treasury_delta(tx, self.mint, self.receiver)
        if delta <= 0 or delta < purchasable.price * 10**decimals:
            return IGNORED

        reference = self.find_reference(tx, item_id)
        if reference is None:
            return IGNORED

        wallet = resolve_buyer_wallet(tx, self.mint, self.receiver)
        signature = transaction_signature(tx)
        if not wallet or not signature:
            logger.warning(f"Webhook tx for reference {reference[:8]}... lacks buyer or signature")
            return IGNORED

        self.entitlements.grant_many(wallet, purchasable.item_ids, signature)
        payments_granted.labels(source="webhook").inc(len(purchasable.item_ids))
        get_audit_logger().log_payment_granted(wallet, purchasable.item_ids, signature, "webhook")

        publish_completion(
            self.kv,
            reference,
            {
                "ok": True,
                "wallet": wallet,
                "itemId": purchasable.id,
                "signature": signature,
                "ts": int(time.time() * 1000),
            },
            self.completion_ttl,
        )
        return GRANTED

    def process(self, payload: Any) -> dict:
        """Process a delivery; never raises."""
        transactions = extract_transactions(payload)
        summary = {"received": len(transactions), GRANTED: 0, IGNORED: 0, FAILED: 0}
        if not transactions:
            return summary
        decimals = self.oracle.get_mint_decimals(self.mint)
        for tx in transactions:
            try:
                outcome = self.process_transaction(tx, decimals)
            except CrushError as e:
                logger.warning(f"Webhook transaction rejected: {e.code} ({e.message})")
                outcome = FAILED
            except Exception:  # noqa: BLE001
                logger.exception("Webhook transaction processing failed")
                outcome = FAILED
            summary[outcome] += 1
            webhook_transactions.labels(outcome=outcome).inc()
        return summary
