"""
Poll-path payment verification.

Each call is an independent attempt ending in ``matched``, ``no-match`` or
``no-sigs``. Nothing is held between polls except the reference binding.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, List, Optional, Tuple

import redis

from crushai.audit_logger import get_audit_logger
from crushai.balances import BalanceOracle
from crushai.challenge import validate_wallet
from crushai.entitlements import EntitlementStore
from crushai.errors import ConfigError, UpstreamError, ValidationError
from crushai.kv import KeyValueStore, completion_channel, completion_key
from crushai.metrics import payment_verifications, payments_granted
from crushai.payments.intents import PaymentIntentRegistry
from crushai.payments.matching import (
    account_keys,
    has_memo,
    receiver_present,
    transaction_failed,
    treasury_delta,
)
from crushai.rpc import SolanaRpcClient

logger = logging.getLogger(__name__)

MATCHED = "matched"
NO_MATCH = "no-match"
NO_SIGS = "no-sigs"


@dataclass
class VerificationResult:
    status: str
    item_id: str
    signature: Optional[str] = None
    granted: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        return self.status == MATCHED

    def to_dict(self) -> dict:
        if self.ok:
            return {"ok": True, "signature": self.signature, "itemId": self.item_id, "granted": list(self.granted)}
        return {"ok": False, "reason": self.status}


def publish_completion(kv: KeyValueStore, reference: str, event: dict, ttl: int) -> None:
    """Notify subscribers on ``pay:<reference>`` and keep the event for late ones."""
    try:
        kv.set(completion_key(reference), event, ttl=ttl)
        kv.publish(completion_channel(reference), event)
    except redis.RedisError as e:
        # The grant is already stored; subscribers fall back to polling.
        logger.warning(f"Completion publish for {reference[:8]}... failed: {e}")


class PaymentVerifier:
    def __init__(
        self,
        rpc: SolanaRpcClient,
        oracle: BalanceOracle,
        intents: PaymentIntentRegistry,
        entitlements: EntitlementStore,
        kv: KeyValueStore,
        signature_limit: int = 40,
        completion_ttl: int = 15 * 60,
    ):
        self.rpc = rpc
        self.oracle = oracle
        self.intents = intents
        self.entitlements = entitlements
        self.kv = kv
        self.signature_limit = signature_limit
        self.completion_ttl = completion_ttl

    @property
    def receiver(self) -> str:
        return self.intents.receiver

    @property
    def mint(self) -> str:
        return self.intents.mint

    def _signatures(self, address: str) -> Optional[List[str]]:
        result = self.rpc.get_signatures_for_address(address, self.signature_limit)
        if not result.ok:
            return None
        return [
            entry["signature"]
            for entry in result.value or []
            if isinstance(entry, dict) and isinstance(entry.get("signature"), str)
        ]

    def candidate_signatures(self, reference: str) -> List[str]:
        """Signatures touching the reference, else the treasury's token accounts."""
        signatures = self._signatures(reference)
        if signatures is None:
            raise UpstreamError("rpc_unavailable", "could not list signatures for reference")
        if signatures:
            return signatures

        # The reference may not be indexed yet; the treasury accounts usually are.
        result = self.rpc.get_token_accounts_by_owner(self.receiver, {"mint": self.mint})
        if not result.ok:
            return []
        accounts = result.value.get("value") if isinstance(result.value, dict) else None
        seen = set()
        for account in accounts or []:
            pubkey = account.get("pubkey") if isinstance(account, dict) else None
            if not pubkey:
                continue
            for signature in self._signatures(pubkey) or []:
                if signature not in seen:
                    seen.add(signature)
                    signatures.append(signature)
        return signatures

    def matches(self, tx: Any, wallet: str, item_id: str, reference: str, expected: int) -> bool:
        """All acceptance checks for one candidate transaction."""
        if not isinstance(tx, dict) or transaction_failed(tx):
            return False
        keys = account_keys(tx)
        if reference not in keys:
            return False
        if not receiver_present(tx, self.mint, self.receiver):
            return False
        if not has_memo(tx, self.intents.memo_prefix, item_id):
            return False
        if wallet not in keys:
            return False
        return treasury_delta(tx, self.mint, self.receiver) >= expected

    def verify(self, wallet: Any, item_id: Any, reference: Any) -> VerificationResult:
        wallet = validate_wallet(wallet)
        if not self.receiver:
            raise ConfigError("PAY_RECEIVER")
        purchasable = self.intents.resolve(item_id)

        reference = str(reference or "").strip()
        if not reference:
            raise ValidationError("reference_required", "reference required")
        if not self.intents.is_bound(reference, purchasable.id):
            raise ValidationError("reference_not_bound", "reference is not bound to this item")

        decimals = self.oracle.get_mint_decimals(self.mint)
        expected = purchasable.price * 10**decimals

        signatures = self.candidate_signatures(reference)
        if not signatures:
            payment_verifications.labels(outcome=NO_SIGS).inc()
            return VerificationResult(NO_SIGS, purchasable.id)

        for signature in signatures:
            result = self.rpc.get_transaction(signature)
            if not result.ok:
                logger.debug(f"Skipping {signature[:8]}...: {result.message}")
                continue
            if not self.matches(result.value, wallet, purchasable.id, reference, expected):
                continue

            self.entitlements.grant_many(wallet, purchasable.item_ids, signature)
            payment_verifications.labels(outcome=MATCHED).inc()
            payments_granted.labels(source="verify").inc(len(purchasable.item_ids))
            get_audit_logger().log_payment_granted(wallet, purchasable.item_ids, signature, "verify")

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
            return VerificationResult(MATCHED, purchasable.id, signature, purchasable.item_ids)

        payment_verifications.labels(outcome=NO_MATCH).inc()
        return VerificationResult(NO_MATCH, purchasable.id)
