"""Payment intents: a fresh reference, a pay URI and a short-lived binding."""

from __future__ import annotations

import logging
import os
import re
import time
from dataclasses import asdict, dataclass
from typing import Any, Callable, Optional
from urllib.parse import quote, urlencode

import base58

from crushai.catalog import Catalog, Purchasable
from crushai.challenge import validate_wallet
from crushai.errors import ConfigError, NotFoundError, ValidationError
from crushai.kv import KeyValueStore, reference_key
from crushai.payments.matching import build_memo

logger = logging.getLogger(__name__)

REFERENCE_BYTES = 32
ATTRIBUTION_RE = re.compile(r"^[A-Za-z0-9_-]{1,32}$")


def new_reference() -> str:
    return base58.b58encode(os.urandom(REFERENCE_BYTES)).decode("ascii")


@dataclass
class PaymentIntent:
    reference: str
    url: str
    universalUrl: str
    memo: str
    receiver: str
    mint: str
    amount: int
    itemId: str
    title: str

    def to_dict(self) -> dict:
        return asdict(self)


class PaymentIntentRegistry:
    def __init__(
        self,
        catalog: Catalog,
        kv: KeyValueStore,
        receiver: str,
        mint: str,
        memo_prefix: str = "crush",
        label: str = "Crush AI",
        reference_ttl: int = 15 * 60,
        universal_link_base: str = "https://phantom.app/ul/v1/solana-pay",
        clock: Callable[[], float] = time.time,
    ):
        self.catalog = catalog
        self.kv = kv
        self.receiver = receiver
        self.mint = mint
        self.memo_prefix = memo_prefix
        self.label = label
        self.reference_ttl = reference_ttl
        self.universal_link_base = universal_link_base
        self._clock = clock

    def resolve(self, item_id: Any) -> Purchasable:
        """Look up a priced item or bundle; raises unknown_item / invalid_price."""
        if not item_id or not isinstance(item_id, str):
            raise ValidationError("item_required", "itemId required")
        purchasable = self.catalog.resolve(item_id)
        if purchasable is None:
            raise NotFoundError("unknown_item", f"unknown item {item_id}")
        if purchasable.price <= 0:
            raise ValidationError("invalid_price", f"item {item_id} has no price")
        return purchasable

    def payment_url(self, purchasable: Purchasable, reference: str, memo: str) -> str:
        params = urlencode(
            {
                "amount": str(purchasable.price),
                "spl-token": self.mint,
                "reference": reference,
                "label": self.label,
                "message": f"Unlock {purchasable.id}",
                "memo": memo,
            }
        )
        return f"solana:{self.receiver}?{params}"

    def universal_url(self, url: str) -> str:
        return f"{self.universal_link_base}?link={quote(url, safe='')}"

    def create(self, wallet: Any, item_id: Any, attribution: Optional[str] = None) -> PaymentIntent:
        wallet = validate_wallet(wallet)
        if not self.receiver:
            raise ConfigError("PAY_RECEIVER")
        purchasable = self.resolve(item_id)

        if attribution is not None and not ATTRIBUTION_RE.match(str(attribution)):
            raise ValidationError("invalid_attribution", "attribution must be 1-32 of [A-Za-z0-9_-]")

        reference = new_reference()
        memo = build_memo(self.memo_prefix, purchasable.id, attribution)
        url = self.payment_url(purchasable, reference, memo)

        self.kv.set(
            reference_key(reference),
            {"itemId": purchasable.id, "wallet": wallet, "createdAt": int(self._clock() * 1000)},
            ttl=self.reference_ttl,
        )
        logger.info(f"Payment intent created for {purchasable.id} (reference {reference[:8]}...)")

        return PaymentIntent(
            reference=reference,
            url=url,
            universalUrl=self.universal_url(url),
            memo=memo,
            receiver=self.receiver,
            mint=self.mint,
            amount=purchasable.price,
            itemId=purchasable.id,
            title=purchasable.title,
        )

    def binding(self, reference: str) -> Optional[dict]:
        if not reference:
            return None
        entry = self.kv.get(reference_key(reference))
        return entry if isinstance(entry, dict) else None

    def is_bound(self, reference: str, item_id: str) -> bool:
        entry = self.binding(reference)
        return bool(entry) and entry.get("itemId") == item_id
