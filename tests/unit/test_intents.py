"""
Unit tests for payment intent creation and reference bindings.
"""

from urllib.parse import parse_qs, unquote, urlparse

import base58
import pytest

from crushai.catalog import Catalog, Item
from crushai.errors import ConfigError, NotFoundError, ValidationError
from crushai.kv import InMemoryKeyValueStore, reference_key
from crushai.payments.intents import PaymentIntentRegistry, new_reference

MINT = "A4R4DhbxhKxc6uNiUaswecybVJuAPwBWV6zQu2gJJskG"


@pytest.fixture
def kv():
    return InMemoryKeyValueStore()


@pytest.fixture
def registry(kv, treasury):
    return PaymentIntentRegistry(Catalog(), kv, receiver=treasury, mint=MINT, clock=lambda: 1_700_000_000.5)


def test_new_reference_is_32_bytes():
    assert len(base58.b58decode(new_reference())) == 32
    assert new_reference() != new_reference()


class TestPaymentIntentRegistry:
    def test_create(self, registry, wallet, treasury):
        intent = registry.create(wallet.address, "vip-gallery-01-1")

        assert intent.itemId == "vip-gallery-01-1"
        assert intent.amount == 250
        assert intent.memo == "crush:vip-gallery-01-1"
        assert intent.receiver == treasury
        assert intent.mint == MINT
        assert intent.title == "VIP Photo 01"

    def test_payment_url(self, registry, wallet, treasury):
        intent = registry.create(wallet.address, "pp-02-2")

        parsed = urlparse(intent.url)
        query = parse_qs(parsed.query)
        assert parsed.scheme == "solana"
        assert parsed.path == treasury
        assert query["amount"] == ["750"]
        assert query["spl-token"] == [MINT]
        assert query["reference"] == [intent.reference]
        assert query["label"] == ["Crush AI"]
        assert query["message"] == ["Unlock pp-02-2"]
        assert query["memo"] == ["crush:pp-02-2"]

    def test_universal_url_wraps_payment_url(self, registry, wallet):
        intent = registry.create(wallet.address, "pp-02-2")

        base, _, link = intent.universalUrl.partition("?link=")
        assert base == "https://phantom.app/ul/v1/solana-pay"
        assert ":" not in link
        assert unquote(link) == intent.url

    def test_binding_is_stored_with_ttl(self, registry, kv, wallet):
        intent = registry.create(wallet.address, "pp-02-1")

        assert kv.get(reference_key(intent.reference)) == {
            "itemId": "pp-02-1",
            "wallet": wallet.address,
            "createdAt": 1_700_000_000_500,
        }
        assert registry.is_bound(intent.reference, "pp-02-1")
        assert not registry.is_bound(intent.reference, "pp-02-2")
        assert not registry.is_bound("", "pp-02-1")

    def test_binding_expires(self, wallet, treasury):
        now = [0.0]
        store = InMemoryKeyValueStore(clock=lambda: now[0])
        registry = PaymentIntentRegistry(Catalog(), store, receiver=treasury, mint=MINT, reference_ttl=900)
        intent = registry.create(wallet.address, "pp-02-1")

        now[0] = 900
        assert registry.binding(intent.reference) is None

    def test_bundle_intent(self, registry, wallet):
        intent = registry.create(wallet.address, "bundle-vip-01")

        assert intent.amount == 600
        assert intent.memo == "crush:bundle-vip-01"

    def test_attribution_in_memo(self, registry, wallet):
        intent = registry.create(wallet.address, "pp-02-1", attribution="creator_7")

        assert intent.memo == "crush:pp-02-1:ref=creator_7"

    @pytest.mark.parametrize("attribution", ["", "x" * 33, "bad ref", "a:b"])
    def test_invalid_attribution(self, registry, wallet, attribution):
        with pytest.raises(ValidationError) as exc:
            registry.create(wallet.address, "pp-02-1", attribution=attribution)
        assert exc.value.code == "invalid_attribution"

    def test_unknown_item(self, registry, wallet):
        with pytest.raises(NotFoundError) as exc:
            registry.create(wallet.address, "nope")
        assert exc.value.code == "unknown_item"

    def test_item_required(self, registry, wallet):
        with pytest.raises(ValidationError) as exc:
            registry.create(wallet.address, None)
        assert exc.value.code == "item_required"

    def test_wallet_required(self, registry):
        with pytest.raises(ValidationError) as exc:
            registry.create("abc", "pp-02-1")
        assert exc.value.code == "wallet_required"

    def test_unpriced_item(self, kv, wallet, treasury):
        catalog = Catalog([Item("free-1", "Free", 0, "/f.png", "f.png")], [])
        registry = PaymentIntentRegistry(catalog, kv, receiver=treasury, mint=MINT)

        with pytest.raises(ValidationError) as exc:
            registry.create(wallet.address, "free-1")
        assert exc.value.code == "invalid_price"

    def test_receiver_required(self, kv, wallet):
        registry = PaymentIntentRegistry(Catalog(), kv, receiver="", mint=MINT)

        with pytest.raises(ConfigError) as exc:
            registry.create(wallet.address, "pp-02-1")
        assert exc.value.code == "missing_pay_receiver"
