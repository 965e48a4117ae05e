"""
Unit tests for the RPC failover client, balance lookups and tier mapping.
"""

import threading
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
import requests

from crushai.balances import (
    TOKEN_2022_PROGRAM_ID,
    BalanceOracle,
    TierTable,
    sum_accounts,
    ui_amount,
)
from crushai.errors import UpstreamError
from crushai.metrics import registry
from crushai.rpc import RpcError, RpcOk, SolanaRpcClient

PRIMARY = "http://invalid.local"
FALLBACK = "http://fallback.test"
MINT = "A4R4DhbxhKxc6uNiUaswecybVJuAPwBWV6zQu2gJJskG"


def failovers(method):
    return registry.get_sample_value("rpc_failovers_total", {"method": method}) or 0


@pytest.fixture
def rpc(fake_solana):
    client = SolanaRpcClient([PRIMARY, FALLBACK], timeout=2, session=fake_solana.session)
    yield client
    client.close()


@pytest.fixture
def oracle(rpc):
    return BalanceOracle(rpc, default_decimals=9)


class TestSolanaRpcClient:
    def test_requires_endpoints(self):
        with pytest.raises(ValueError):
            SolanaRpcClient([])

    def test_first_endpoint_answers(self, rpc, fake_solana):
        result = rpc.get_token_supply(MINT)

        assert isinstance(result, RpcOk)
        assert result.endpoint == PRIMARY
        assert result.value["value"]["decimals"] == 9
        assert [url for url, _, _ in fake_solana.calls] == [PRIMARY]

    def test_request_body(self, rpc, fake_solana):
        rpc.get_transaction("sig")

        body = fake_solana.session.post.call_args.kwargs["json"]
        assert body["jsonrpc"] == "2.0"
        assert body["method"] == "getTransaction"
        assert body["params"] == [
            "sig",
            {"encoding": "jsonParsed", "commitment": "confirmed", "maxSupportedTransactionVersion": 0},
        ]
        assert fake_solana.session.post.call_args.kwargs["timeout"] == 4

    def test_failover_on_transport_error(self, rpc, fake_solana):
        fake_solana.down.add(PRIMARY)
        before = failovers("getTokenSupply")

        result = rpc.get_token_supply(MINT)

        assert result.ok
        assert result.endpoint == FALLBACK
        assert failovers("getTokenSupply") == before + 1

    def test_failover_on_rpc_error(self, rpc, fake_solana):
        answers = iter(
            [
                {"jsonrpc": "2.0", "id": 1, "error": {"code": -32005, "message": "Node is behind"}},
                {"jsonrpc": "2.0", "id": 2, "result": {"value": {"decimals": 6}}},
            ]
        )

        def post(url, json=None, headers=None, timeout=None):
            response = MagicMock()
            response.json.return_value = next(answers)
            return response

        fake_solana.session.post.side_effect = post

        result = rpc.get_token_supply(MINT)

        assert result.ok
        assert result.value["value"]["decimals"] == 6

    def test_all_endpoints_fail(self, rpc, fake_solana):
        fake_solana.down.update({PRIMARY, FALLBACK})

        result = rpc.get_token_supply(MINT)

        assert isinstance(result, RpcError)
        assert not result.ok
        assert result.endpoint == FALLBACK
        assert "transport error" in result.message

    def test_call_or_raise(self, rpc, fake_solana):
        fake_solana.down.update({PRIMARY, FALLBACK})

        with pytest.raises(UpstreamError) as exc:
            rpc.call_or_raise("getTokenSupply", [MINT])
        assert exc.value.code == "rpc_unavailable"

    def test_missing_result_is_error(self, rpc, fake_solana):
        response = MagicMock()
        response.json.return_value = {"jsonrpc": "2.0", "id": 1}
        fake_solana.session.post.side_effect = None
        fake_solana.session.post.return_value = response

        result = rpc.get_token_supply(MINT)

        assert not result.ok
        assert result.message == "missing result"

    def test_malformed_json_is_error(self, rpc, fake_solana):
        response = MagicMock()
        response.json.side_effect = ValueError("not json")
        fake_solana.session.post.side_effect = None
        fake_solana.session.post.return_value = response

        assert not rpc.get_token_supply(MINT).ok

    def test_slow_endpoint_times_out(self, fake_solana):
        release = threading.Event()
        fast = MagicMock()
        fast.json.return_value = {"jsonrpc": "2.0", "id": 1, "result": {"value": {"decimals": 9}}}

        def post(url, json=None, headers=None, timeout=None):
            if url == PRIMARY:
                release.wait(5)
                raise requests.Timeout("released")
            return fast

        fake_solana.session.post.side_effect = post
        client = SolanaRpcClient([PRIMARY, FALLBACK], timeout=0.05, session=fake_solana.session)
        try:
            result = client.get_token_supply(MINT)
        finally:
            release.set()
            client.close()

        assert result.ok
        assert result.endpoint == FALLBACK

    def test_transport_timeout_matches_race(self, rpc, fake_solana):
        rpc.get_token_supply(MINT)

        assert fake_solana.session.post.call_args.kwargs["timeout"] == rpc.timeout

    def test_hung_endpoints_do_not_starve_concurrent_calls(self, fake_solana):
        public = "http://public.test"
        release = threading.Event()
        fast = MagicMock()
        fast.json.return_value = {"jsonrpc": "2.0", "id": 1, "result": {"value": {"decimals": 9}}}

        def post(url, json=None, headers=None, timeout=None):
            if url != public:
                release.wait(5)
                raise requests.Timeout("released")
            return fast

        fake_solana.session.post.side_effect = post
        client = SolanaRpcClient([PRIMARY, FALLBACK, public], timeout=0.3, session=fake_solana.session)
        results = [None] * 4

        def worker(index):
            results[index] = client.get_token_supply(MINT)

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(len(results))]
        try:
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join(5)
        finally:
            release.set()
            client.close()

        assert all(result is not None and result.ok for result in results)
        assert {result.endpoint for result in results} == {public}


class TestUiAmount:
    def test_prefers_ui_amount(self):
        assert ui_amount({"uiAmount": 12.5, "amount": "1", "decimals": 9}) == Decimal("12.5")

    def test_ui_amount_string(self):
        assert ui_amount({"uiAmount": None, "uiAmountString": "3.25"}) == Decimal("3.25")

    def test_falls_back_to_raw_amount(self):
        assert ui_amount({"uiAmount": None, "amount": "1500000000", "decimals": 9}) == Decimal("1.5")

    @pytest.mark.parametrize("value", [None, {}, {"amount": "x", "decimals": 2}, "12"])
    def test_unusable_values_are_zero(self, value):
        assert ui_amount(value) == 0

    def test_sum_accounts(self, make_token_account, new_address):
        owner = new_address()
        accounts = [make_token_account(MINT, owner, 100), make_token_account(MINT, owner, 0.5)]

        assert sum_accounts(accounts) == Decimal("100.5")


class TestBalanceOracle:
    def test_balance_with_failover(self, oracle, fake_solana, new_address):
        owner = new_address()
        fake_solana.down.add(PRIMARY)
        fake_solana.set_balance({owner: 750})

        assert oracle.get_balance(owner, MINT) == 750

    def test_holdings_counts_accounts(self, oracle, fake_solana, make_token_account, new_address):
        owner = new_address()
        fake_solana.handlers["getTokenAccountsByOwner"] = {
            "value": [make_token_account(MINT, owner, 10), make_token_account(MINT, owner, 5)]
        }

        holdings = oracle.holdings(owner, MINT)

        assert holdings.amount == 15
        assert holdings.accounts == 2

    def test_program_scan_when_mint_filter_empty(self, oracle, fake_solana, make_token_account, new_address):
        owner = new_address()

        def handler(params):
            filter_ = params[1]
            if filter_.get("programId") == TOKEN_2022_PROGRAM_ID:
                return {
                    "value": [
                        make_token_account(MINT, owner, 42),
                        make_token_account("OtherMint111111111111111111111111111111111", owner, 1000),
                    ]
                }
            return {"value": []}

        fake_solana.handlers["getTokenAccountsByOwner"] = handler

        holdings = oracle.holdings(owner, MINT)

        assert holdings.amount == 42
        assert holdings.accounts == 1

    def test_empty_wallet_is_zero(self, oracle, new_address):
        assert oracle.get_balance(new_address(), MINT) == 0

    def test_lookup_failure_raises(self, oracle, fake_solana, new_address):
        fake_solana.down.update({PRIMARY, FALLBACK})

        with pytest.raises(UpstreamError):
            oracle.get_balance(new_address(), MINT)

    def test_mint_decimals(self, oracle, fake_solana):
        fake_solana.decimals = 6

        assert oracle.get_mint_decimals(MINT) == 6

    def test_mint_decimals_fallback(self, oracle, fake_solana):
        fake_solana.down.update({PRIMARY, FALLBACK})

        assert oracle.get_mint_decimals(MINT) == 9


class TestTierTable:
    @pytest.mark.parametrize(
        "balance,tier",
        [
            (0, "FREE"),
            (999.99, "FREE"),
            (1_000, "BRONZE"),
            (9_999, "BRONZE"),
            (10_000, "SILVER"),
            (100_000, "GOLD"),
            (1_000_000, "DIAMOND"),
            (5_000_000, "DIAMOND"),
        ],
    )
    def test_default_tiers(self, balance, tier):
        assert TierTable().tier_for(balance) == tier

    def test_negative_balance_is_lowest_tier(self):
        assert TierTable().tier_for(-1) == "FREE"

    def test_rejects_unordered_thresholds(self):
        with pytest.raises(ValueError):
            TierTable([(0, "A"), (10, "B"), (10, "C")])

    def test_rejects_nonzero_floor(self):
        with pytest.raises(ValueError):
            TierTable([(5, "A")])
