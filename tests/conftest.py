"""
Pytest configuration and shared fixtures for CrushAI tests.
"""

import os
import sys
import time
from unittest.mock import MagicMock

import base58
import pytest
import requests
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

# Set test environment before importing app
os.environ["FLASK_ENV"] = "testing"
os.environ["SESSION_SECRET"] = "test-session-secret-0123456789abcdef"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["FORCE_HTTPS"] = "false"
os.environ.pop("DATABASE_URL", None)
os.environ.pop("REDIS_URL", None)

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

TOKEN_MINT = "A4R4DhbxhKxc6uNiUaswecybVJuAPwBWV6zQu2gJJskG"
MEMO_PROGRAM = "MemoSq4gqABAXKb96qnH8TysNcWxMyWCqXgDLGmfcHr"
TOKEN_PROGRAM = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"
PRIMARY_RPC = "http://rpc.primary.test"
PUBLIC_RPC = "http://rpc.public.test"


class Wallet:
    """An Ed25519 keypair with its base58 address."""

    def __init__(self):
        self.private_key = Ed25519PrivateKey.generate()
        raw = self.private_key.public_key().public_bytes_raw()
        self.address = base58.b58encode(raw).decode("ascii")

    def sign(self, message: str) -> bytes:
        return self.private_key.sign(message.encode("utf-8"))


def random_address() -> str:
    return base58.b58encode(os.urandom(32)).decode("ascii")


def random_signature() -> str:
    return base58.b58encode(os.urandom(64)).decode("ascii")


class FakeSolana:
    """
    Scripted JSON-RPC backend for a mocked ``requests.Session``.

    ``handlers`` maps a JSON-RPC method to a value or to ``fn(params)``;
    ``down`` holds endpoint URLs that raise a connection error.
    """

    def __init__(self):
        self.handlers = {}
        self.down = set()
        self.calls = []
        self.transactions = {}
        self.signatures = {}
        self.decimals = 9
        self.session = MagicMock(spec=requests.Session)
        self.session.post.side_effect = self._post

        self.handlers["getTokenSupply"] = lambda params: {"context": {"slot": 1}, "value": {"decimals": self.decimals}}
        self.handlers["getSignaturesForAddress"] = lambda params: [
            {"signature": sig, "err": None} for sig in self.signatures.get(params[0], [])
        ]
        self.handlers["getTransaction"] = lambda params: self.transactions.get(params[0])
        self.handlers["getTokenAccountsByOwner"] = lambda params: {"context": {"slot": 1}, "value": []}

    def _post(self, url, json=None, headers=None, timeout=None):
        self.calls.append((url, json["method"], json["params"]))
        if url in self.down:
            raise requests.ConnectionError(f"cannot reach {url}")

        handler = self.handlers.get(json["method"])
        response = MagicMock()
        if handler is None:
            response.json.return_value = {
                "jsonrpc": "2.0",
                "id": json["id"],
                "error": {"code": -32601, "message": "Method not found"},
            }
        else:
            result = handler(json["params"]) if callable(handler) else handler
            response.json.return_value = {"jsonrpc": "2.0", "id": json["id"], "result": result}
        return response

    def methods_called(self):
        return [method for _, method, _ in self.calls]

    def add_transaction(self, tx, *addresses):
        signature = tx["transaction"]["signatures"][0]
        self.transactions[signature] = tx
        for address in addresses:
            self.signatures.setdefault(address, []).insert(0, signature)

    def set_balance(self, owner_balances, mint=TOKEN_MINT):
        """Serve ``getTokenAccountsByOwner`` from ``{owner: ui_amount}``."""

        def handler(params):
            owner, filter_ = params[0], params[1]
            if "mint" in filter_ and filter_["mint"] != mint:
                return {"context": {"slot": 1}, "value": []}
            amount = owner_balances.get(owner)
            if amount is None:
                return {"context": {"slot": 1}, "value": []}
            return {"context": {"slot": 1}, "value": [token_account(mint, owner, amount)]}

        self.handlers["getTokenAccountsByOwner"] = handler


def token_account(mint, owner, ui_amount, decimals=9, pubkey=None):
    return {
        "pubkey": pubkey or random_address(),
        "account": {
            "data": {
                "program": "spl-token",
                "parsed": {
                    "type": "account",
                    "info": {
                        "mint": mint,
                        "owner": owner,
                        "tokenAmount": {
                            "amount": str(int(ui_amount * 10**decimals)),
                            "decimals": decimals,
                            "uiAmount": ui_amount,
                        },
                    },
                },
            },
            "owner": TOKEN_PROGRAM,
        },
    }


def transfer_tx(
    buyer,
    receiver,
    reference,
    amount,
    memo,
    mint=TOKEN_MINT,
    signature=None,
    receiver_pre=5_000_000_000_000,
    buyer_pre=900_000_000_000_000,
    err=None,
    include_receiver_key=True,
):
    """A jsonParsed ``getTransaction`` result for an SPL transferChecked with a memo."""
    signature = signature or random_signature()
    buyer_ata = random_address()
    receiver_ata = random_address()
    keys = [
        {"pubkey": buyer, "signer": True, "writable": True, "source": "transaction"},
        {"pubkey": buyer_ata, "signer": False, "writable": True, "source": "transaction"},
        {"pubkey": receiver_ata, "signer": False, "writable": True, "source": "transaction"},
        {"pubkey": mint, "signer": False, "writable": False, "source": "transaction"},
        {"pubkey": reference, "signer": False, "writable": False, "source": "transaction"},
        {"pubkey": MEMO_PROGRAM, "signer": False, "writable": False, "source": "transaction"},
        {"pubkey": TOKEN_PROGRAM, "signer": False, "writable": False, "source": "transaction"},
    ]
    if include_receiver_key:
        keys.insert(3, {"pubkey": receiver, "signer": False, "writable": False, "source": "transaction"})
    receiver_index = 2

    def balance(index, owner, raw):
        return {
            "accountIndex": index,
            "mint": mint,
            "owner": owner,
            "programId": TOKEN_PROGRAM,
            "uiTokenAmount": {"amount": str(raw), "decimals": 9, "uiAmount": raw / 10**9},
        }

    return {
        "slot": 312_456_789,
        "blockTime": int(time.time()),
        "transaction": {
            "signatures": [signature],
            "message": {"accountKeys": keys, "instructions": []},
        },
        "meta": {
            "err": err,
            "fee": 5000,
            "logMessages": [
                f"Program {MEMO_PROGRAM} invoke [1]",
                f'Program log: Memo (len {len(memo)}): "{memo}"',
                f"Program {MEMO_PROGRAM} consumed 7351 of 400000 compute units",
                f"Program {TOKEN_PROGRAM} invoke [1]",
                "Program log: Instruction: TransferChecked",
                f"Program {TOKEN_PROGRAM} success",
            ],
            "preTokenBalances": [
                balance(1, buyer, buyer_pre),
                balance(receiver_index, receiver, receiver_pre),
            ],
            "postTokenBalances": [
                balance(1, buyer, buyer_pre - amount),
                balance(receiver_index, receiver, receiver_pre + amount),
            ],
        },
    }


@pytest.fixture
def treasury():
    return random_address()


@pytest.fixture
def wallet():
    return Wallet()


@pytest.fixture
def make_wallet():
    return Wallet


@pytest.fixture
def new_address():
    return random_address


@pytest.fixture
def new_signature():
    return random_signature


@pytest.fixture
def make_transfer():
    return transfer_tx


@pytest.fixture
def make_token_account():
    return token_account


@pytest.fixture
def fake_solana():
    return FakeSolana()


@pytest.fixture
def chat_session():
    return MagicMock(spec=requests.Session)


@pytest.fixture
def media_dir(tmp_path):
    directory = tmp_path / "vip"
    directory.mkdir()
    for name in ("vip-01.png", "vip-02.png", "vip-03.png", "pp-01.png", "pp-02.png", "pp-03.png"):
        (directory / name).write_bytes(b"\x89PNG\r\n\x1a\n" + name.encode("ascii") * 64)
    return directory


@pytest.fixture
def test_config(treasury, media_dir):
    """Configuration overrides shared by every app fixture."""
    return {
        "FLASK_ENV": "testing",
        "SESSION_SECRET": "test-session-secret-0123456789abcdef",
        "SESSION_COOKIE_SECURE": False,
        "TOKEN_MINT": TOKEN_MINT,
        "PAY_RECEIVER": treasury,
        "SOLANA_RPC_PRIMARY": PRIMARY_RPC,
        "SOLANA_RPC_FALLBACK": None,
        "HELIUS_API_KEY": None,
        "SOLANA_RPC_PUBLIC": PUBLIC_RPC,
        "RPC_TIMEOUT_SECONDS": 2,
        "DATABASE_URL": "sqlite:///:memory:",
        "REDIS_URL": None,
        "WEBHOOK_SECRET": None,
        "MEDIA_DIR": str(media_dir),
        "OPENAI_API_KEY": "sk-test",
        "CHAT_API_URL": "http://chat.test/v1/chat/completions",
        "RATE_LIMIT_ENABLED": False,
        "FORCE_HTTPS": False,
    }


@pytest.fixture
def make_app(test_config, fake_solana, chat_session):
    """Factory building an app with scripted RPC and chat upstreams."""
    from crushai.config import get_config
    from crushai.factory import create_app
    from crushai.services import build_services

    apps = []

    def _make(**overrides):
        cfg = get_config()
        cfg.update(test_config)
        cfg.update(overrides)
        services = build_services(cfg, rpc_session=fake_solana.session, chat_session=chat_session)
        app = create_app(cfg, services=services)
        apps.append(app)
        return app

    yield _make

    for app in apps:
        app.extensions["crushai"].close()


@pytest.fixture
def app(make_app):
    """Create and configure a test Flask application instance."""
    return make_app()


@pytest.fixture
def client(app):
    """Create a test client for the Flask application."""
    return app.test_client()


@pytest.fixture
def services(app):
    return app.extensions["crushai"]


# Pytest configuration hooks
def pytest_collection_modifyitems(config, items):
    """Modify test collection to add markers automatically."""
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast tests of a single module")
    config.addinivalue_line("markers", "integration: tests through the HTTP layer")
