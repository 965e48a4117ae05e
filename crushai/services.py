"""
Service wiring.

Every stateful collaborator is built once in ``build_services`` and stored on
the Flask app; handlers reach them through ``get_services()``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional

import requests
from flask import current_app

from crushai.balances import BalanceOracle, TierTable
from crushai.catalog import Catalog
from crushai.challenge import ChallengeIssuer
from crushai.chat import ChatRelay
from crushai.config import rpc_endpoints
from crushai.entitlements import StorageConfig, resolve_storage
from crushai.payments import PaymentIntentRegistry, PaymentVerifier, WebhookProcessor
from crushai.rpc import SolanaRpcClient
from crushai.session import SessionManager

logger = logging.getLogger(__name__)

EXTENSION_KEY = "crushai"


@dataclass
class Services:
    config: Mapping[str, Any]
    storage: StorageConfig
    sessions: SessionManager
    challenges: ChallengeIssuer
    rpc: SolanaRpcClient
    oracle: BalanceOracle
    tiers: TierTable
    catalog: Catalog
    intents: PaymentIntentRegistry
    verifier: PaymentVerifier
    webhook: WebhookProcessor
    chat: ChatRelay

    @property
    def mint(self) -> str:
        return self.config["TOKEN_MINT"]

    def close(self) -> None:
        self.rpc.close()
        self.storage.close()


def build_services(
    cfg: Mapping[str, Any],
    storage: Optional[StorageConfig] = None,
    rpc_session: Optional[requests.Session] = None,
    chat_session: Optional[requests.Session] = None,
) -> Services:
    storage = storage or resolve_storage(cfg)
    catalog = Catalog.from_config(cfg)

    rpc = SolanaRpcClient(rpc_endpoints(cfg), timeout=cfg.get("RPC_TIMEOUT_SECONDS", 8), session=rpc_session)
    oracle = BalanceOracle(rpc, default_decimals=cfg.get("DEFAULT_MINT_DECIMALS", 9))

    reference_ttl = cfg.get("PAY_REFERENCE_TTL_SECONDS", 15 * 60)
    intents = PaymentIntentRegistry(
        catalog,
        storage.kv,
        receiver=cfg.get("PAY_RECEIVER") or "",
        mint=cfg["TOKEN_MINT"],
        memo_prefix=cfg.get("MEMO_PREFIX", "crush"),
        label=cfg.get("PAY_LABEL", "Crush AI"),
        reference_ttl=reference_ttl,
        universal_link_base=cfg.get("PAY_UNIVERSAL_LINK_BASE", "https://phantom.app/ul/v1/solana-pay"),
    )
    verifier = PaymentVerifier(
        rpc,
        oracle,
        intents,
        storage.entitlements,
        storage.kv,
        signature_limit=cfg.get("PAY_SIGNATURE_SCAN_LIMIT", 40),
        completion_ttl=reference_ttl,
    )
    webhook = WebhookProcessor(
        catalog,
        storage.kv,
        storage.entitlements,
        oracle,
        mint=cfg["TOKEN_MINT"],
        receiver=cfg.get("PAY_RECEIVER") or "",
        memo_prefix=cfg.get("MEMO_PREFIX", "crush"),
        completion_ttl=reference_ttl,
    )

    services = Services(
        config=cfg,
        storage=storage,
        sessions=SessionManager.from_config(cfg),
        challenges=ChallengeIssuer(
            app_name=cfg.get("APP_NAME", "CrushAI"),
            skew_ms=cfg.get("CHALLENGE_SKEW_SECONDS", 600) * 1000,
            chat_window_ms=cfg.get("CHAT_PROOF_WINDOW_MS", 60_000),
        ),
        rpc=rpc,
        oracle=oracle,
        tiers=TierTable(),
        catalog=catalog,
        intents=intents,
        verifier=verifier,
        webhook=webhook,
        chat=ChatRelay(
            cfg.get("CHAT_API_URL", "https://api.openai.com/v1/chat/completions"),
            cfg.get("OPENAI_API_KEY"),
            model=cfg.get("CHAT_MODEL", "gpt-4o-mini"),
            session=chat_session,
        ),
    )
    logger.info(
        f"Services ready: {len(rpc.endpoints)} RPC endpoint(s), kv={storage.kv.backend}, "
        f"durable_entitlements={storage.durable}"
    )
    return services


def get_services() -> Services:
    return current_app.extensions[EXTENSION_KEY]
