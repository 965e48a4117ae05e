"""Configuration management for CrushAI.

Centralises environment variable loading and validation logic while keeping the
public API intentionally simple.
"""

from __future__ import annotations

import os
from typing import Any, Mapping, Optional, TypedDict

_TRUTHY_VALUES = {"1", "true", "yes", "on"}

DEFAULT_TOKEN_MINT = "A4R4DhbxhKxc6uNiUaswecybVJuAPwBWV6zQu2gJJskG"
PUBLIC_RPC_URL = "https://api.mainnet-beta.solana.com"


class AppConfig(TypedDict):
    """Typed representation of the application's configuration."""

    APP_NAME: str
    APP_VERSION: str
    FLASK_ENV: str
    MEMO_PREFIX: str
    SESSION_SECRET: Optional[str]
    SESSION_COOKIE_NAME: str
    SESSION_COOKIE_DOMAIN: Optional[str]
    SESSION_COOKIE_SECURE: bool
    SESSION_TTL_SECONDS: int
    SESSION_RENEW_WINDOW_SECONDS: int
    CHALLENGE_SKEW_SECONDS: int
    CHAT_PROOF_WINDOW_MS: int
    TOKEN_MINT: str
    DEFAULT_MINT_DECIMALS: int
    PAY_RECEIVER: str
    PAY_LABEL: str
    PAY_REFERENCE_TTL_SECONDS: int
    PAY_SIGNATURE_SCAN_LIMIT: int
    PAY_UNIVERSAL_LINK_BASE: str
    WEBHOOK_SECRET: Optional[str]
    SOLANA_RPC_PRIMARY: Optional[str]
    SOLANA_RPC_FALLBACK: Optional[str]
    HELIUS_API_KEY: Optional[str]
    SOLANA_RPC_PUBLIC: str
    RPC_TIMEOUT_SECONDS: int
    MIN_HOLD: int
    NSFW_HOLD: int
    MEDIA_DIR: str
    CATALOG_PATH: Optional[str]
    DATABASE_URL: Optional[str]
    REDIS_URL: Optional[str]
    OPENAI_API_KEY: Optional[str]
    CHAT_MODEL: str
    CHAT_API_URL: str
    CHAT_COOLDOWN_SECONDS: int
    RATE_LIMIT_ENABLED: bool
    RATELIMIT_DEFAULT: str
    FORCE_HTTPS: bool
    LOG_LEVEL: str


def _get_env_bool(name: str, default: bool) -> bool:
    """Return an environment variable as a boolean."""

    raw_value = os.getenv(name)
    if raw_value is None:
        return default
    return raw_value.strip().lower() in _TRUTHY_VALUES


def _get_env_int(name: str, default: int) -> int:
    """Return an environment variable as an integer, raising on invalid input."""

    raw_value = os.getenv(name)
    if raw_value is None or raw_value == "":
        return default

    try:
        return int(raw_value)
    except ValueError as exc:
        raise ValueError(f"Environment variable {name} must be an integer (got {raw_value!r})") from exc


def get_config() -> AppConfig:
    """Load application configuration from environment variables."""

    flask_env = os.getenv("FLASK_ENV", "development")
    return {
        # Application
        "APP_NAME": os.getenv("APP_NAME", "CrushAI"),
        "APP_VERSION": os.getenv("APP_VERSION", "1.0.0-alpha"),
        "FLASK_ENV": flask_env,
        "MEMO_PREFIX": os.getenv("MEMO_PREFIX", "crush"),
        # Session cookie
        "SESSION_SECRET": os.getenv("SESSION_SECRET"),
        "SESSION_COOKIE_NAME": os.getenv("SESSION_COOKIE_NAME", "crush_ses"),
        "SESSION_COOKIE_DOMAIN": os.getenv("SESSION_COOKIE_DOMAIN") or None,
        "SESSION_COOKIE_SECURE": _get_env_bool("SESSION_COOKIE_SECURE", True),
        "SESSION_TTL_SECONDS": _get_env_int("SESSION_TTL_SECONDS", 60 * 60 * 24 * 7),
        "SESSION_RENEW_WINDOW_SECONDS": _get_env_int("SESSION_RENEW_WINDOW_SECONDS", 60 * 60 * 24),
        # Wallet proofs
        "CHALLENGE_SKEW_SECONDS": _get_env_int("CHALLENGE_SKEW_SECONDS", 600),
        "CHAT_PROOF_WINDOW_MS": _get_env_int("CHAT_PROOF_WINDOW_MS", 60_000),
        # Token + payments
        "TOKEN_MINT": os.getenv("TOKEN_MINT") or os.getenv("CRUSH_MINT") or DEFAULT_TOKEN_MINT,
        "DEFAULT_MINT_DECIMALS": _get_env_int("DEFAULT_MINT_DECIMALS", 9),
        "PAY_RECEIVER": os.getenv("PAY_RECEIVER") or os.getenv("TREASURY") or "",
        "PAY_LABEL": os.getenv("PAY_LABEL", "Crush AI"),
        "PAY_REFERENCE_TTL_SECONDS": _get_env_int("PAY_REFERENCE_TTL_SECONDS", 15 * 60),
        "PAY_SIGNATURE_SCAN_LIMIT": _get_env_int("PAY_SIGNATURE_SCAN_LIMIT", 40),
        "PAY_UNIVERSAL_LINK_BASE": os.getenv(
            "PAY_UNIVERSAL_LINK_BASE", "https://phantom.app/ul/v1/solana-pay"
        ),
        "WEBHOOK_SECRET": os.getenv("WEBHOOK_SECRET") or None,
        # Solana RPC (priority order: primary, fallback, premium indexer, public)
        "SOLANA_RPC_PRIMARY": os.getenv("SOLANA_RPC_PRIMARY") or None,
        "SOLANA_RPC_FALLBACK": os.getenv("SOLANA_RPC_FALLBACK") or None,
        "HELIUS_API_KEY": os.getenv("HELIUS_API_KEY") or None,
        "SOLANA_RPC_PUBLIC": os.getenv("SOLANA_RPC_PUBLIC", PUBLIC_RPC_URL),
        "RPC_TIMEOUT_SECONDS": _get_env_int("RPC_TIMEOUT_SECONDS", 8),
        # Gating thresholds
        "MIN_HOLD": _get_env_int("MIN_HOLD", 500),
        "NSFW_HOLD": _get_env_int("NSFW_HOLD", 2000),
        "MEDIA_DIR": os.getenv("MEDIA_DIR", os.path.join("protected", "xenia", "vip")),
        "CATALOG_PATH": os.getenv("CATALOG_PATH") or None,
        # Storage
        "DATABASE_URL": os.getenv("DATABASE_URL") or None,
        "REDIS_URL": os.getenv("REDIS_URL") or os.getenv("KV_URL") or None,
        # Chat completion upstream
        "OPENAI_API_KEY": os.getenv("OPENAI_API_KEY") or None,
        "CHAT_MODEL": os.getenv("CHAT_MODEL", "gpt-4o-mini"),
        "CHAT_API_URL": os.getenv("CHAT_API_URL", "https://api.openai.com/v1/chat/completions"),
        "CHAT_COOLDOWN_SECONDS": _get_env_int("CHAT_COOLDOWN_SECONDS", 10),
        # Rate limiting
        "RATE_LIMIT_ENABLED": _get_env_bool("RATE_LIMIT_ENABLED", True),
        "RATELIMIT_DEFAULT": os.getenv("RATELIMIT_DEFAULT", "200/hour"),
        "FORCE_HTTPS": _get_env_bool("FORCE_HTTPS", flask_env.lower() == "production"),
        # Logging
        "LOG_LEVEL": os.getenv("LOG_LEVEL", "INFO"),
    }


def rpc_endpoints(config: Mapping[str, Any]) -> list:
    """Return the prioritized, de-duplicated list of JSON-RPC endpoints."""

    helius_key = config.get("HELIUS_API_KEY")
    candidates = [
        config.get("SOLANA_RPC_PRIMARY"),
        config.get("SOLANA_RPC_FALLBACK"),
        f"https://mainnet.helius-rpc.com/?api-key={helius_key}" if helius_key else None,
        config.get("SOLANA_RPC_PUBLIC") or PUBLIC_RPC_URL,
    ]
    endpoints = []
    for url in candidates:
        if url and url not in endpoints:
            endpoints.append(url)
    return endpoints


def validate_config(config: Mapping[str, Any]) -> bool:
    """Validate critical configuration values.

    Args:
        config: Configuration mapping to validate.

    Returns:
        True if configuration is valid, raises ValueError otherwise.
    """

    if config.get("FLASK_ENV") == "production":
        secret = config.get("SESSION_SECRET") or ""
        if not secret:
            raise ValueError("SESSION_SECRET must be set for production!")
        if len(secret) < 32:
            raise ValueError("SESSION_SECRET must be at least 32 characters in production!")

        if not config.get("PAY_RECEIVER"):
            raise ValueError("PAY_RECEIVER must be set for production!")

        if not config.get("DATABASE_URL"):
            import warnings

            warnings.warn(
                "DATABASE_URL not set - entitlements will not survive a restart!",
                stacklevel=2,
            )

        if not config.get("REDIS_URL"):
            import warnings

            warnings.warn(
                "REDIS_URL not set - payment references are process-local!",
                stacklevel=2,
            )

    return True
