"""
Sign-in challenges and one-shot chat proofs.

Challenges are not stored: the client returns ``(wallet, nonce, ts)`` and the
exact message is rebuilt from them. The only freshness guard is the timestamp
skew window, so a captured ``(message, signature)`` pair can be replayed until
the window elapses.
"""

from __future__ import annotations

import secrets
import time
from dataclasses import asdict, dataclass
from typing import Any, Callable, Optional, Union

from crushai.errors import AuthError, ValidationError
from crushai.signatures import verify_signature

MIN_WALLET_LENGTH = 25
NONCE_BYTES = 16
DEFAULT_SKEW_MS = 10 * 60 * 1000
DEFAULT_CHAT_WINDOW_MS = 60 * 1000


def _now_ms() -> float:
    return time.time() * 1000


def validate_wallet(wallet: Any) -> str:
    wallet = str(wallet or "").strip()
    if len(wallet) < MIN_WALLET_LENGTH:
        raise ValidationError("wallet_required", "wallet required")
    return wallet


def build_challenge_message(app_name: str, wallet: str, nonce: str, ts: Union[int, str]) -> str:
    return "\n".join(
        [
            f"{app_name} Sign-In",
            f"Wallet: {wallet}",
            f"Nonce: {nonce}",
            f"TS: {ts}",
        ]
    )


def build_chat_message(app_name: str, ts: Union[int, str]) -> str:
    return f"{app_name}|chat|{ts}"


def parse_timestamp(ts: Any) -> Optional[float]:
    """Parse a client-supplied epoch-millis timestamp; ``None`` if unusable."""
    if isinstance(ts, bool) or ts is None:
        return None
    try:
        value = float(ts)
    except (TypeError, ValueError):
        return None
    if value != value or value in (float("inf"), float("-inf")):
        return None
    return value


def canonical_ts(ts: Any) -> str:
    """Render a timestamp the way it was embedded in the signed message."""
    if isinstance(ts, float) and ts.is_integer():
        return str(int(ts))
    return str(ts)


def within_skew(ts_ms: float, now_ms: float, limit_ms: float) -> bool:
    return abs(now_ms - ts_ms) <= limit_ms


@dataclass
class Challenge:
    wallet: str
    nonce: str
    ts: int
    message: str

    def to_dict(self) -> dict:
        return asdict(self)


class ChallengeIssuer:
    """Issues and checks wallet sign-in challenges."""

    def __init__(
        self,
        app_name: str = "CrushAI",
        skew_ms: float = DEFAULT_SKEW_MS,
        chat_window_ms: float = DEFAULT_CHAT_WINDOW_MS,
        clock_ms: Callable[[], float] = _now_ms,
    ):
        self.app_name = app_name
        self.skew_ms = skew_ms
        self.chat_window_ms = chat_window_ms
        self._clock_ms = clock_ms

    def issue(self, wallet: Any) -> Challenge:
        wallet = validate_wallet(wallet)
        nonce = secrets.token_hex(NONCE_BYTES)
        ts = int(self._clock_ms())
        return Challenge(wallet, nonce, ts, build_challenge_message(self.app_name, wallet, nonce, ts))

    def verify_response(self, wallet: str, nonce: str, ts: Any, signature: Optional[bytes]) -> str:
        """Check a signed challenge; returns the wallet or raises AuthError."""
        ts_ms = parse_timestamp(ts)
        if ts_ms is None or not within_skew(ts_ms, self._clock_ms(), self.skew_ms):
            raise AuthError("stale_challenge", "auth required")

        message = build_challenge_message(self.app_name, wallet, nonce, canonical_ts(ts))
        if not verify_signature(message, signature, wallet):
            raise AuthError("bad_signature", "auth required")
        return wallet

    def verify_chat_proof(self, wallet: str, message: Any, signature: Optional[bytes]) -> str:
        """Check a one-shot ``<App>|chat|<ts>`` proof of wallet control."""
        if not isinstance(message, str):
            raise AuthError("bad_chat_proof", "auth required")
        prefix = build_chat_message(self.app_name, "")
        if not message.startswith(prefix):
            raise AuthError("bad_chat_proof", "auth required")

        ts_ms = parse_timestamp(message[len(prefix):])
        if ts_ms is None or not within_skew(ts_ms, self._clock_ms(), self.chat_window_ms):
            raise AuthError("stale_chat_proof", "auth required")

        if not verify_signature(message, signature, wallet):
            raise AuthError("bad_signature", "auth required")
        return wallet
