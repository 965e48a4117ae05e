"""
Signed session tokens and the session cookie.

Token format: ``v1.<payloadB64url>.<sigB64url>`` where the payload is
``{"wallet", "iat", "exp", "v": 1}`` and the signature is HMAC-SHA256 over
``"v1." + payloadB64url`` keyed with the server secret.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
import time
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from flask import Request, Response

from crushai.errors import ConfigError, ValidationError

logger = logging.getLogger(__name__)

TOKEN_VERSION = 1
VERSION_TAG = "v1"


def b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def b64url_decode(data: str) -> bytes:
    padding = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(data + padding)


class SessionTokenCodec:
    """Stateless issue/verify of HMAC-signed session tokens."""

    def __init__(self, secret: Optional[str], clock: Callable[[], float] = time.time):
        self._secret = secret.encode("utf-8") if secret else b""
        self._clock = clock

    def _now(self) -> int:
        return int(self._clock())

    def _sign(self, payload_b64: str) -> bytes:
        return hmac.new(self._secret, f"{VERSION_TAG}.{payload_b64}".encode("ascii"), hashlib.sha256).digest()

    def issue(self, wallet: str, ttl_seconds: int) -> str:
        if not self._secret:
            raise ConfigError("SESSION_SECRET")
        if not wallet:
            raise ValidationError("wallet_required", "wallet required")

        now = self._now()
        payload = {"wallet": wallet, "iat": now, "exp": now + int(ttl_seconds), "v": TOKEN_VERSION}
        payload_b64 = b64url_encode(json.dumps(payload, separators=(",", ":")).encode("utf-8"))
        return f"{VERSION_TAG}.{payload_b64}.{b64url_encode(self._sign(payload_b64))}"

    def verify(self, token: Optional[str]) -> Optional[Dict[str, Any]]:
        """Return the payload of a valid, unexpired token, else ``None``. Never raises."""
        if not self._secret or not token or not isinstance(token, str):
            return None

        parts = token.split(".")
        if len(parts) != 3:
            return None
        version, payload_b64, sig_b64 = parts
        if version != VERSION_TAG or not payload_b64 or not sig_b64:
            return None

        # Compare the canonical encodings: distinct strings may decode to the same bytes.
        expected = b64url_encode(self._sign(payload_b64)).encode("ascii")
        if not hmac.compare_digest(expected, sig_b64.encode("utf-8")):
            return None

        try:
            payload = json.loads(b64url_decode(payload_b64).decode("utf-8"))
        except (ValueError, UnicodeError):
            return None

        if not isinstance(payload, dict) or not payload.get("wallet"):
            return None
        exp = payload.get("exp")
        if not isinstance(exp, (int, float)) or self._now() > exp:
            return None
        return payload

    def remaining(self, payload: Mapping[str, Any]) -> int:
        return int(payload.get("exp", 0)) - self._now()


class SessionManager:
    """Binds the codec to the HTTP cookie and applies sliding renewal."""

    def __init__(
        self,
        codec: SessionTokenCodec,
        cookie_name: str = "crush_ses",
        ttl_seconds: int = 60 * 60 * 24 * 7,
        renew_window_seconds: int = 60 * 60 * 24,
        domain: Optional[str] = None,
        secure: bool = True,
    ):
        self.codec = codec
        self.cookie_name = cookie_name
        self.ttl_seconds = ttl_seconds
        self.renew_window_seconds = renew_window_seconds
        self.domain = domain
        self.secure = secure

    @classmethod
    def from_config(cls, cfg: Mapping[str, Any]) -> "SessionManager":
        return cls(
            SessionTokenCodec(cfg.get("SESSION_SECRET")),
            cookie_name=cfg.get("SESSION_COOKIE_NAME", "crush_ses"),
            ttl_seconds=int(cfg.get("SESSION_TTL_SECONDS", 60 * 60 * 24 * 7)),
            renew_window_seconds=int(cfg.get("SESSION_RENEW_WINDOW_SECONDS", 60 * 60 * 24)),
            domain=cfg.get("SESSION_COOKIE_DOMAIN"),
            secure=bool(cfg.get("SESSION_COOKIE_SECURE", True)),
        )

    def issue(self, wallet: str) -> str:
        return self.codec.issue(wallet, self.ttl_seconds)

    def set_cookie(self, response: Response, token: str) -> None:
        response.set_cookie(
            self.cookie_name,
            token,
            max_age=self.ttl_seconds,
            path="/",
            domain=self.domain,
            secure=self.secure,
            httponly=True,
            samesite="Lax",
        )

    def clear_cookie(self, response: Response) -> None:
        response.set_cookie(
            self.cookie_name,
            "",
            max_age=0,
            path="/",
            domain=self.domain,
            secure=self.secure,
            httponly=True,
            samesite="Lax",
        )

    def read(self, request: Request) -> Tuple[Optional[Dict[str, Any]], Optional[str]]:
        """Return ``(payload, renewed_token)`` for the request's session cookie.

        ``renewed_token`` is set when the session was inside the renewal window
        and has been reissued; the caller must write it back with ``set_cookie``.
        """
        payload = self.codec.verify(request.cookies.get(self.cookie_name))
        if payload is None:
            return None, None

        if self.codec.remaining(payload) > self.renew_window_seconds:
            return payload, None

        try:
            token = self.issue(payload["wallet"])
        except (ConfigError, ValidationError):
            logger.exception("Sliding session renewal failed")
            return payload, None
        renewed = self.codec.verify(token) or payload
        return renewed, token
