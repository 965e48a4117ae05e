"""
Chat Blueprint - token-gated companion chat

Each message carries its own one-shot wallet proof (``<App>|chat|<ts>``); the
cookie session is not consulted here.
"""

import logging

from flask import Blueprint, Response, jsonify, request, stream_with_context

from crushai.audit_logger import get_audit_logger
from crushai.blueprints import json_body
from crushai.challenge import validate_wallet
from crushai.chat import MAX_INPUT_LENGTH
from crushai.errors import (
    AuthError,
    ConfigError,
    CooldownError,
    CrushError,
    ForbiddenError,
    UnavailableError,
    UpstreamError,
    ValidationError,
)
from crushai.kv import cooldown_key
from crushai.security import limiter
from crushai.services import get_services
from crushai.signatures import decode_signature

logger = logging.getLogger(__name__)

chat_bp = Blueprint("chat", __name__)

_TRUTHY = {"1", "true", "yes", "y"}


class MessageTooLong(CrushError):
    status_code = 413
    code = "message_too_long"


def _stream_requested(data: dict) -> bool:
    raw = request.args.get("stream")
    if raw is None:
        raw = data.get("stream", False)
    return str(raw).lower() in _TRUTHY


@chat_bp.route("/chat", methods=["POST"])
@limiter.limit("6 per 15 seconds")
def chat():
    services = get_services()
    cfg = services.config
    if not services.chat.api_key:
        raise ConfigError("OPENAI_API_KEY")
    data = json_body()

    message = data.get("message")
    if not isinstance(message, str) or not message.strip():
        raise ValidationError("message_required", "Missing message")
    if len(message) > MAX_INPUT_LENGTH:
        raise MessageTooLong(message="Message too long")

    try:
        wallet = validate_wallet(data.get("wallet"))
    except ValidationError:
        raise AuthError("wallet_required", "Wallet required") from None

    proof = data.get("auth") if isinstance(data.get("auth"), dict) else {}
    signature = decode_signature(proof.get("sig"))
    try:
        services.challenges.verify_chat_proof(wallet, proof.get("msg"), signature)
    except AuthError:
        get_audit_logger().log_signature_verification(wallet, False, "chat")
        raise

    cooldown = int(cfg.get("CHAT_COOLDOWN_SECONDS", 10))
    if services.storage.kv.get(cooldown_key(wallet)) is not None:
        raise CooldownError(message=f"Cooldown active. Wait up to {cooldown}s.")

    try:
        hold = services.oracle.get_balance(wallet, services.mint)
    except UpstreamError:
        raise UnavailableError("hold_check_failed", "Hold check failed (RPC unavailable). Try again.") from None
    min_hold = cfg.get("MIN_HOLD", 500)
    if hold < min_hold:
        raise ForbiddenError("insufficient_hold", f"Hold at least {min_hold} tokens to chat")

    if not services.storage.kv.add(cooldown_key(wallet), 1, ttl=cooldown):
        raise CooldownError(message=f"Cooldown active. Wait up to {cooldown}s.")

    persona = data.get("persona") if isinstance(data.get("persona"), str) else "Xenia"
    try:
        temperature = float(data.get("temperature", 0.9))
    except (TypeError, ValueError):
        temperature = 0.9
    messages = services.chat.build_messages(persona, data.get("history"), message)

    if _stream_requested(data):
        return Response(
            stream_with_context(services.chat.stream(messages, temperature)),
            mimetype="text/event-stream",
            headers={"Cache-Control": "no-cache, no-transform", "X-Accel-Buffering": "no"},
        )

    result = services.chat.complete(messages, temperature)
    return jsonify({**result, "persona": persona})
