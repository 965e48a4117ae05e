"""
Authentication Blueprint - wallet sign-in sessions

Challenge/response sign-in with an Ed25519 wallet signature, followed by a
signed session cookie.
"""

import logging

from flask import Blueprint, jsonify, request

from crushai.audit_logger import get_audit_logger
from crushai.blueprints import json_body, read_session
from crushai.challenge import validate_wallet
from crushai.errors import AuthError, ValidationError
from crushai.security import limiter
from crushai.services import get_services
from crushai.signatures import decode_signature

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__)


@auth_bp.route("/challenge", methods=["POST"])
@limiter.limit("30/minute")
def challenge():
    """Issue a sign-in challenge for a wallet."""
    data = json_body()
    wallet = data.get("wallet") or request.args.get("wallet")
    issued = get_services().challenges.issue(wallet)
    return jsonify({"ok": True, **issued.to_dict()})


@auth_bp.route("/verify", methods=["POST"])
@limiter.limit("20/minute")
def verify():
    """
    Verify a signed challenge and start a session.

    Body: ``{wallet, signatureBase64, nonce, ts}``. Failures are reported as a
    generic authentication error.
    """
    services = get_services()
    audit = get_audit_logger()
    data = json_body()

    wallet = validate_wallet(data.get("wallet"))
    nonce = data.get("nonce")
    if not isinstance(nonce, str) or not nonce:
        raise ValidationError("nonce_required", "nonce required")
    if data.get("ts") is None:
        raise ValidationError("ts_required", "ts required")

    signature = decode_signature(data.get("signatureBase64", data.get("signature")))
    if signature is None:
        raise ValidationError("signature_required", "signature required")

    try:
        services.challenges.verify_response(wallet, nonce, data["ts"], signature)
    except AuthError:
        audit.log_signature_verification(wallet, False, "challenge")
        raise
    audit.log_signature_verification(wallet, True, "challenge")

    token = services.sessions.issue(wallet)
    payload = services.sessions.codec.verify(token) or {}
    audit.log_session_created(wallet, payload.get("exp", 0))

    response = jsonify({"ok": True, "wallet": wallet, "exp": payload.get("exp")})
    services.sessions.set_cookie(response, token)
    return response


@auth_bp.route("/me", methods=["GET"])
def me():
    """Report the current session; always 200."""
    payload = read_session()
    if payload is None:
        return jsonify({"authed": False})
    return jsonify({"authed": True, "wallet": payload["wallet"], "exp": payload["exp"]})


@auth_bp.route("/logout", methods=["POST"])
def logout():
    services = get_services()
    payload = services.sessions.codec.verify(request.cookies.get(services.sessions.cookie_name))
    get_audit_logger().log_session_destroyed(payload.get("wallet") if payload else None)

    response = jsonify({"ok": True})
    services.sessions.clear_cookie(response)
    return response
