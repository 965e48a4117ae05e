"""
Payments Blueprint - intents, verification, webhook and completion stream
"""

import hmac
import json
import logging
import time

from flask import Blueprint, Response, jsonify, request

from crushai.audit_logger import get_audit_logger
from crushai.blueprints import json_body
from crushai.errors import AuthError, NotFoundError, ValidationError
from crushai.kv import completion_channel, completion_key
from crushai.security import limiter
from crushai.services import get_services

logger = logging.getLogger(__name__)

pay_bp = Blueprint("pay", __name__)

HEARTBEAT_SECONDS = 15


@pay_bp.errorhandler(NotFoundError)
def unknown_item(e: NotFoundError):
    # Unknown catalog ids are a bad request on the payment endpoints.
    return jsonify(e.to_dict()), 400


@pay_bp.route("/create", methods=["POST"])
@limiter.limit("30/minute")
def create():
    """Create a payment intent: ``{wallet, itemId[, ref]}``."""
    data = json_body()
    intent = get_services().intents.create(data.get("wallet"), data.get("itemId"), data.get("ref") or None)
    get_audit_logger().log_payment_created(str(data.get("wallet")), intent.itemId, intent.reference)
    return jsonify({"ok": True, **intent.to_dict()})


@pay_bp.route("/verify", methods=["GET"])
@limiter.limit("60/minute")
def verify():
    """
    Poll for an on-chain payment.

    ``no-match`` and ``no-sigs`` are normal outcomes returned with 200; the
    client keeps polling until the reference expires.
    """
    result = get_services().verifier.verify(
        request.args.get("wallet"),
        request.args.get("itemId"),
        request.args.get("reference"),
    )
    return jsonify(result.to_dict())


@pay_bp.route("/webhook", methods=["POST"])
@limiter.exempt
def webhook():
    """Receive indexer pushes. Always acknowledged once authorized."""
    services = get_services()
    secret = services.config.get("WEBHOOK_SECRET")
    if secret:
        supplied = request.headers.get("Authorization", "")
        if not hmac.compare_digest(supplied.encode("utf-8"), secret.encode("utf-8")):
            get_audit_logger().log_security_event(
                "webhook_auth_failed", "medium", {"ip": request.remote_addr}
            )
            raise AuthError("auth_required", "auth required")

    summary = services.webhook.process(request.get_json(silent=True))
    logger.info(f"Webhook processed: {summary}")
    return jsonify({"ok": True, **summary})


def _frame(event) -> str:
    return f"data: {json.dumps(event)}\n\n"


@pay_bp.route("/subscribe", methods=["GET"])
def subscribe():
    """Server-sent events for a reference's completion."""
    reference = (request.args.get("ref") or "").strip()
    if not reference:
        raise ValidationError("reference_required", "ref required")

    services = get_services()
    kv = services.storage.kv
    max_seconds = services.config.get("PAY_REFERENCE_TTL_SECONDS", 15 * 60)

    def events():
        with kv.subscribe(completion_channel(reference)) as subscription:
            done = kv.get(completion_key(reference))
            if done is not None:
                yield _frame(done)
                return
            deadline = time.monotonic() + max_seconds
            while time.monotonic() < deadline:
                event = subscription.get(timeout=HEARTBEAT_SECONDS)
                if event is None:
                    yield ":hb\n\n"
                    continue
                yield _frame(event)
                return

    return Response(
        events(),
        mimetype="text/event-stream",
        headers={"Cache-Control": "no-store", "X-Accel-Buffering": "no"},
    )
