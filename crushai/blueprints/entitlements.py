"""Entitlement listing."""

from flask import Blueprint, jsonify, request

from crushai.challenge import validate_wallet
from crushai.services import get_services

entitlements_bp = Blueprint("entitlements", __name__)


@entitlements_bp.route("/entitlements", methods=["GET"])
def list_entitlements():
    wallet = validate_wallet(request.args.get("wallet"))
    items = get_services().storage.entitlements.list(wallet)
    return jsonify({"wallet": wallet, "items": items})
