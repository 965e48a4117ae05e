"""
Holdings Blueprint - uncached on-chain balance and tier lookups
"""

import logging

from flask import Blueprint, jsonify, request

from crushai.challenge import validate_wallet
from crushai.security import limiter
from crushai.services import get_services

logger = logging.getLogger(__name__)

holdings_bp = Blueprint("holdings", __name__)


@holdings_bp.route("/holdings/verify", methods=["GET"])
@limiter.limit("60/minute")
def verify_holdings():
    owner = validate_wallet(request.args.get("owner"))
    services = get_services()
    holdings = services.oracle.holdings(owner, services.mint)
    return jsonify({"owner": owner, "mint": services.mint, "amount": holdings.amount, "accounts": holdings.accounts})


@holdings_bp.route("/tier", methods=["GET"])
@limiter.limit("60/minute")
def tier():
    address = validate_wallet(request.args.get("address"))
    services = get_services()
    amount = services.oracle.get_balance(address, services.mint)
    return jsonify(
        {
            "address": address,
            "mint": services.mint,
            "uiAmount": amount,
            "tier": services.tiers.tier_for(amount),
        }
    )
