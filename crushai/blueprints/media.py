"""
Media Blueprint - gated delivery of protected images

A wallet may view an item when it has an entitlement for it or holds at least
the item's ``freeIfHold`` amount (``NSFW_HOLD`` when unset). The balance is read
from the chain on every request.
"""

import logging
import os

from flask import Blueprint, send_from_directory

from crushai.blueprints import require_session
from crushai.errors import ForbiddenError, NotFoundError
from crushai.security import limiter
from crushai.services import get_services

logger = logging.getLogger(__name__)

media_bp = Blueprint("media", __name__)


@media_bp.route("/<item_id>", methods=["GET", "HEAD"])
@limiter.limit("40/minute")
def media(item_id: str):
    session = require_session()
    wallet = str(session["wallet"])

    services = get_services()
    item = services.catalog.get_item(item_id)
    if item is None:
        raise NotFoundError("not_found", "not found")

    need_hold = item.free_if_hold if item.free_if_hold is not None else services.config.get("NSFW_HOLD", 2000)
    entitled = services.storage.entitlements.has(wallet, item.id)
    if not entitled:
        entitled = services.oracle.get_balance(wallet, services.mint) >= need_hold
    if not entitled:
        raise ForbiddenError("locked", "locked")

    directory = os.path.abspath(services.config.get("MEDIA_DIR") or os.path.join("protected", "xenia", "vip"))
    response = send_from_directory(directory, item.file, conditional=True, max_age=0)
    response.headers["Cache-Control"] = "private, no-store, max-age=0, must-revalidate"
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Robots-Tag"] = "noindex, nofollow"
    response.headers["Vary"] = "Cookie"
    return response
