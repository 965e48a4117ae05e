"""HTTP blueprints and helpers shared between them."""

from typing import Any, Dict, Optional

from flask import after_this_request, request

from crushai.audit_logger import get_audit_logger
from crushai.errors import AuthError
from crushai.services import get_services


def json_body() -> Dict[str, Any]:
    """Request JSON object, or an empty dict for a missing or malformed body."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def read_session() -> Optional[Dict[str, Any]]:
    """Return the verified session payload, writing back a renewed cookie if needed."""
    sessions = get_services().sessions
    payload, renewed = sessions.read(request)
    if payload is not None and renewed is not None:
        get_audit_logger().log_session_created(payload["wallet"], payload.get("exp", 0), renewed=True)

        @after_this_request
        def write_cookie(response):
            sessions.set_cookie(response, renewed)
            return response

    return payload


def require_session() -> Dict[str, Any]:
    payload = read_session()
    if payload is None:
        raise AuthError("auth_required", "auth required")
    return payload
