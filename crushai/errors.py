"""Error taxonomy shared by services and HTTP handlers."""

from typing import Optional


class CrushError(Exception):
    """Base exception carrying an HTTP status and a stable error code."""

    status_code = 500
    code = "internal_error"

    def __init__(self, code: Optional[str] = None, message: Optional[str] = None):
        self.code = code or self.code
        self.message = message or self.code
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"ok": False, "error": self.code, "message": self.message}


class ValidationError(CrushError):
    """Missing or malformed wallet, item id, signature or parameter."""

    status_code = 400
    code = "bad_request"


class AuthError(CrushError):
    """Bad or expired signature, bad or expired session."""

    status_code = 401
    code = "auth_required"


class NotFoundError(CrushError):
    """Unknown item, bundle or resource."""

    status_code = 404
    code = "not_found"


class UpstreamError(CrushError):
    """Every configured RPC endpoint (or another upstream) failed."""

    status_code = 502
    code = "upstream_unavailable"


class ConfigError(CrushError):
    """A required setting is missing for the handler being executed."""

    status_code = 500

    def __init__(self, setting: str, message: Optional[str] = None):
        self.setting = setting
        super().__init__(f"missing_{setting.lower()}", message or f"{setting} not set")


class ForbiddenError(CrushError):
    """Authenticated, but not entitled and not holding enough."""

    status_code = 403
    code = "forbidden"


class CooldownError(CrushError):
    """Per-wallet cooldown still running."""

    status_code = 429
    code = "cooldown_active"


class UnavailableError(CrushError):
    """A gate could not be evaluated because its upstream is down."""

    status_code = 503
    code = "unavailable"
