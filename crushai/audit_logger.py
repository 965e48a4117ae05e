"""
Audit logging for CrushAI.

Security and payment events are written as JSON lines to the ``audit`` logger so
they can be shipped separately from application logs.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

_logger = logging.getLogger("audit")
_audit_logger = None  # Will be initialized by init_audit_logger


def init_audit_logger():
    """Initialize the audit logger."""
    global _audit_logger

    _logger.setLevel(logging.INFO)

    if not _logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s - AUDIT - %(levelname)s - %(message)s"))
        _logger.addHandler(handler)

    _audit_logger = AuditLogger()
    _logger.info("Audit logger initialized")


def get_audit_logger():
    """Get the audit logger instance."""
    global _audit_logger

    if _audit_logger is None:
        init_audit_logger()
    return _audit_logger


def _short(value: Optional[str], keep: int = 8) -> str:
    if not value:
        return "-"
    return value if len(value) <= keep * 2 else f"{value[:keep]}...{value[-4:]}"


class AuditLogger:
    """
    Audit logging interface for wallet authentication and payment events.

    Wallets and signatures are shortened before they reach the log line.
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or _logger

    def log_event(self, event: str, **details: Any) -> None:
        """Generic structured audit event."""

        payload = {"event": event, **details, "timestamp": datetime.now(timezone.utc).isoformat()}
        self.logger.info(json.dumps(payload, default=str))

    def log_signature_verification(self, wallet: str, success: bool, proof_type: str):
        """Log a wallet signature check (sign-in challenge or chat proof)."""
        status = "SUCCESS" if success else "FAILURE"
        self.logger.info(f"SIG_VERIFY | wallet={_short(wallet)} | type={proof_type} | status={status}")

    def log_session_created(self, wallet: str, expires_at: int, renewed: bool = False):
        """Log session cookie issuance."""
        kind = "SESSION_RENEWED" if renewed else "SESSION_CREATED"
        self.logger.info(f"{kind} | wallet={_short(wallet)} | exp={expires_at}")

    def log_session_destroyed(self, wallet: Optional[str], reason: str = "logout"):
        """Log session destruction."""
        self.logger.info(f"SESSION_DESTROYED | wallet={_short(wallet)} | reason={reason}")

    def log_payment_created(self, wallet: str, item_id: str, reference: str):
        """Log a payment intent."""
        self.logger.info(
            f"PAYMENT_CREATED | wallet={_short(wallet)} | item={item_id} | reference={_short(reference)}"
        )

    def log_payment_granted(self, wallet: str, item_ids: Iterable[str], signature: str, source: str):
        """Log entitlement grants backed by an on-chain transfer."""
        items = ",".join(item_ids)
        self.logger.info(
            f"PAYMENT_GRANTED | wallet={_short(wallet)} | items={items} | tx={_short(signature)} | source={source}"
        )

    def log_security_event(self, event_type: str, severity: str, details: Dict[str, Any]):
        """Log security event."""
        self.logger.warning(f"SECURITY_EVENT | type={event_type} | severity={severity} | details={details}")

    def log_rate_limit_exceeded(self, ip_address: str, endpoint: str):
        """Log rate limit violation."""
        self.logger.warning(f"RATE_LIMIT_EXCEEDED | ip={ip_address} | endpoint={endpoint}")

    def log_error(self, error_type: str, error_msg: str, context: Optional[Dict[str, Any]] = None):
        """Log application error."""
        msg = f"ERROR | type={error_type} | msg={error_msg}"
        if context:
            msg += f" | context={context}"
        self.logger.error(msg)
