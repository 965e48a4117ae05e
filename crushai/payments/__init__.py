"""Payment intents, verification and webhook processing."""

from crushai.payments.intents import PaymentIntent, PaymentIntentRegistry
from crushai.payments.verifier import PaymentVerifier, VerificationResult
from crushai.payments.webhook import WebhookProcessor, resolve_buyer_wallet

__all__ = [
    "PaymentIntent",
    "PaymentIntentRegistry",
    "PaymentVerifier",
    "VerificationResult",
    "WebhookProcessor",
    "resolve_buyer_wallet",
]
