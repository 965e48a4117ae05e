"""
SQLAlchemy database models for CrushAI.
"""

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Index, String
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utc_now():
    """Generate timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


class Entitlement(Base):
    """
    Durable proof that a wallet paid for (or was granted) an item.

    One row per ``(wallet, item_id)``; a repeat grant only refreshes the
    provenance signature.
    """

    __tablename__ = "entitlements"

    wallet = Column(String(64), primary_key=True)
    item_id = Column(String(128), primary_key=True)
    tx_signature = Column(String(128), nullable=False)
    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    __table_args__ = (Index("idx_entitlement_wallet", "wallet"),)

    def to_dict(self):
        created = self.created_at
        return {
            "itemId": self.item_id,
            "txSignature": self.tx_signature,
            "createdAt": created.isoformat() if created else None,
        }

    def __repr__(self):
        return f"<Entitlement {self.wallet[:8]}... {self.item_id}>"
