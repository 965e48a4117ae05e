"""CrushAI: wallet sessions, token gating and pay-per-unlock on Solana."""

__version__ = "1.0.0a0"
