"""
Pipeline stages for the event lifecycle.

Deduplication, viability filtering and scoring run in that order on every
discovery batch.
"""

__all__ = ["dedup", "filtering", "scoring"]
