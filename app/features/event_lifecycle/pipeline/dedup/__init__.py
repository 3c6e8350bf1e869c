"""
Event deduplication package.

Clusters listings of the same real-world event reported by several sources.
"""

from .service import DeduplicationService

__all__ = ["DeduplicationService"]
