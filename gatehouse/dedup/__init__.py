"""Duplicate detection for inbound envelopes."""

from __future__ import annotations

from .cache import DedupCache, InMemoryDedupCache, RedisDedupCache
from .service import DedupConfig, Deduplicator, cache_key

__all__ = [
    "DedupCache",
    "DedupConfig",
    "Deduplicator",
    "InMemoryDedupCache",
    "RedisDedupCache",
    "cache_key",
]
