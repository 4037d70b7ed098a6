"""Configuration for the ingestion pipeline.

Usage
-----
>>> config = IngestionConfig()
>>> config.max_batch_size
100

"""

from __future__ import annotations

import dataclasses as dc

from gatehouse.common.env import parse_int, parse_str
from gatehouse.envelope.normalisation import (
    DEFAULT_CANONICAL_PREFIX,
    DEFAULT_TYPE_DOMAIN,
)


@dc.dataclass(frozen=True, slots=True)
class IngestionConfig:
    """Request-level limits and type canonicalisation settings.

    Attributes
    ----------
    max_batch_size
        Largest number of envelopes accepted in one batch request.
    max_data_bytes
        Largest serialised ``data`` payload accepted per envelope.
    type_domain
        Leading segment of legacy event types, e.g. ``cce``.
    canonical_type_prefix
        Namespace canonical event types are rewritten into.

    """

    max_batch_size: int = 100
    max_data_bytes: int = 1_048_576
    type_domain: str = DEFAULT_TYPE_DOMAIN
    canonical_type_prefix: str = DEFAULT_CANONICAL_PREFIX

    @classmethod
    def from_env(cls) -> IngestionConfig:
        """Create configuration from environment variables.

        Reads ``GATEHOUSE_MAX_BATCH_SIZE``, ``GATEHOUSE_MAX_DATA_BYTES``,
        ``GATEHOUSE_TYPE_DOMAIN`` and ``GATEHOUSE_CANONICAL_TYPE_PREFIX``.

        Raises
        ------
        ValueError
            If a numeric variable is not a positive integer.

        """
        return cls(
            max_batch_size=parse_int("GATEHOUSE_MAX_BATCH_SIZE", 100),
            max_data_bytes=parse_int("GATEHOUSE_MAX_DATA_BYTES", 1_048_576),
            type_domain=parse_str("GATEHOUSE_TYPE_DOMAIN", DEFAULT_TYPE_DOMAIN),
            canonical_type_prefix=parse_str(
                "GATEHOUSE_CANONICAL_TYPE_PREFIX", DEFAULT_CANONICAL_PREFIX
            ),
        )
