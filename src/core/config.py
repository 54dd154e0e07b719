"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the core expects so adapters and app layers can build safely.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class DedupConfig:
    """Deduplication settings for the ingestion pipeline."""

    mode: str
    capacity: int


@dataclass(frozen=True)
class GroupingConfig:
    """Grouping window and drain cadence, both in seconds."""

    duration_seconds: float
    drain_interval_seconds: float
    portnums: frozenset[int] = field(default_factory=frozenset)


@dataclass(frozen=True)
class FilterConfig:
    """Dispatch-side filters applied to drained groups."""

    ignore_nodes: frozenset[str]
    stale_after_seconds: int
