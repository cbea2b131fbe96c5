from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Dict


@dataclass
class ProviderStats:
    calls: int = 0
    successes: int = 0
    errors: int = 0
    last_latency_ms: float = 0.0
    avg_latency_ms: float = 0.0


@dataclass
class ProviderMetrics:
    """Per-provider call counters and latency; observability only."""

    stats: Dict[str, ProviderStats] = field(default_factory=dict)

    def record(self, provider: str, *, ok: bool, latency_ms: float) -> None:
        entry = self.stats.get(provider)
        if entry is None:
            entry = self.stats[provider] = ProviderStats()
        entry.calls += 1
        if ok:
            entry.successes += 1
        else:
            entry.errors += 1
        entry.last_latency_ms = latency_ms
        entry.avg_latency_ms += (latency_ms - entry.avg_latency_ms) / entry.calls

    def snapshot(self) -> dict[str, dict]:
        return {name: asdict(entry) for name, entry in sorted(self.stats.items())}
