"""
Polling cadence for the client job monitor.

All intervals are in seconds.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..config import MonitorConfig


@dataclass(frozen=True)
class PollingPolicy:
    """Derives poll, backoff and reconciliation delays from MonitorConfig.

    Example:
        ```python
        policy = PollingPolicy.from_config(MonitorConfig())
        policy.processing_interval(12)  # 1.0
        policy.failure_backoff(3)       # 4.5
        ```
    """

    default_interval: float = 3.0
    processing_fast_interval: float = 1.5
    processing_fastest_interval: float = 1.0
    processing_fast_after: int = 5
    processing_fastest_after: int = 10
    backoff_base: float = 2.0
    backoff_factor: float = 1.5
    backoff_max: float = 10.0
    reconcile_interval: float = 1.0
    adaptive_reconcile: bool = False

    @classmethod
    def from_config(cls, config: MonitorConfig) -> PollingPolicy:
        return cls(
            default_interval=config.default_interval,
            processing_fast_interval=config.processing_fast_interval,
            processing_fastest_interval=config.processing_fastest_interval,
            processing_fast_after=config.processing_fast_after,
            processing_fastest_after=config.processing_fastest_after,
            backoff_base=config.backoff_base,
            backoff_factor=config.backoff_factor,
            backoff_max=config.backoff_max,
            reconcile_interval=config.reconcile_interval,
            adaptive_reconcile=config.adaptive_reconcile,
        )

    def processing_interval(self, consecutive_processing: int) -> float:
        """Delay after the n-th consecutive ``processing`` observation."""
        if consecutive_processing > self.processing_fastest_after:
            interval = self.processing_fastest_interval
        elif consecutive_processing > self.processing_fast_after:
            interval = self.processing_fast_interval
        else:
            interval = self.default_interval
        return max(interval, self.processing_fastest_interval)

    def failure_backoff(self, consecutive_failures: int) -> float:
        """Delay after the n-th consecutive poll failure (n >= 1)."""
        n = max(consecutive_failures, 1)
        return min(self.backoff_max, self.backoff_base * self.backoff_factor ** (n - 1))

    def reconcile_interval_for(self, tracked_count: int) -> float:
        """Delay between reconciliation passes."""
        if not self.adaptive_reconcile:
            return self.reconcile_interval
        if tracked_count == 0:
            return 30.0
        if tracked_count <= 2:
            return 15.0
        return 10.0


__all__ = ["PollingPolicy"]
