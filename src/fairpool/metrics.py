"""
fairpool/metrics.py

Prometheus metrics collection for fairpool.

Tracks round throughput, money flowing through distributions and the
outcome of fairness verifications.
"""

import time
import logging
from typing import TYPE_CHECKING, Any, Dict, Optional

if TYPE_CHECKING:
    from .protocol.lifecycle import RoundManager
    from .protocol.rounds import DistributedRound

logger = logging.getLogger("fairpool.metrics")


class GameMetrics:
    """
    Prometheus metrics collector for the round engine.

    Usage:
        metrics = GameMetrics()
        manager = RoundManager(metrics=metrics)

        prometheus_output = metrics.collect()
    """

    # Metric definitions
    METRICS = {
        "fairpool_open_rounds": {
            "type": "gauge",
            "help": "Number of rounds currently accepting joins",
        },
        "fairpool_rounds_created_total": {
            "type": "counter",
            "help": "Total number of rounds created",
        },
        "fairpool_joins_total": {
            "type": "counter",
            "help": "Total number of accepted joins (creators excluded)",
        },
        "fairpool_rounds_distributed_total": {
            "type": "counter",
            "help": "Total number of rounds distributed",
        },
        "fairpool_rounds_cancelled_total": {
            "type": "counter",
            "help": "Total number of rounds cancelled, by reason",
        },
        "fairpool_payouts_nanoton_total": {
            "type": "counter",
            "help": "Total nanotons paid out to participants",
        },
        "fairpool_platform_fees_nanoton_total": {
            "type": "counter",
            "help": "Total platform fees retained in nanotons",
        },
        "fairpool_verifications_total": {
            "type": "counter",
            "help": "Fairness verifications run, by result",
        },
        "fairpool_uptime_seconds": {
            "type": "counter",
            "help": "Collector uptime in seconds",
        },
    }

    def __init__(self, manager: Optional["RoundManager"] = None):
        """
        Initialize metrics collector.

        Args:
            manager: RoundManager to read live gauges from
        """
        self.manager = manager
        self._start_time = time.time()
        self.reset_counters()

    def attach(self, manager: "RoundManager") -> None:
        self.manager = manager

    def record_round_created(self) -> None:
        self._rounds_created += 1

    def record_join(self) -> None:
        self._joins += 1

    def record_distribution(self, record: "DistributedRound") -> None:
        self._rounds_distributed += 1
        self._payouts_total += sum(entry.amount for entry in record.payouts)
        self._fees_total += record.platform_fee

    def record_cancellation(self, reason: str) -> None:
        self._cancellations[reason] = self._cancellations.get(reason, 0) + 1

    def record_verification(self, is_valid: bool) -> None:
        key = "valid" if is_valid else "invalid"
        self._verifications[key] += 1

    def collect(self) -> str:
        """
        Collect all metrics and return in Prometheus format.

        Returns:
            Prometheus-formatted metrics string
        """
        lines = []

        def header(name: str):
            metric_def = self.METRICS.get(name, {})
            lines.append(f"# HELP {name} {metric_def.get('help', '')}")
            lines.append(f"# TYPE {name} {metric_def.get('type', 'gauge')}")

        def add_metric(name: str, value: float):
            header(name)
            lines.append(f"{name} {value}")

        def add_labelled(name: str, label: str, values: Dict[str, int]):
            header(name)
            for key, value in sorted(values.items()):
                lines.append(f'{name}{{{label}="{key}"}} {value}')

        try:
            open_rounds = self.manager.open_round_count if self.manager else 0
            add_metric("fairpool_open_rounds", open_rounds)
            add_metric("fairpool_rounds_created_total", self._rounds_created)
            add_metric("fairpool_joins_total", self._joins)
            add_metric("fairpool_rounds_distributed_total", self._rounds_distributed)
            add_labelled("fairpool_rounds_cancelled_total", "reason", self._cancellations)
            add_metric("fairpool_payouts_nanoton_total", self._payouts_total)
            add_metric("fairpool_platform_fees_nanoton_total", self._fees_total)
            add_labelled("fairpool_verifications_total", "result", self._verifications)
            add_metric("fairpool_uptime_seconds", time.time() - self._start_time)
        except Exception as e:
            logger.error(f"Error collecting metrics: {e}")
            lines.append(f"# Error collecting metrics: {e}")

        return "\n".join(lines) + "\n"

    def get_stats(self) -> Dict[str, Any]:
        """
        Get metrics as a dictionary (for JSON consumers).

        Returns:
            Dictionary of metric values
        """
        return {
            "open_rounds": self.manager.open_round_count if self.manager else 0,
            "rounds_created": self._rounds_created,
            "joins": self._joins,
            "rounds_distributed": self._rounds_distributed,
            "rounds_cancelled": dict(self._cancellations),
            "payouts_nanoton": self._payouts_total,
            "platform_fees_nanoton": self._fees_total,
            "verifications": dict(self._verifications),
            "uptime_seconds": time.time() - self._start_time,
        }

    def reset_counters(self) -> None:
        """Reset all counters (useful for testing)."""
        self._rounds_created = 0
        self._joins = 0
        self._rounds_distributed = 0
        self._cancellations: Dict[str, int] = {}
        self._payouts_total = 0
        self._fees_total = 0
        self._verifications = {"valid": 0, "invalid": 0}
