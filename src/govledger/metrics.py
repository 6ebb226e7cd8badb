"""
govledger/metrics.py

Prometheus metrics collection for govledger.

Exposes proposal, vote and rejection counts in Prometheus text format so a
node operator can scrape governance activity.
"""

import logging
import time
from collections import defaultdict
from typing import TYPE_CHECKING, Any, Dict, Optional

from .errors import GovernanceError

if TYPE_CHECKING:
    from .protocol.governance import GovernanceProtocol

logger = logging.getLogger("govledger.metrics")


class GovernanceMetrics:
    """
    Prometheus metrics collector for governance state.

    Usage:
        governance = GovernanceProtocol(owner="EOwner")
        prometheus_output = governance.metrics.collect()
    """

    # Metric definitions
    METRICS = {
        "govledger_proposals_total": {
            "type": "gauge",
            "help": "Number of proposals ever created",
        },
        "govledger_proposals": {
            "type": "gauge",
            "help": "Number of proposals by status",
        },
        "govledger_votes_total": {
            "type": "gauge",
            "help": "Number of vote records",
        },
        "govledger_delegations_total": {
            "type": "gauge",
            "help": "Number of delegation records",
        },
        "govledger_votes_weight_total": {
            "type": "gauge",
            "help": "Accumulated vote weight across all proposals",
        },
        "govledger_quorum_reached_proposals": {
            "type": "gauge",
            "help": "Number of proposals that reached quorum",
        },
        "govledger_paused": {
            "type": "gauge",
            "help": "Whether governance is paused (1=yes, 0=no)",
        },
        "govledger_rejections_total": {
            "type": "counter",
            "help": "Rejected operations by operation and error",
        },
        "govledger_uptime_seconds": {
            "type": "counter",
            "help": "Seconds since the collector started",
        },
    }

    def __init__(self, governance: "GovernanceProtocol"):
        """
        Initialize metrics collector.

        Args:
            governance: GovernanceProtocol instance to collect metrics from
        """
        self.governance = governance
        self._start_time = time.time()
        self._rejections: Dict[tuple, int] = defaultdict(int)

    def record_rejection(self, operation: str, error: GovernanceError) -> None:
        """Record a rejected operation."""
        self._rejections[(operation, error.code)] += 1

    def rejection_count(self, operation: Optional[str] = None) -> int:
        return sum(
            count for (op, _), count in self._rejections.items()
            if operation is None or op == operation
        )

    def collect(self) -> str:
        """
        Collect all metrics and return in Prometheus format.

        Returns:
            Prometheus-formatted metrics string
        """
        lines = []

        def add_header(name: str):
            metric_def = self.METRICS.get(name, {})
            lines.append(f"# HELP {name} {metric_def.get('help', '')}")
            lines.append(f"# TYPE {name} {metric_def.get('type', 'gauge')}")

        def add_metric(name: str, value: float, labels: Dict[str, str] = None):
            if labels:
                label_str = ",".join(f'{k}="{v}"' for k, v in labels.items())
                lines.append(f"{name}{{{label_str}}} {value}")
            else:
                lines.append(f"{name} {value}")

        stats = self.governance.get_stats()

        add_header("govledger_proposals_total")
        add_metric("govledger_proposals_total", stats["total_proposals"])

        add_header("govledger_proposals")
        for status in ("active", "ended", "cancelled"):
            add_metric("govledger_proposals", stats[f"{status}_proposals"], {"status": status})

        add_header("govledger_votes_total")
        add_metric("govledger_votes_total", stats["votes_cast"])

        add_header("govledger_delegations_total")
        add_metric("govledger_delegations_total", stats["delegations"])

        add_header("govledger_votes_weight_total")
        add_metric("govledger_votes_weight_total", stats["total_votes_weight"])

        add_header("govledger_quorum_reached_proposals")
        add_metric("govledger_quorum_reached_proposals", stats["quorum_reached_proposals"])

        add_header("govledger_paused")
        add_metric("govledger_paused", 1 if stats["paused"] else 0)

        add_header("govledger_rejections_total")
        for (operation, code), count in sorted(self._rejections.items()):
            add_metric("govledger_rejections_total", count, {"operation": operation, "error": code})

        add_header("govledger_uptime_seconds")
        add_metric("govledger_uptime_seconds", round(time.time() - self._start_time, 3))

        return "\n".join(lines) + "\n"

    def get_stats(self) -> Dict[str, Any]:
        """
        Get metrics as a dictionary (for JSON consumers).

        Returns:
            Dictionary of metric values
        """
        stats = self.governance.get_stats()
        stats["rejections"] = {
            f"{operation}:{code}": count
            for (operation, code), count in self._rejections.items()
        }
        stats["uptime_seconds"] = time.time() - self._start_time
        return stats

    def reset_counters(self) -> None:
        """Reset all counters (useful for testing)."""
        self._rejections.clear()
        self._start_time = time.time()
