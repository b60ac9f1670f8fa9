"""Prometheus metrics for the node taint manager."""

from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram

from .constants import TIME_TO_READY_BUCKETS

__all__ = ["TaintMetrics"]


class TaintMetrics:
    """Metrics published by the node taint manager.

    Each instance registers its instruments in its own registry rather than
    the process-global default one, so that several instances (such as one
    per test) do not collide.

    Parameters
    ----------
    registry
        Registry to use. A new one is created if not given.
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry or CollectorRegistry()
        self._nodes_monitored = Gauge(
            "node_taint_manager_nodes_monitored",
            "The total number of nodes node-taint-manager is tracking.",
            registry=self.registry,
        )
        self._nodes_untainted = Counter(
            "node_taint_manager_nodes_untainted",
            (
                "The number of nodes node-taint-manager has determined ready"
                " and removed taint from."
            ),
            registry=self.registry,
        )
        self._time_to_ready = Histogram(
            "node_taint_manager_time_to_ready",
            (
                "Time in seconds taken for the all the daemonsets on the"
                " nodes to be ready"
            ),
            buckets=TIME_TO_READY_BUCKETS,
            registry=self.registry,
        )

    def record_untaint(self, elapsed: float | None) -> None:
        """Record a successful removal of gating taints from a node.

        Parameters
        ----------
        elapsed
            Seconds between node creation and the decision to remove the
            taints, or `None` if the creation time of the node is unknown.
        """
        self._nodes_untainted.inc()
        if elapsed is not None:
            self._time_to_ready.observe(elapsed)

    def set_nodes_monitored(self, count: int) -> None:
        """Record the number of nodes currently in the cache."""
        self._nodes_monitored.set(count)
