"""Global constants."""

from datetime import timedelta
from pathlib import Path

__all__ = [
    "APPLICATION_NAME",
    "CONFIGURATION_PATH",
    "CONFIG_FILE_ENV_VAR",
    "DAEMONSET_KIND",
    "DEFAULT_METRICS_PORT",
    "DEFAULT_PATCH_ATTEMPTS",
    "DEFAULT_PATCH_RETRY_DELAY",
    "DEFAULT_RECONCILE_INTERVAL",
    "DEFAULT_RESYNC_INTERVAL",
    "DEFAULT_SYNC_TIMEOUT",
    "DEFAULT_TAINT_KEY",
    "ENV_PREFIX",
    "ROOT_LOGGER",
    "TIME_TO_READY_BUCKETS",
    "WATCH_RETRY_DELAY",
]

APPLICATION_NAME = "node-taint-manager"
"""Name of the application and of its Python distribution."""

CONFIGURATION_PATH = Path("/etc/node-taint-manager/config.yaml")
"""Default path to the configuration file, used only if it exists."""

ENV_PREFIX = "NODE_TAINT_MANAGER_"
"""Prefix of environment variables that override configuration settings."""

CONFIG_FILE_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
"""Environment variable that overrides the configuration file path."""

ROOT_LOGGER = "taintmanager"
"""Name of the logger configured for the whole application."""

DAEMONSET_KIND = "DaemonSet"
"""Owner kind of the pods whose readiness gates the taint."""

DEFAULT_TAINT_KEY = "node.vanstee.github.io/daemonset-not-ready"
"""Taint key watched by default.

Nodes join the cluster carrying this taint (usually set through kubelet
``--register-with-taints``) and every daemonset that must be running before
ordinary workloads land on the node tolerates it.
"""

DEFAULT_METRICS_PORT = 9090
"""Port on which the Prometheus metrics endpoint listens."""

DEFAULT_PATCH_ATTEMPTS = 3
"""How many times to try removing taints from a node before giving up.

Giving up only lasts until the next reconciliation pass.
"""

DEFAULT_PATCH_RETRY_DELAY = timedelta(milliseconds=500)
"""Base delay between patch attempts, multiplied by the attempt number."""

DEFAULT_RECONCILE_INTERVAL = timedelta(seconds=5)
"""How frequently to scan every cached node."""

DEFAULT_RESYNC_INTERVAL = timedelta(minutes=10)
"""How frequently to relist nodes and pods to refresh the cache."""

DEFAULT_SYNC_TIMEOUT = timedelta(minutes=2)
"""How long to wait for the initial cache sync before giving up."""

TIME_TO_READY_BUCKETS = (
    0.1,
    1,
    2,
    3,
    5,
    10,
    15,
    20,
    25,
    30,
    35,
    40,
    45,
    50,
    55,
    60,
    70,
    80,
    90,
    100,
    110,
    120,
)
"""Histogram buckets, in seconds, for node creation to untaint time."""

WATCH_RETRY_DELAY = timedelta(seconds=5)
"""How long to wait before retrying a failed list or watch."""
