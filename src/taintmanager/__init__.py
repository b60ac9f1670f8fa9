"""Remove a node readiness taint once the node's daemons are ready."""

from importlib.metadata import PackageNotFoundError, version

__all__ = ["__version__"]


__version__: str
"""The application version string (PEP 440 / SemVer compatible)."""

try:
    __version__ = version("node-taint-manager")
except PackageNotFoundError:
    # package is not installed
    __version__ = "0.0.0"
