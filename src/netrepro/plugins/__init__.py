"""Extension layer — overlay providers and connection hooks via pluggy.

Discovery: entry_points (pip-installed) via pluggy setuptools entrypoints,
plus single-file plugins from a local directory.
INVARIANT: Observation hook failures are warnings, never errors.
"""

from netrepro.plugins.hookspecs import hookimpl
from netrepro.plugins.manager import PluginManager

__all__ = ["PluginManager", "hookimpl"]
