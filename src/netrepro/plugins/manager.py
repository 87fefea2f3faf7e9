"""Plugin discovery, loading, and hook dispatch.

Discovery: entry_points (pip-installed) in the ``netrepro.plugins`` group,
plus local directory discovery of single-file plugins.
"""

from __future__ import annotations

import importlib.util
import inspect
import logging
import sys
from collections.abc import Callable
from pathlib import Path
from typing import TYPE_CHECKING, Any

import pluggy

from netrepro.errors import BindError
from netrepro.plugins.hookspecs import ReproHookSpec

if TYPE_CHECKING:
    from netrepro.net.listeners import OverlayClient

PROJECT_NAME = "netrepro"
ENTRY_POINT_GROUP = "netrepro.plugins"

logger = logging.getLogger(__name__)


class PluginManager:
    """Manages plugin discovery, loading, and hook dispatch."""

    def __init__(self) -> None:
        self._pm = pluggy.PluginManager(PROJECT_NAME)
        self._pm.add_hookspecs(ReproHookSpec)

    def discover_and_load(self, *, local_dir: Path | None = None) -> list[str]:
        """Discover plugins from entry points and an optional local directory.

        Returns a list of loaded plugin names.
        """
        self._pm.load_setuptools_entrypoints(ENTRY_POINT_GROUP)
        self._normalize_plugin_instances()
        if local_dir is not None:
            self._discover_local(local_dir)
        return self.list_plugin_names()

    def register_plugin(self, plugin: object, name: str | None = None) -> None:
        """Register a plugin instance directly."""
        resolved_name = name or plugin.__class__.__name__
        self._pm.register(plugin, name=resolved_name)
        logger.debug("Registered plugin: %s", resolved_name)

    def list_plugin_names(self) -> list[str]:
        """Return names of all registered plugins."""
        return [self._pm.get_name(p) or p.__class__.__name__ for p in self._pm.get_plugins()]

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def overlay_client(
        self,
        *,
        hostname: str,
        state_dir: Path | None,
        logf: Callable[[str], None],
        provider: str | None = None,
    ) -> OverlayClient:
        """Start an overlay client through the registered providers.

        With *provider* set, only that plugin is asked.  Otherwise the first
        non-None answer wins.

        Raises:
            BindError: no provider answered, the named provider is missing,
                or the provider raised.
        """
        kwargs: dict[str, Any] = {"hostname": hostname, "state_dir": state_dir, "logf": logf}
        try:
            if provider is not None:
                plugin = self._pm.get_plugin(provider)
                if plugin is None:
                    raise BindError(f"Overlay provider {provider!r} is not installed")
                others = [p for p in self._pm.get_plugins() if p is not plugin]
                caller = self._pm.subset_hook_caller("netrepro_overlay_client", others)
                client = caller(**kwargs)
            else:
                client = self._pm.hook.netrepro_overlay_client(**kwargs)
        except BindError:
            raise
        except Exception as exc:
            raise BindError(f"Overlay client failed to start: {exc}") from exc

        if client is None:
            raise BindError(
                "No overlay-network provider is installed "
                f"(entry point group {ENTRY_POINT_GROUP!r}); use -hostname localhost "
                "to compare against the local stack"
            )
        return client

    def notify(self, hook_name: str, **payload: Any) -> None:
        """Call an observation hook.  Failures are logged, never raised."""
        hook_fn = getattr(self._pm.hook, hook_name, None)
        if hook_fn is None:
            return
        try:
            hook_fn(**payload)
        except Exception:
            logger.warning("Hook %s failed", hook_name, exc_info=True)

    # ------------------------------------------------------------------
    # Local directory discovery
    # ------------------------------------------------------------------

    def _discover_local(self, local_dir: Path) -> None:
        """Scan *local_dir* for single-file Python plugins.

        Each ``*.py`` file (excluding ``_``-prefixed names) is loaded as a
        module. Classes inside the module that carry pluggy hookimpl-decorated
        methods are instantiated and registered.

        Errors are logged as warnings but never raised.
        """
        if not local_dir.is_dir():
            return

        for py_file in sorted(local_dir.glob("*.py")):
            if py_file.name.startswith("_"):
                continue
            module_name = f"netrepro_local_plugin_{py_file.stem}"
            try:
                spec = importlib.util.spec_from_file_location(module_name, py_file)
                if spec is None or spec.loader is None:
                    logger.warning("Could not create module spec for %s", py_file)
                    continue
                module = importlib.util.module_from_spec(spec)
                sys.modules[module_name] = module
                spec.loader.exec_module(module)
            except Exception:
                logger.warning("Failed to load local plugin %s", py_file, exc_info=True)
                sys.modules.pop(module_name, None)
                continue

            for _attr_name, obj in inspect.getmembers(module, inspect.isclass):
                if obj.__module__ != module_name:
                    continue  # skip imported classes
                if not self._has_hook_impls(obj):
                    continue
                try:
                    instance = obj()
                    self.register_plugin(instance, name=module_name)
                    logger.debug("Loaded local plugin %s from %s", obj.__name__, py_file)
                except Exception:
                    logger.warning(
                        "Failed to instantiate plugin class %s from %s",
                        obj.__name__,
                        py_file,
                        exc_info=True,
                    )

    def _normalize_plugin_instances(self) -> None:
        """Replace registered plugin classes with instantiated objects.

        Entry-point loading may register a plugin class directly. Hook dispatch
        against class objects leaves ``self`` unbound and fails at runtime.
        """
        for plugin in list(self._pm.get_plugins()):
            if not inspect.isclass(plugin):
                continue
            if not self._has_hook_impls(plugin):
                continue

            plugin_name = self._pm.get_name(plugin) or plugin.__name__
            self._pm.unregister(plugin)

            try:
                instance = plugin()
            except Exception:
                logger.warning(
                    "Failed to instantiate entry-point plugin %s",
                    plugin_name,
                    exc_info=True,
                )
                continue

            self._pm.register(instance, name=plugin_name)
            logger.debug("Instantiated entry-point plugin: %s", plugin_name)

    @staticmethod
    def _has_hook_impls(cls: type) -> bool:
        """Check whether *cls* has any methods decorated with ``@hookimpl``.

        Pluggy's ``HookimplMarker("netrepro")`` sets a ``netrepro_impl``
        attribute on decorated methods.
        """
        for name in dir(cls):
            if name.startswith("_"):
                continue
            method = getattr(cls, name, None)
            if callable(method) and getattr(method, "netrepro_impl", None):
                return True
        return False
