# src/citrace/integrations/registry.py
"""Integration discovery and the IntegrationManager.

This module provides the glue between configuration (TracingSettings) and
patched runner components. It handles:
1. Discovering integration specs via pluggy hooks
2. Creating the tracer backend selected in configuration
3. Patching and unpatching runner components by integration name

Usage:
    from citrace.config import load_settings
    from citrace.integrations.registry import create_integration_manager

    manager = create_integration_manager(load_settings())
    if manager is not None:
        Environment = manager.patch("event-environment", Environment)
"""

from collections.abc import Iterable
from typing import Any

import pluggy
import structlog

from citrace.config import RuntimeTracingConfig, TracingSettings
from citrace.errors import IntegrationRegistryError
from citrace.instrumentation import Instrumenter
from citrace.integrations import BuiltinIntegrationsPlugin
from citrace.integrations.hookspecs import PROJECT_NAME, CitraceIntegrationSpec
from citrace.integrations.spec import IntegrationSpec
from citrace.logging import configure_logging
from citrace.protocols import InstrumenterProtocol, TracerProtocol
from citrace.tracers import create_tracer

logger = structlog.get_logger(__name__)

_PLUGIN_GROUP = "integration_plugins"


def discover_integrations(plugins: Iterable[Any] = ()) -> dict[str, IntegrationSpec]:
    """Discover integration specs via pluggy hooks.

    Registers the built-in integrations plus any additional plugin objects
    provided by the caller, then calls ``citrace_get_integrations`` hooks to
    build the name->spec registry.

    Args:
        plugins: Optional additional plugin objects implementing
            ``citrace_get_integrations``.

    Returns:
        Mapping of integration name to IntegrationSpec.

    Raises:
        IntegrationRegistryError: If plugin registration fails, a hook returns
            something other than IntegrationSpec records, or duplicate names
            are discovered.
    """
    plugin_manager = pluggy.PluginManager(PROJECT_NAME)
    plugin_manager.add_hookspecs(CitraceIntegrationSpec)

    for plugin in [BuiltinIntegrationsPlugin(), *list(plugins)]:
        try:
            plugin_manager.register(plugin)
            plugin_manager.check_pending()
        except (pluggy.PluginValidationError, ValueError) as e:
            # ValueError: plugin object or name already registered
            if isinstance(e, pluggy.PluginValidationError):
                plugin_manager.unregister(plugin=plugin)
            raise IntegrationRegistryError(
                _PLUGIN_GROUP,
                f"Invalid integration plugin {type(plugin).__name__}: {e}",
            ) from e

    registry: dict[str, IntegrationSpec] = {}
    for hook_impl in plugin_manager.hook.citrace_get_integrations.get_hookimpls():
        plugin_name = type(hook_impl.plugin).__name__
        try:
            specs = hook_impl.plugin.citrace_get_integrations()
        except Exception as e:
            raise IntegrationRegistryError(
                _PLUGIN_GROUP,
                f"Integration plugin {plugin_name} failed in citrace_get_integrations: {e}",
            ) from e

        if specs is None or isinstance(specs, (str, bytes)):
            raise IntegrationRegistryError(
                _PLUGIN_GROUP,
                f"citrace_get_integrations in plugin {plugin_name} returned {type(specs).__name__}; "
                "expected iterable of IntegrationSpec",
            )
        try:
            spec_iter = iter(specs)
        except TypeError as e:
            raise IntegrationRegistryError(
                _PLUGIN_GROUP,
                f"citrace_get_integrations in plugin {plugin_name} returned {type(specs).__name__}; "
                "expected iterable of IntegrationSpec",
            ) from e

        for spec in spec_iter:
            if not isinstance(spec, IntegrationSpec):
                raise IntegrationRegistryError(
                    _PLUGIN_GROUP,
                    f"Integration plugin {plugin_name} returned {type(spec).__name__}; expected IntegrationSpec",
                )
            if spec.name in registry:
                raise IntegrationRegistryError(
                    spec.name,
                    f"Duplicate integration name '{spec.name}' discovered in plugin {plugin_name}",
                )
            registry[spec.name] = spec

    return registry


class IntegrationManager:
    """Patches runner components with the integrations discovered at creation.

    One manager shares one tracer and one instrumenter across every component
    it patches.
    """

    def __init__(
        self,
        tracer: TracerProtocol,
        *,
        instrumenter: InstrumenterProtocol | None = None,
        config: RuntimeTracingConfig | None = None,
        plugins: Iterable[Any] = (),
    ) -> None:
        self._tracer = tracer
        self._instrumenter = instrumenter or Instrumenter()
        self._config = config or RuntimeTracingConfig.default()
        self._registry = discover_integrations(plugins)
        self._patched: list[tuple[str, Any]] = []

    @property
    def tracer(self) -> TracerProtocol:
        return self._tracer

    @property
    def names(self) -> list[str]:
        return sorted(self._registry)

    def spec(self, name: str) -> IntegrationSpec:
        try:
            return self._registry[name]
        except KeyError:
            raise IntegrationRegistryError(
                name,
                f"Unknown integration. Available integrations: {self.names}",
            ) from None

    def patch(self, name: str, target: Any) -> Any:
        """Instrument ``target`` with the named integration.

        Returns:
            The object to use in place of ``target``

        Raises:
            IntegrationRegistryError: If no integration has that name
            InstrumentationError: If the target cannot be instrumented
        """
        spec = self.spec(name)
        patched = spec.patch(target, self._tracer, self._instrumenter, self._config)
        self._patched.append((name, target))
        logger.info("integration_patched", integration=name, versions=list(spec.versions))
        return patched

    def unpatch(self, name: str, target: Any) -> None:
        spec = self.spec(name)
        if spec.unpatch is not None:
            spec.unpatch(target, self._instrumenter)
        self._patched = [(n, t) for n, t in self._patched if not (n == name and t is target)]
        logger.debug("integration_unpatched", integration=name)

    def unpatch_all(self) -> None:
        """Reverse every patch applied through this manager, newest first."""
        for name, target in reversed(list(self._patched)):
            self.unpatch(name, target)


def create_integration_manager(
    settings: TracingSettings,
    *,
    plugins: Iterable[Any] = (),
) -> IntegrationManager | None:
    """Create an IntegrationManager from settings.

    This is the host's entry point: when ``settings.log_level`` is set, citrace
    logging is configured first.

    Returns:
        IntegrationManager if tracing is enabled, None otherwise.

    Raises:
        TracerConfigurationError: If the tracer backend cannot be created
        IntegrationRegistryError: If integration discovery fails
    """
    if settings.log_level is not None:
        configure_logging(json_output=settings.json_logs, level=settings.log_level)

    if not settings.enabled:
        logger.debug("tracing_disabled", reason="settings.enabled=False")
        return None

    return IntegrationManager(
        create_tracer(settings),
        config=RuntimeTracingConfig.from_settings(settings),
        plugins=plugins,
    )
