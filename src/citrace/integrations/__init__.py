# src/citrace/integrations/__init__.py
"""Built-in runner integrations.

Available integrations:
- event-environment: the linear model, one environment object per suite
  receiving lifecycle events (citrace.integrations.environment)
- spec-tree: the declarative model, tests declared with it/fit/xit and
  failures reported to a global exception hook (citrace.integrations.spec_tree)

Plugin registration:
    Integrations are registered via the citrace_get_integrations hook.
    The BuiltinIntegrationsPlugin in this module registers both built-in models.
"""

from citrace.integrations.environment import EnvironmentContext, patch_environment, unpatch_environment
from citrace.integrations.hookspecs import hookimpl
from citrace.integrations.spec import IntegrationSpec
from citrace.integrations.spec_tree import SpecTreeContext, install_spec_tree_hooks, patch_spec_tree, unpatch_spec_tree

EVENT_ENVIRONMENT = IntegrationSpec(
    name="event-environment",
    versions=(">=1.0",),
    patch=patch_environment,
    unpatch=unpatch_environment,
)

SPEC_TREE = IntegrationSpec(
    name="spec-tree",
    versions=(">=1.0",),
    patch=patch_spec_tree,
    unpatch=unpatch_spec_tree,
    file="async_install",
)


class BuiltinIntegrationsPlugin:
    """Plugin that registers the built-in execution models."""

    @hookimpl
    def citrace_get_integrations(self) -> list[IntegrationSpec]:
        """Return built-in integration specs."""
        return [EVENT_ENVIRONMENT, SPEC_TREE]


__all__ = [
    "EVENT_ENVIRONMENT",
    "SPEC_TREE",
    "BuiltinIntegrationsPlugin",
    "EnvironmentContext",
    "IntegrationSpec",
    "SpecTreeContext",
    "install_spec_tree_hooks",
    "patch_environment",
    "patch_spec_tree",
    "unpatch_environment",
    "unpatch_spec_tree",
]
