# src/citrace/integrations/hookspecs.py
"""pluggy hook specifications for runner integrations.

Integration plugins implement these hooks to register the execution models
they can instrument. The IntegrationManager calls them during discovery.

Usage (implementing an integration plugin):
    from citrace.integrations.hookspecs import hookimpl

    class MyRunnerPlugin:
        @hookimpl
        def citrace_get_integrations(self):
            return [IntegrationSpec(name="my-runner", versions=(">=2.0",), patch=patch_my_runner)]
"""

from typing import TYPE_CHECKING

import pluggy

if TYPE_CHECKING:
    from citrace.integrations.spec import IntegrationSpec

PROJECT_NAME = "citrace"

hookspec = pluggy.HookspecMarker(PROJECT_NAME)

hookimpl = pluggy.HookimplMarker(PROJECT_NAME)


class CitraceIntegrationSpec:
    """Hook specifications for integration plugins."""

    @hookspec
    def citrace_get_integrations(self) -> list["IntegrationSpec"]:  # type: ignore[empty-body]
        """Return integration specs.

        Returns:
            List of IntegrationSpec records, one per runner component the
            plugin knows how to patch
        """
