# src/citrace/errors.py
"""Exceptions raised by the citrace instrumentation.

These exceptions describe failures of the instrumentation itself. Failures of
the instrumented tests are never wrapped in these types - test errors are
tagged on spans and re-raised unchanged.
"""


class CitraceError(Exception):
    """Base class for instrumentation errors."""


class InstrumentationError(CitraceError):
    """Raised when a runner hook cannot be installed.

    Propagates to the host so that patching of the affected execution model
    is aborted instead of leaving it half-instrumented.

    Attributes:
        target: Description of the object being patched
        message: Human-readable error description
    """

    def __init__(self, target: str, message: str) -> None:
        self.target = target
        self.message = message
        super().__init__(f"Cannot instrument '{target}': {message}")


class TracerConfigurationError(CitraceError):
    """Raised when a tracer backend cannot be created or configured.

    Attributes:
        tracer_name: Name of the tracer backend that failed
        message: Human-readable error description
    """

    def __init__(self, tracer_name: str, message: str) -> None:
        self.tracer_name = tracer_name
        self.message = message
        super().__init__(f"Tracer '{tracer_name}' failed: {message}")


class IntegrationRegistryError(CitraceError):
    """Raised when integration discovery finds an invalid or duplicate plugin.

    Attributes:
        integration_name: Integration (or plugin group) that failed
        message: Human-readable error description
    """

    def __init__(self, integration_name: str, message: str) -> None:
        self.integration_name = integration_name
        self.message = message
        super().__init__(f"Integration '{integration_name}': {message}")


class HookFailure(Exception):
    """Error synthesized for a hook failure recorded only as a message."""


class CallbackError(Exception):
    """Error synthesized when a ``done`` callback is invoked with a non-exception reason."""
