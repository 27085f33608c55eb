# src/citrace/integrations/spec.py
"""Registration metadata for one instrumentable runner component."""

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

PatchFn = Callable[..., Any]
UnpatchFn = Callable[..., None]


@dataclass(frozen=True, slots=True)
class IntegrationSpec:
    """How to instrument one runner component.

    The host uses ``name``, ``versions`` and ``file`` to decide which runner
    object to hand to ``patch``. citrace does not import runners itself.

    Attributes:
        name: Runner component name, unique across all plugins
        versions: Supported version ranges of that component (e.g. ``">=1.0"``)
        patch: ``patch(target, tracer, instrumenter, config)``; returns the
            object the host should use in place of ``target``
        unpatch: ``unpatch(target, instrumenter)``; reverses ``patch``
        file: Path of the module inside the component to patch, when it is
            not the component's top-level module
    """

    name: str
    versions: tuple[str, ...]
    patch: PatchFn
    unpatch: UnpatchFn | None = None
    file: str | None = None

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("IntegrationSpec.name must be a non-empty string")
        if not self.versions:
            raise ValueError(f"IntegrationSpec '{self.name}' must declare at least one version range")
