# src/citrace/config.py
"""Configuration for test tracing.

Uses Pydantic for validation and Dynaconf for multi-source loading.
``TracingSettings`` is the validated user-facing model; ``RuntimeTracingConfig``
is the frozen view the dispatcher and integrations consume.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from citrace.events import TIMEOUT_ERROR_PREFIX


class TracingSettings(BaseModel):
    """Test tracing configuration."""

    model_config = {"frozen": True}

    enabled: bool = Field(default=True, description="Instrument test runners at all")
    tracer: Literal["datadog", "memory"] = Field(
        default="datadog",
        description="Tracer backend: 'datadog' ships spans to the agent, 'memory' keeps them in-process",
    )
    service_name: str = Field(default="citrace", min_length=1, description="Service name reported on spans")
    env: str | None = Field(default=None, description="Environment tag (e.g. 'ci')")
    framework: str = Field(default="citrace", min_length=1, description="Test framework name, used in span names")
    flush_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Upper bound on how long suite teardown waits for the span flush",
    )
    timeout_error_prefix: str = Field(
        default=TIMEOUT_ERROR_PREFIX,
        min_length=1,
        description="Prefix of the runner failure reason that marks a test timeout",
    )
    agent_host: str = Field(default="localhost", description="Datadog agent hostname")
    agent_port: int = Field(default=8126, ge=1, le=65535, description="Datadog agent trace port")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] | None = Field(
        default=None,
        description="Configure citrace logging at this level; None leaves logging to the host",
    )
    json_logs: bool = Field(default=False, description="Emit citrace logs as JSON lines")

    @field_validator("framework")
    @classmethod
    def validate_framework(cls, v: str) -> str:
        """Framework names become span name prefixes and must not contain whitespace."""
        if any(ch.isspace() for ch in v):
            raise ValueError(f"framework must not contain whitespace, got {v!r}")
        return v


@dataclass(frozen=True, slots=True)
class RuntimeTracingConfig:
    """Runtime configuration consumed by the dispatcher and integrations.

    Field Origins (all from TracingSettings):
        - framework: TracingSettings.framework (direct)
        - timeout_error_prefix: TracingSettings.timeout_error_prefix (direct)
        - flush_timeout_seconds: TracingSettings.flush_timeout_seconds (direct)
    """

    framework: str
    timeout_error_prefix: str
    flush_timeout_seconds: float

    @property
    def span_name(self) -> str:
        """Operation name of test spans, e.g. ``citrace.test``."""
        return f"{self.framework}.test"

    @classmethod
    def default(cls) -> "RuntimeTracingConfig":
        return cls.from_settings(TracingSettings())

    @classmethod
    def from_settings(cls, settings: TracingSettings) -> "RuntimeTracingConfig":
        return cls(
            framework=settings.framework,
            timeout_error_prefix=settings.timeout_error_prefix,
            flush_timeout_seconds=settings.flush_timeout_seconds,
        )


def load_settings(config_path: Path | None = None) -> TracingSettings:
    """Load settings from environment variables and an optional YAML file.

    Uses Dynaconf for multi-source loading with precedence:
    1. Environment variables (CITRACE_*) - highest priority
    2. Config file, if given
    3. Defaults from the Pydantic schema - lowest priority

    Args:
        config_path: Optional path to a YAML configuration file

    Returns:
        Validated TracingSettings instance

    Raises:
        ValidationError: If configuration fails Pydantic validation
        FileNotFoundError: If config_path is given but does not exist
    """
    from dynaconf import Dynaconf

    # Dynaconf silently accepts missing files
    if config_path is not None and not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    dynaconf_settings = Dynaconf(
        envvar_prefix="CITRACE",
        settings_files=[str(config_path)] if config_path is not None else [],
        environments=False,
        load_dotenv=False,
        merge_enabled=True,
    )

    # Dynaconf returns uppercase keys; Pydantic fields are lowercase
    internal_keys = {"LOAD_DOTENV", "ENVIRONMENTS", "SETTINGS_FILES"}
    raw_config = {k.lower(): v for k, v in dynaconf_settings.as_dict().items() if k not in internal_keys}
    known = TracingSettings.model_fields.keys()
    return TracingSettings(**{k: v for k, v in raw_config.items() if k in known})
