# tests/conftest.py
"""Shared test fixtures.

Fixtures:
- tracer: InMemoryTracer recording every span
- instrumenter: fresh Instrumenter
- runtime_config: default RuntimeTracingConfig with a short flush timeout
- suite: SuiteRun for ``tests/test_math.py``
- context: FakeExecutionContext with settable live state

Hypothesis Configuration:
- "ci" profile: Fast tests for CI (100 examples) - default
- "nightly" profile: Thorough tests (1000 examples)
- "debug" profile: Minimal tests with verbose output (10 examples)

Set profile via environment variable:
    HYPOTHESIS_PROFILE=nightly pytest tests/
"""

import os

import pytest
import structlog
from hypothesis import Phase, Verbosity, settings

from citrace.config import RuntimeTracingConfig
from citrace.dispatcher import TestEventDispatcher
from citrace.instrumentation import Instrumenter
from citrace.suite import SuiteRun
from citrace.tracers.memory import InMemoryTracer
from tests.helpers.runners import FakeExecutionContext

SUITE_NAME = "tests/test_math.py"


@pytest.fixture(autouse=True)
def _reset_structlog():
    """Keep structlog defaults between tests that configure logging."""
    yield
    structlog.reset_defaults()


@pytest.fixture
def tracer() -> InMemoryTracer:
    return InMemoryTracer()


@pytest.fixture
def instrumenter() -> Instrumenter:
    return Instrumenter()


@pytest.fixture
def runtime_config() -> RuntimeTracingConfig:
    return RuntimeTracingConfig(framework="citrace", timeout_error_prefix="Exceeded timeout", flush_timeout_seconds=1.0)


@pytest.fixture
def suite() -> SuiteRun:
    return SuiteRun(SUITE_NAME)


@pytest.fixture
def context() -> FakeExecutionContext:
    return FakeExecutionContext()


@pytest.fixture
def dispatcher(
    tracer: InMemoryTracer,
    suite: SuiteRun,
    context: FakeExecutionContext,
    instrumenter: Instrumenter,
    runtime_config: RuntimeTracingConfig,
) -> TestEventDispatcher:
    return TestEventDispatcher(tracer, suite, context, instrumenter=instrumenter, config=runtime_config)


# =============================================================================
# Hypothesis Configuration
# =============================================================================

settings.register_profile(
    "ci",
    max_examples=100,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,  # Disable deadline for CI (timing varies)
)

settings.register_profile(
    "nightly",
    max_examples=1000,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "ci"))
