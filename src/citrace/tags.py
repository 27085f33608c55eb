# src/citrace/tags.py
"""Span tag names and fixed values for test spans.

Test tag names and status values come from ddtrace.ext.test, the CI
visibility conventions understood by the tracing backend. They are plain
strings so that every tracer adapter can apply them without translation,
except the handful of keys that map onto span attributes (see ``citrace.tracers.datadog``).
"""

from enum import StrEnum

from ddtrace.ext import ci
from ddtrace.ext import test

TEST_TYPE = test.TYPE
TEST_NAME = test.NAME
TEST_SUITE = test.SUITE
TEST_STATUS = test.STATUS
TEST_PARAMETERS = test.PARAMETERS
TEST_FRAMEWORK = test.FRAMEWORK

ERROR_TYPE = "error.type"
ERROR_MESSAGE = "error.msg"
ERROR_STACK = "error.stack"

RESOURCE_NAME = "resource.name"
SPAN_TYPE = "span.type"
SAMPLING_PRIORITY = "sampling.priority"
SAMPLING_RULE_DECISION = "_dd.rule_psr"
ORIGIN = "_dd.origin"

CI_APP_ORIGIN = ci.CI_APP_TEST_ORIGIN
AUTO_KEEP = 1
TEST_SPAN_TYPE = "test"
TIMEOUT_ERROR_TYPE = "Timeout"


class SpanStatus(StrEnum):
    """Terminal status of a test span.

    Written to the ``test.status`` tag at most once per span.
    """

    PASS = test.Status.PASS.value
    FAIL = test.Status.FAIL.value
    SKIP = test.Status.SKIP.value
