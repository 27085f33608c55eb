"""
citrace: test-runner tracing for CI visibility.

Turns the lifecycle events of a test runner into one correctly tagged,
correctly finished span per logical test, across retries, timeouts,
parameterized variants, skips and hook failures.
"""

__version__ = "0.1.0"
