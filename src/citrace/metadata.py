# src/citrace/metadata.py
"""Environment metadata attached to every test span.

CI provider, git and runtime/OS tags come from ddtrace's CI extraction, which
understands the environment variables of the common CI providers and falls
back to the local git checkout.
"""

from collections.abc import MutableMapping

from ddtrace.ext import ci

from citrace.tags import TEST_FRAMEWORK


def collect_environment_metadata(
    framework: str,
    *,
    environ: MutableMapping[str, str] | None = None,
    cwd: str | None = None,
) -> dict[str, str]:
    """Return the CI, git, runtime and OS tags for test spans.

    Args:
        framework: Test framework name reported as ``test.framework``
        environ: Environment to read CI variables from (defaults to the process environment)
        cwd: Directory of the git checkout (defaults to the working directory)
    """
    metadata = ci.tags(environ, cwd)
    metadata[TEST_FRAMEWORK] = framework
    return metadata
