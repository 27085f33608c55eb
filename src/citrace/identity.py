# src/citrace/identity.py
"""Test identity and the identity resolution policy.

A test is identified by the suite it belongs to, its name, and the ordinal of
the current invocation. The same name may run several times within one suite
(retries, parameterized repeats), so the name alone is not unique.
"""

from dataclasses import dataclass
from pathlib import PurePosixPath


@dataclass(frozen=True, slots=True)
class TestIdentity:
    """Identity of one test invocation within a suite run.

    Attributes:
        suite_name: Suite file path relative to the run root
        test_name: Resolved test name (see resolve_test_name)
        invocation_ordinal: 1-based ordinal of this invocation of test_name
    """

    __test__ = False

    suite_name: str
    test_name: str
    invocation_ordinal: int = 1

    @property
    def key(self) -> tuple[str, int]:
        """Correlation key: ``(test_name, invocation_ordinal)``."""
        return (self.test_name, self.invocation_ordinal)

    @property
    def resource(self) -> str:
        """Resource identifier reported to the backend."""
        return f"{self.suite_name}.{self.test_name}"


def resolve_test_name(declared_name: str, reported_name: str | None) -> str:
    """Pick the name a test is reported under.

    The execution model's live "current test name" carries the full name
    (including enclosing describe blocks), so it wins when it belongs to the
    declared test: equal to it, or ending with it after a space. Runners only
    update that name when a test starts, so for events of tests that never
    start (skip, todo, hook failures) it still names the previous test and is
    ignored in favour of the declared name.

    Args:
        declared_name: Name carried by the runner event or declaration
        reported_name: Name reported by the execution context, if any

    Returns:
        The name used for the span and for correlation lookups
    """
    if reported_name and (reported_name == declared_name or reported_name.endswith(f" {declared_name}")):
        return reported_name
    return declared_name


def relativize_suite_path(test_path: str, root_dir: str) -> str:
    """Express a suite path relative to the run root.

    Paths outside the root are returned unchanged.

    Example:
        >>> relativize_suite_path("/repo/tests/test_math.py", "/repo")
        'tests/test_math.py'
    """
    path = PurePosixPath(test_path)
    root = PurePosixPath(root_dir)
    if path.is_relative_to(root) and path != root:
        return str(path.relative_to(root))
    return test_path
