# tests/integration/test_environment_integration.py
"""End-to-end tests of the event environment model.

A fake runner drives a patched environment through whole suites; the
in-memory tracer records the resulting spans.
"""

import asyncio
import contextlib
import json
from types import SimpleNamespace

import pytest

from citrace.config import RuntimeTracingConfig
from citrace.instrumentation import Instrumenter
from citrace.integrations.environment import patch_environment, unpatch_environment
from citrace.suite import attached_suite
from citrace.tracers.memory import InMemoryTracer, RecordedSpan
from tests.helpers.runners import FakeEnvironmentRunner, FakeTest, make_environment_class

pytestmark = pytest.mark.integration

ROOT_DIR = "/repo"
TEST_PATH = "/repo/tests/test_math.py"
SUITE = "tests/test_math.py"


@pytest.fixture
def create_environment(tracer: InMemoryTracer, instrumenter: Instrumenter, runtime_config: RuntimeTracingConfig):
    environment_cls = patch_environment(make_environment_class(), tracer, instrumenter, runtime_config)

    def create(test_path: str = TEST_PATH):
        return environment_cls(SimpleNamespace(root_dir=ROOT_DIR), SimpleNamespace(test_path=test_path))

    return create


def spans_named(tracer: InMemoryTracer, name: str) -> list[RecordedSpan]:
    return tracer.find(test__name=name)


def assert_all_finished_once(tracer: InMemoryTracer) -> None:
    assert tracer.spans
    assert [span.finish_count for span in tracer.spans] == [1] * len(tracer.spans)


class TestEnvironmentSuiteRun:
    @pytest.mark.asyncio
    async def test_pass_and_fail(self, create_environment, tracer: InMemoryTracer) -> None:
        environment = create_environment()

        def declare(test) -> None:
            test("adds", lambda: None, describe="math")

            def fails() -> None:
                raise AssertionError("expected 1 to be 2")

            test("subtracts", fails, describe="math")

        await FakeEnvironmentRunner(environment).run(declare)

        adds, subtracts = spans_named(tracer, "math adds"), spans_named(tracer, "math subtracts")
        assert adds[0].tags["test.status"] == "pass"
        assert adds[0].resource == f"{SUITE}.math adds"
        assert adds[0].tags["test.suite"] == SUITE
        assert adds[0].tags["test.framework"] == "citrace"
        assert adds[0].tags["_dd.origin"] == "ciapp-test"
        assert subtracts[0].tags["test.status"] == "fail"
        assert subtracts[0].tags["error.msg"] == "expected 1 to be 2"
        assert_all_finished_once(tracer)

    @pytest.mark.asyncio
    async def test_teardown_flushes_and_runs_original(self, create_environment, tracer: InMemoryTracer) -> None:
        environment = create_environment()

        await FakeEnvironmentRunner(environment).run(lambda test: test("adds", lambda: None))

        assert tracer.flush_count == 1
        assert tracer.flushed == tracer.spans
        assert environment.torn_down
        assert environment.received == ["setup", "test_start", "test_fn_success", "test_done"]

    @pytest.mark.asyncio
    async def test_async_and_callback_bodies(self, create_environment, tracer: InMemoryTracer) -> None:
        environment = create_environment()

        async def awaits() -> None:
            await asyncio.sleep(0)

        def calls_back(done) -> None:
            asyncio.get_running_loop().call_soon(done)

        def declare(test) -> None:
            test("awaits", awaits)
            test("calls back", calls_back)

        await FakeEnvironmentRunner(environment).run(declare)

        assert spans_named(tracer, "awaits")[0].tags["test.status"] == "pass"
        assert spans_named(tracer, "calls back")[0].tags["test.status"] == "pass"

    @pytest.mark.asyncio
    async def test_suppressed_failure(self, create_environment, tracer: InMemoryTracer) -> None:
        environment = create_environment()
        runner = FakeEnvironmentRunner(environment)

        await runner.run(lambda test: test("soft", lambda: runner.suppress(AssertionError("soft failure"))))

        span = spans_named(tracer, "soft")[0]
        assert span.tags["test.status"] == "fail"
        assert span.tags["error.msg"] == "soft failure"
        assert runner.failures == []


class TestEnvironmentRetries:
    @pytest.mark.asyncio
    async def test_each_attempt_gets_own_span(self, create_environment, tracer: InMemoryTracer) -> None:
        environment = create_environment()
        attempts: list[int] = []

        def flaky() -> None:
            attempts.append(1)
            if len(attempts) < 3:
                raise AssertionError(f"attempt {len(attempts)}")

        test_holder: list[FakeTest] = []
        await FakeEnvironmentRunner(environment).run(lambda test: test_holder.append(test("flaky", flaky, retries=2)))

        spans = spans_named(tracer, "flaky")
        assert len(attempts) == 3
        assert [span.tags["test.status"] for span in spans] == ["fail", "fail", "pass"]
        assert len({span.trace_id for span in spans}) == 3
        assert all(span.parent_id is None for span in spans)
        assert_all_finished_once(tracer)
        assert test_holder[0].invocations == 3

    @pytest.mark.asyncio
    async def test_retry_after_timeout(self, create_environment, tracer: InMemoryTracer) -> None:
        environment = create_environment()
        attempts: list[int] = []

        async def slow_then_fast() -> None:
            attempts.append(1)
            if len(attempts) == 1:
                await asyncio.Event().wait()

        await FakeEnvironmentRunner(environment).run(lambda test: test("slow", slow_then_fast, retries=1, timeout=0.02))

        first, second = spans_named(tracer, "slow")
        assert first.tags["error.type"] == "Timeout"
        assert first.tags["test.status"] == "fail"
        assert second.tags["test.status"] == "pass"
        assert "error.type" not in second.tags
        assert_all_finished_once(tracer)


class TestEnvironmentTimeouts:
    @pytest.mark.asyncio
    async def test_never_settling_body(self, create_environment, tracer: InMemoryTracer) -> None:
        environment = create_environment()

        async def hangs() -> None:
            await asyncio.Event().wait()

        runner = FakeEnvironmentRunner(environment, default_timeout=0.02)
        await runner.run(lambda test: test("hangs", hangs))

        span = spans_named(tracer, "hangs")[0]
        assert span.tags["test.status"] == "fail"
        assert span.tags["error.type"] == "Timeout"
        assert span.tags["error.msg"] == "Exceeded timeout of 20 ms for a test."
        assert span.finish_count == 1

    @pytest.mark.asyncio
    async def test_hung_span_finished_at_teardown(self, create_environment, tracer: InMemoryTracer) -> None:
        environment = create_environment()
        runner = FakeEnvironmentRunner(environment)
        await runner.emit("setup")

        async def hangs() -> None:
            await asyncio.Event().wait()

        test = runner.api("hangs", hangs)
        test.invocations = 1
        await runner.emit("test_start", test)
        task = asyncio.ensure_future(test.fn())
        await asyncio.sleep(0)

        await environment.teardown()

        span = spans_named(tracer, "hangs")[0]
        assert span.finished
        assert tracer.flushed == [span]

        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        assert span.finish_count == 1


class TestEnvironmentParameters:
    @pytest.mark.asyncio
    async def test_each_rows_reach_spans_in_order(self, create_environment, tracer: InMemoryTracer) -> None:
        environment = create_environment()
        seen: list[tuple[int, int]] = []

        def adds(a: int, b: int) -> None:
            seen.append((a, b))

        await FakeEnvironmentRunner(environment).run(lambda test: test.each([[1, 2], [3, 4]])("adds", adds))

        spans = spans_named(tracer, "adds")
        assert seen == [(1, 2), (3, 4)]
        assert [json.loads(span.tags["test.parameters"]) for span in spans] == [
            {"arguments": [1, 2], "metadata": {}},
            {"arguments": [3, 4], "metadata": {}},
        ]

    @pytest.mark.asyncio
    async def test_plain_tests_have_no_parameters(self, create_environment, tracer: InMemoryTracer) -> None:
        environment = create_environment()
        await FakeEnvironmentRunner(environment).run(lambda test: test("adds", lambda: None))
        assert "test.parameters" not in spans_named(tracer, "adds")[0].tags

    @pytest.mark.asyncio
    async def test_setup_twice_wraps_each_once(self, create_environment, instrumenter: Instrumenter) -> None:
        environment = create_environment()
        runner = FakeEnvironmentRunner(environment)
        original_each = runner.api.each

        await runner.emit("setup")
        await runner.emit("setup")

        assert instrumenter.is_wrapped(runner.api, "each")
        assert runner.api.each.__citrace_original__ == original_each

        await environment.teardown()
        assert not instrumenter.is_wrapped(runner.api, "each")


class TestEnvironmentInstantSpans:
    @pytest.mark.asyncio
    async def test_skip_and_todo(self, create_environment, tracer: InMemoryTracer) -> None:
        environment = create_environment()

        def declare(test) -> None:
            test.skip("skipped")
            test.todo("planned")

        await FakeEnvironmentRunner(environment).run(declare, teardown=False)

        for name in ("skipped", "planned"):
            span = spans_named(tracer, name)[0]
            assert span.tags["test.status"] == "skip"
            assert span.finish_count == 1
        assert len(attached_suite(environment).spans) == 0
        await environment.teardown()

    @pytest.mark.asyncio
    async def test_skip_todo_and_hook_failure_after_run_test(self, create_environment, tracer: InMemoryTracer) -> None:
        environment = create_environment()

        def declare(test) -> None:
            test("adds", lambda: None, describe="math")
            test.skip("later")
            test.todo("planned")
            test("subtracts", lambda: None, hook_error=RuntimeError("beforeEach failed"))

        await FakeEnvironmentRunner(environment).run(declare)

        assert [(span.tags["test.name"], span.tags["test.status"]) for span in tracer.spans] == [
            ("math adds", "pass"),
            ("later", "skip"),
            ("planned", "skip"),
            ("subtracts", "fail"),
        ]
        assert spans_named(tracer, "later")[0].resource == f"{SUITE}.later"
        assert spans_named(tracer, "planned")[0].resource == f"{SUITE}.planned"
        assert spans_named(tracer, "subtracts")[0].tags["error.msg"] == "beforeEach failed"
        assert_all_finished_once(tracer)

    @pytest.mark.asyncio
    async def test_hook_failure_with_test(self, create_environment, tracer: InMemoryTracer) -> None:
        environment = create_environment()

        await FakeEnvironmentRunner(environment).run(
            lambda test: test("adds", lambda: None, hook_error=RuntimeError("beforeEach failed"))
        )

        span = spans_named(tracer, "adds")[0]
        assert span.tags["test.status"] == "fail"
        assert span.tags["error.type"] == "HookFailure"
        assert span.tags["error.msg"] == "beforeEach failed"
        assert span.finish_count == 1

    @pytest.mark.asyncio
    async def test_suite_level_hook_failure(self, create_environment, tracer: InMemoryTracer) -> None:
        environment = create_environment()
        runner = FakeEnvironmentRunner(environment)
        await runner.emit("setup")
        await runner.emit("hook_failure", None, "beforeAll failed")
        await environment.teardown()

        assert tracer.spans == []
        assert environment.received == ["setup", "hook_failure"]


class TestEnvironmentIsolation:
    @pytest.mark.asyncio
    async def test_concurrent_suites(self, create_environment, tracer: InMemoryTracer) -> None:
        math_env = create_environment("/repo/tests/test_math.py")
        strings_env = create_environment("/repo/tests/test_strings.py")

        async def works() -> None:
            await asyncio.sleep(0.01)

        await asyncio.gather(
            FakeEnvironmentRunner(math_env).run(lambda test: test("works", works)),
            FakeEnvironmentRunner(strings_env).run(lambda test: test("works", works)),
        )

        suites = sorted(span.tags["test.suite"] for span in spans_named(tracer, "works"))
        assert suites == ["tests/test_math.py", "tests/test_strings.py"]
        assert_all_finished_once(tracer)

    @pytest.mark.asyncio
    async def test_unpatched_environment_is_untraced(self, tracer: InMemoryTracer, instrumenter: Instrumenter, runtime_config) -> None:
        environment_cls = make_environment_class()
        patch_environment(environment_cls, tracer, instrumenter, runtime_config)
        unpatch_environment(environment_cls, instrumenter)

        environment = environment_cls(SimpleNamespace(root_dir=ROOT_DIR), SimpleNamespace(test_path=TEST_PATH))
        await FakeEnvironmentRunner(environment).run(lambda test: test("adds", lambda: None))

        assert tracer.spans == []
        assert environment.torn_down
