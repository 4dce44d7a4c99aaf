from __future__ import annotations

from typing import Optional

import pytest

from cdp_harness.browser.base import (
    ContextCreationError,
    DisposeError,
    HarnessError,
    LaunchError,
    NavigationTimeoutError,
    SessionCreationError,
)
from cdp_harness.config import HarnessConfig
from cdp_harness.lifecycle.harness import TEARDOWN_STEPS, BrowserHarness
from cdp_harness.models import HarnessState


class Recorder:
    def __init__(self) -> None:
        self.events: list[str] = []


class StubProcess:
    def __init__(self, recorder: Recorder, *, kill_result: bool = True) -> None:
        self.recorder = recorder
        self.kill_result = kill_result
        self.kill_calls = 0
        self.pid = 1234

    def kill(self) -> bool:
        self.kill_calls += 1
        self.recorder.events.append("kill_process")
        return self.kill_result


class StubLauncher:
    def __init__(self, recorder: Recorder, *, fail: bool = False, kill_result: bool = True) -> None:
        self.recorder = recorder
        self.fail = fail
        self.kill_result = kill_result
        self.process: Optional[StubProcess] = None

    def launch(self) -> StubProcess:
        if self.fail:
            raise LaunchError("no browser")
        self.recorder.events.append("launch")
        self.process = StubProcess(self.recorder, kill_result=self.kill_result)
        return self.process


class StubSession:
    def __init__(self, recorder: Recorder, context_id: Optional[str], fail_close: bool) -> None:
        self.recorder = recorder
        self.context_id = context_id
        self.fail_close = fail_close
        self.close_calls = 0

    def close(self) -> None:
        self.close_calls += 1
        self.recorder.events.append("close_session")
        if self.fail_close:
            raise RuntimeError("tab crashed")


def make_factory_cls(recorder: Recorder, **failures: bool):
    class StubFactory:
        instances: list["StubFactory"] = []

        def __init__(self) -> None:
            self.close_calls = 0
            self.disposed: list[str] = []
            self.session: Optional[StubSession] = None

        @classmethod
        def connect(cls, process, timeouts):
            if failures.get("connect"):
                raise LaunchError("cannot attach")
            recorder.events.append("connect")
            factory = cls()
            cls.instances.append(factory)
            return factory

        def create_context(self) -> str:
            if failures.get("context"):
                raise ContextCreationError("no context")
            recorder.events.append("create_context")
            return "ctx-1"

        def create_session(self, context_id: Optional[str] = None) -> StubSession:
            if failures.get("session"):
                raise SessionCreationError("no tab")
            recorder.events.append(f"create_session:{context_id}")
            self.session = StubSession(recorder, context_id, failures.get("close_session", False))
            return self.session

        def dispose_context(self, context_id: str) -> None:
            recorder.events.append("dispose_context")
            if failures.get("dispose"):
                raise DisposeError("busy")
            self.disposed.append(context_id)

        def close(self) -> None:
            self.close_calls += 1
            recorder.events.append("close_factory")

    return StubFactory


def build_harness(recorder: Recorder, *, config: Optional[HarnessConfig] = None, launcher=None, **failures):
    factory_cls = make_factory_cls(recorder, **failures)
    harness = BrowserHarness(
        config or HarnessConfig(),
        launcher=launcher or StubLauncher(recorder),
        factory_cls=factory_cls,
    )
    return harness, factory_cls


def test_start_acquires_in_order_and_close_releases_in_reverse():
    recorder = Recorder()
    harness, factory_cls = build_harness(recorder)

    session = harness.start()
    assert harness.state is HarnessState.ACTIVE
    assert session.context_id == "ctx-1"

    report = harness.close()

    assert recorder.events == [
        "launch",
        "connect",
        "create_context",
        "create_session:ctx-1",
        "close_session",
        "dispose_context",
        "close_factory",
        "kill_process",
    ]
    assert report.step_names() == list(TEARDOWN_STEPS)
    assert report.succeeded is True
    assert harness.state is HarnessState.CLOSED
    assert harness.process_killed is True


def test_default_context_is_used_when_isolation_disabled():
    recorder = Recorder()
    config = HarnessConfig.model_validate({"browser": {"isolate": False}})
    harness, _ = build_harness(recorder, config=config)

    harness.start()
    harness.close()

    assert "create_context" not in recorder.events
    assert "create_session:None" in recorder.events
    assert "dispose_context" not in recorder.events


@pytest.mark.parametrize(
    ("failure", "error", "released"),
    [
        ("connect", LaunchError, ["kill_process"]),
        ("context", ContextCreationError, ["close_factory", "kill_process"]),
        ("session", SessionCreationError, ["dispose_context", "close_factory", "kill_process"]),
    ],
)
def test_partial_setup_failure_releases_what_was_acquired(failure, error, released):
    recorder = Recorder()
    harness, factory_cls = build_harness(recorder, **{failure: True})

    with pytest.raises(error):
        harness.start()

    teardown_events = [
        event
        for event in recorder.events
        if event in {"close_session", "dispose_context", "close_factory", "kill_process"}
    ]
    assert teardown_events == released
    assert harness.state is HarnessState.CLOSED
    assert harness.report is not None
    assert harness.report.step_names() == list(TEARDOWN_STEPS)
    assert harness.report.succeeded is True
    assert harness.process.kill_calls == 1
    for factory in factory_cls.instances:
        assert factory.close_calls == 1


def test_launch_failure_leaves_nothing_to_release():
    recorder = Recorder()
    harness, _ = build_harness(recorder, launcher=StubLauncher(recorder, fail=True))

    with pytest.raises(LaunchError):
        harness.start()

    assert recorder.events == []
    assert harness.report.step_names() == list(TEARDOWN_STEPS)
    assert harness.process_killed is None


def test_failing_step_does_not_stop_later_steps():
    recorder = Recorder()
    harness, factory_cls = build_harness(recorder, close_session=True, dispose=True)
    harness.start()

    report = harness.close()

    assert [step.name for step in report.failures] == ["close_session", "dispose_context"]
    assert factory_cls.instances[0].close_calls == 1
    assert harness.process.kill_calls == 1
    assert harness.state is HarnessState.CLOSED


def test_close_is_idempotent():
    recorder = Recorder()
    harness, factory_cls = build_harness(recorder)
    harness.start()

    first = harness.close()
    second = harness.close()

    assert first is second
    assert recorder.events.count("kill_process") == 1
    assert recorder.events.count("close_session") == 1
    assert factory_cls.instances[0].close_calls == 1


def test_process_that_survives_kill_is_reported():
    recorder = Recorder()
    harness, _ = build_harness(recorder, launcher=StubLauncher(recorder, kill_result=False))
    harness.start()

    report = harness.close()

    assert harness.process_killed is False
    assert [step.name for step in report.failures] == ["kill_process"]


def test_context_manager_tears_down_and_propagates_body_error():
    recorder = Recorder()
    harness, _ = build_harness(recorder)

    with pytest.raises(NavigationTimeoutError):
        with harness as session:
            assert session.context_id == "ctx-1"
            raise NavigationTimeoutError("slow page")

    assert recorder.events[-4:] == ["close_session", "dispose_context", "close_factory", "kill_process"]
    assert harness.state is HarnessState.CLOSED


def test_teardown_failure_does_not_mask_body_error():
    recorder = Recorder()
    harness, _ = build_harness(recorder, close_session=True)

    with pytest.raises(ValueError, match="assertion in test"):
        with harness:
            raise ValueError("assertion in test")

    assert [step.name for step in harness.report.failures] == ["close_session"]


def test_start_after_close_is_rejected():
    recorder = Recorder()
    harness, _ = build_harness(recorder)
    harness.close()

    with pytest.raises(HarnessError):
        harness.start()
    assert "launch" not in recorder.events
