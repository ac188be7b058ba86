import time

import pytest
import requests

from container_modules.errors import CreateFailed, ExecFailed, PortNotPublished, ReadinessTimeout, StartFailed
from container_modules.injector import materializer, wait_for_file_command
from container_modules.lifecycle import LifecycleController
from container_modules.models import (
    ContainerSpec,
    ExecCommand,
    ExecResult,
    LifecycleState,
    exit_code,
    http,
    message_on_stdout,
)
from container_modules.ports import resolve
from tests.fakes import FakeResponse, FakeSession

S = LifecycleState


@pytest.fixture
def controller(runtime, settings):
    return LifecycleController(runtime, settings)


def test_ready_after_log_message(runtime, controller):
    runtime.log_script = [(0.02, "stdout", b"starting\n"), (0.05, "stdout", b"ready\n")]
    spec = ContainerSpec(image="svc", exposed_ports=[8080], wait_for=[message_on_stdout("ready")])

    result = controller.run(spec)

    assert result.ok
    assert result.history == [S.CREATED, S.STARTED, S.EVALUATING, S.READY]
    assert result.container.ports == {"8080/tcp": 40000}
    assert runtime.removed == []


def test_ready_once_http_stops_refusing(runtime, settings):
    session = FakeSession(FakeResponse(200), refuse_for=0.3)
    controller = LifecycleController(runtime, settings)
    controller.evaluator.session_factory = lambda: session
    spec = ContainerSpec(image="svc", exposed_ports=[8080], wait_for=[http("/health", 8080)])

    result = controller.run(spec)

    assert result.ok
    assert session.refusals > 0
    assert session.urls[-1] == "http://localhost:40000/health"


def test_ready_after_response_reset_mid_body(runtime, settings):
    session = FakeSession(FakeResponse(200), failures=[requests.exceptions.ChunkedEncodingError("reset mid-body")])
    controller = LifecycleController(runtime, settings)
    controller.evaluator.session_factory = lambda: session
    spec = ContainerSpec(image="svc", exposed_ports=[8080], wait_for=[http("/health", 8080)])

    result = controller.run(spec)

    assert result.ok
    assert session.refusals == 1


def test_container_vanishing_during_start_is_typed(runtime, controller):
    def vanished(container_id):
        raise StartFailed(container_id, "container no longer available: 404 Not Found")

    runtime.inspect = vanished

    result = controller.run(ContainerSpec(image="svc"))

    assert isinstance(result.error, StartFailed)
    assert result.history == [S.CREATED, S.FAILED]


def test_every_top_level_condition_must_hold(runtime, controller):
    runtime.log_script = [(0.01, "stdout", b"ready\n")]
    spec = ContainerSpec(
        image="svc",
        wait_for=[message_on_stdout("ready"), message_on_stdout("accepting connections")],
    )

    result = controller.run(spec, timeout=0.3)

    assert not result.ok
    assert isinstance(result.error, ReadinessTimeout)
    assert result.error.unmet_conditions == ["stdout message 'accepting connections'"]


def test_timeout_fails_without_hanging(runtime, controller):
    runtime.log_script = [(2.0, "stdout", b"ready\n")]
    spec = ContainerSpec(image="slow", wait_for=[message_on_stdout("ready")], startup_timeout=0.2)

    started = time.monotonic()
    result = controller.run(spec)

    assert time.monotonic() - started < 1.5
    assert result.state == S.FAILED
    assert isinstance(result.error, ReadinessTimeout)
    assert result.history[-2:] == [S.EVALUATING, S.FAILED]
    assert runtime.removed == [result.container_id]


def test_failed_container_kept_when_configured(runtime, settings):
    settings.REMOVE_ON_FAILURE = False
    controller = LifecycleController(runtime, settings)
    spec = ContainerSpec(image="slow", wait_for=[message_on_stdout("ready")])

    result = controller.run(spec, timeout=0.1)

    assert not result.ok
    assert runtime.removed == []


def test_pre_ready_config_is_materialized_before_evaluation(runtime, controller):
    config_path = "/opt/kafka/start.sh"

    def render(state):
        return f"export ADVERTISED=PLAINTEXT://{state.host}:{resolve(state, 9092)}\n"

    def broker_boots_once_config_exists(rt):
        rt.emit("stdout", b"Kafka Server started\n")

    runtime.exec_hooks[("chmod", "755", config_path)] = broker_boots_once_config_exists
    spec = ContainerSpec(
        image="apache/kafka-native",
        cmd=wait_for_file_command(config_path, config_path),
        exposed_ports=[9092],
        exec_before_ready=[
            materializer(config_path, render),
            ExecCommand(cmd=["chmod", "755", config_path], cmd_ready_condition=exit_code(0)),
        ],
        wait_for=[message_on_stdout("Kafka Server started")],
    )

    result = controller.run(spec)

    assert result.ok
    assert result.history == [S.CREATED, S.STARTED, S.PRE_READY_EXEC, S.EVALUATING, S.READY]
    assert runtime.files[config_path] == b"export ADVERTISED=PLAINTEXT://localhost:40000\n"
    kinds = runtime.kinds()
    assert kinds.index("inspect") < kinds.index("copy") < kinds.index("exec") < kinds.index("logs")


def test_pre_ready_failure_skips_evaluation(runtime, controller):
    runtime.exec_results[("second",)] = ExecResult(exit_code=1)
    spec = ContainerSpec(
        image="svc",
        exec_before_ready=[
            ExecCommand(cmd=[name], cmd_ready_condition=exit_code(0)) for name in ("first", "second", "third")
        ],
        wait_for=[message_on_stdout("ready")],
    )

    result = controller.run(spec)

    assert isinstance(result.error, ExecFailed)
    assert result.error.exit_code == 1
    assert result.history == [S.CREATED, S.STARTED, S.PRE_READY_EXEC, S.FAILED]
    executed = [e[1] for e in runtime.events if e[0] == "exec"]
    assert executed == [("first",), ("second",)]
    assert "logs" not in runtime.kinds()


def test_unpublished_port_in_pre_ready_command(runtime, controller):
    spec = ContainerSpec(
        image="svc",
        exec_before_ready=[lambda state: [ExecCommand(cmd=["echo", str(resolve(state, 9092))])]],
    )

    result = controller.run(spec)

    assert isinstance(result.error, PortNotPublished)


def test_post_start_commands_run_after_readiness(runtime, controller):
    runtime.log_script = [(0.01, "stdout", b"HTTP Service started\n")]
    spec = ContainerSpec(
        image="apachepulsar/pulsar",
        wait_for=[message_on_stdout("HTTP Service started")],
        exec_after_start=[
            ExecCommand(cmd=["bin/pulsar-admin", "tenants", "create", "t1"], cmd_ready_condition=exit_code(0))
        ],
    )

    result = controller.run(spec)

    assert result.ok
    assert result.history == [S.CREATED, S.STARTED, S.EVALUATING, S.POST_START_EXEC, S.READY]
    kinds = runtime.kinds()
    assert kinds.index("logs") < kinds.index("exec")


def test_create_failure(runtime, controller):
    runtime.create_error = CreateFailed("nope:latest", "manifest unknown")

    result = controller.run(ContainerSpec(image="nope"))

    assert isinstance(result.error, CreateFailed)
    assert result.container_id is None
    assert result.history == [S.FAILED]
    assert runtime.removed == []


def test_start_failure_removes_container(runtime, controller):
    runtime.start_error = StartFailed("abc", "port is already allocated")

    result = controller.run(ContainerSpec(image="svc"))

    assert isinstance(result.error, StartFailed)
    assert result.history == [S.CREATED, S.FAILED]
    assert runtime.removed == [result.container_id]


def test_container_that_exits_immediately(runtime, controller):
    runtime.status_after_start = "exited"

    result = controller.run(ContainerSpec(image="svc"))

    assert isinstance(result.error, StartFailed)
    assert "exited" in str(result.error)


def test_start_returns_handle(runtime, controller):
    runtime.log_script = [(0.01, "stdout", b"ready\n")]
    spec = ContainerSpec(image="svc", exposed_ports=[9092, 9093], wait_for=[message_on_stdout("ready")])

    with controller.start(spec) as container:
        assert container.host() == "localhost"
        assert container.mapped_port(9093) == 40001
        assert container.exec(["echo", "hi"]).exit_code == 0
        with pytest.raises(PortNotPublished):
            container.mapped_port(5432)

    assert runtime.removed == [container.id]


def test_start_raises_typed_error(runtime, controller):
    spec = ContainerSpec(image="svc", wait_for=[message_on_stdout("ready")], startup_timeout=0.1)

    with pytest.raises(ReadinessTimeout):
        controller.start(spec)


def test_start_many_isolates_failures(runtime, controller):
    runtime.log_script = [(0.01, "stdout", b"ready\n")]
    good = ContainerSpec(image="good", wait_for=[message_on_stdout("ready")])
    bad = ContainerSpec(image="bad", wait_for=[message_on_stdout("never")], startup_timeout=0.3)

    results = controller.start_many([good, bad, good])

    assert [r.ok for r in results] == [True, False, True]
    assert isinstance(results[1].error, ReadinessTimeout)
    assert len({r.container_id for r in results}) == 3


def test_no_conditions_means_ready_after_start(runtime, controller):
    result = controller.run(ContainerSpec(image="svc"))
    assert result.ok
    assert result.unwrap().id == result.container_id
