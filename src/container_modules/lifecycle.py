"""
Lifecycle controller.

    Created -> Started -> (PreReadyExec) -> Evaluating -> (PostStartExec) -> Ready
                   any state --error/timeout--> Failed

One best-effort attempt per call: no retries, no restarts.
"""

import logging
from collections.abc import Sequence
from concurrent.futures import ThreadPoolExecutor

from .errors import ContainerError, StartFailed
from .injector import CommandInjector
from .models import (
    ContainerPort,
    ContainerSpec,
    ContainerState,
    ExecCommand,
    ExecResult,
    LifecycleResult,
    LifecycleState,
    Stream,
)
from .ports import resolve
from .settings import AppSettings, get_settings
from .wait import ConditionEvaluator, Deadline

logger = logging.getLogger(__name__)


class RunningContainer:
    """Handle returned once a container is Ready."""

    def __init__(self, runtime, spec: ContainerSpec, state: ContainerState, injector: CommandInjector):
        self.runtime = runtime
        self.spec = spec
        self.state = state
        self._injector = injector

    @property
    def id(self) -> str:
        return self.state.id

    def host(self) -> str:
        return self.state.host

    def mapped_port(self, internal_port: ContainerPort | int | str) -> int:
        return resolve(self.state, internal_port)

    def exec(self, command: ExecCommand | Sequence[str]) -> ExecResult:
        if not isinstance(command, ExecCommand):
            command = ExecCommand(cmd=command)
        return self._injector.exec(self.state, command)

    def logs(self, stream: Stream = "stdout") -> bytes:
        return self.runtime.log_snapshot(self.id, stream)

    def stop(self) -> None:
        self.runtime.stop(self.id)

    def remove(self) -> None:
        self.runtime.remove(self.id)

    def __enter__(self) -> "RunningContainer":
        return self

    def __exit__(self, *exc_info) -> None:
        self.remove()

    def __repr__(self) -> str:
        return f"<RunningContainer {self.id[:12]} {self.spec.image_ref} ports={self.state.ports}>"


class LifecycleController:
    """Drives one ContainerSpec to Ready against an explicit runtime handle."""

    def __init__(self, runtime, settings: AppSettings | None = None, evaluator: ConditionEvaluator | None = None):
        self.runtime = runtime
        self.settings = settings or get_settings()
        self.evaluator = evaluator or ConditionEvaluator(runtime, self.settings)
        self.injector = CommandInjector(runtime, self.evaluator)

    def run(self, spec: ContainerSpec, timeout: float | None = None) -> LifecycleResult:
        history: list[LifecycleState] = []
        container_id: str | None = None

        def transition(to: LifecycleState) -> None:
            history.append(to)
            logger.info(f"{spec.image_ref} [{(container_id or '-')[:12]}] -> {to.value}")

        try:
            container_id = self.runtime.create(spec)
            transition(LifecycleState.CREATED)

            state = self._start(container_id)
            transition(LifecycleState.STARTED)

            deadline = Deadline(timeout or spec.startup_timeout or self.settings.STARTUP_TIMEOUT)

            if spec.exec_before_ready:
                transition(LifecycleState.PRE_READY_EXEC)
                self.injector.run_all(state, spec.exec_before_ready, deadline)

            transition(LifecycleState.EVALUATING)
            self.evaluator.wait_all(spec.wait_for, state, deadline)

            if spec.exec_after_start:
                transition(LifecycleState.POST_START_EXEC)
                self.injector.run_all(state, spec.exec_after_start, deadline)

        except ContainerError as e:
            transition(LifecycleState.FAILED)
            logger.error(f"{spec.image_ref} failed: {e}")
            if container_id and self.settings.REMOVE_ON_FAILURE:
                self._discard(container_id)
            return LifecycleResult(state=LifecycleState.FAILED, container_id=container_id, error=e, history=history)

        except BaseException:
            if container_id:
                self._discard(container_id)
            raise

        transition(LifecycleState.READY)
        return LifecycleResult(state=LifecycleState.READY, container_id=container_id, container=state, history=history)

    def start(self, spec: ContainerSpec, timeout: float | None = None) -> RunningContainer:
        """Like ``run`` but returns a handle or raises the typed error."""
        result = self.run(spec, timeout)
        return RunningContainer(self.runtime, spec, result.unwrap(), self.injector)

    def start_many(self, specs: Sequence[ContainerSpec], timeout: float | None = None) -> list[LifecycleResult]:
        """Independent lifecycles in parallel; results keep the input order."""
        if not specs:
            return []
        with ThreadPoolExecutor(max_workers=len(specs), thread_name_prefix="lifecycle") as pool:
            return list(pool.map(lambda spec: self.run(spec, timeout), specs))

    def _start(self, container_id: str) -> ContainerState:
        self.runtime.start(container_id)

        status = self.runtime.status(container_id)
        if status != "running":
            raise StartFailed(container_id, f"status is {status!r} after start")

        return self.runtime.inspect(container_id)

    def _discard(self, container_id: str) -> None:
        try:
            self.runtime.remove(container_id)
        except Exception as e:
            logger.warning(f"Error during cleanup of {container_id[:12]}: {e}")
