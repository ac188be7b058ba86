"""
Command injection into a started container.

Steps are either an ``ExecCommand`` (argv run inside the container) or a
``CopyToContainer`` payload. Port-dependent steps are produced by callables
that receive the ``ContainerState``, so they can never run before the
container has started.
"""

import logging
import shlex
import time
from collections.abc import Callable, Iterable, Iterator, Sequence

from .errors import ContainerError, ExecFailed, ReadinessTimeout
from .models import (
    CmdSleep,
    CommandSource,
    ContainerState,
    CopyToContainer,
    ExecCommand,
    ExecResult,
    ExitCode,
    OutputMessage,
    Step,
)
from .wait import ConditionEvaluator, Deadline

logger = logging.getLogger(__name__)

Renderer = Callable[[ContainerState], str | bytes]


def wait_for_file_command(path: str, then: str, shell: str = "/bin/sh", interval: float = 0.1) -> list[str]:
    """
    Placeholder main process: poll until ``path`` exists, then run ``then``.

    Bridges "container started" and "configuration materialized"; the loop is
    bounded by the surrounding startup timeout, not by itself.
    """
    return [shell, "-c", f"while [ ! -f {shlex.quote(path)} ]; do sleep {interval}; done; {then}"]


def render_command(state: ContainerState, target: str, render: Renderer, mode: str | None = None) -> ExecCommand:
    """
    Shell one-liner that writes the rendered config to ``target``.

    The content goes to a sibling temp file first and is renamed into place,
    so a process polling for ``target`` never sees it partially written or
    without its mode.
    """
    content = render(state)
    if isinstance(content, bytes):
        content = content.decode()
    staging = shlex.quote(f"{target}.tmp")
    script = f"printf '%s' {shlex.quote(content)} > {staging}"
    if mode:
        script += f" && chmod {mode} {staging}"
    script += f" && mv -f {staging} {shlex.quote(target)}"
    return ExecCommand(cmd=["/bin/sh", "-c", script], cmd_ready_condition=ExitCode(code=0), description=f"write {target}")


def materializer(target: str, render: Renderer, mode: int = 0o644) -> Callable[[ContainerState], list[Step]]:
    """Command source that renders config from the started state and copies it in."""

    def build(state: ContainerState) -> list[Step]:
        content = render(state)
        if isinstance(content, str):
            content = content.encode()
        return [CopyToContainer(target=target, content=content, mode=mode)]

    return build


def expand(sources: Iterable[CommandSource], state: ContainerState) -> Iterator[Step]:
    """Static steps pass through; factories are called with the started state, in order."""
    for source in sources:
        if isinstance(source, (ExecCommand, CopyToContainer)):
            yield source
        else:
            yield from source(state)


class CommandInjector:
    def __init__(self, runtime, evaluator: ConditionEvaluator):
        self.runtime = runtime
        self.evaluator = evaluator

    def exec(self, state: ContainerState, command: ExecCommand, deadline: Deadline | None = None) -> ExecResult:
        """Run ``command`` and enforce its completion condition."""
        condition = command.cmd_ready_condition
        logger.info(f"[{state.id[:12]}] exec: {command.display()}")

        if condition is None:
            result = self._fire_and_forget(state, command)
        else:
            result = self._run_checked(state, command, deadline)

        self._wait_container(state, command, deadline)
        return result

    def _run_checked(self, state: ContainerState, command: ExecCommand, deadline: Deadline | None) -> ExecResult:
        condition = command.cmd_ready_condition
        result = self.runtime.exec(state.id, command.cmd, user=command.user, workdir=command.workdir)

        if isinstance(condition, ExitCode) and result.exit_code != condition.code:
            raise ExecFailed(command.cmd, result.exit_code, result.stdout, result.stderr)
        if isinstance(condition, OutputMessage) and condition.text not in result.output(condition.stream):
            raise ExecFailed(
                command.cmd,
                result.exit_code,
                result.stdout,
                result.stderr,
                reason=f"{condition.text!r} not found on {condition.stream}",
            )
        if isinstance(condition, CmdSleep):
            self._sleep(command, condition, deadline)
        return result

    def _sleep(self, command: ExecCommand, condition: CmdSleep, deadline: Deadline | None) -> None:
        delay = condition.millis / 1000
        if deadline is None:
            time.sleep(delay)
            return
        if delay > deadline.remaining():
            deadline.sleep(delay)
            raise ReadinessTimeout(
                [f"{condition.millis}ms after {command.display()}"],
                deadline.total,
                reason="delay exceeds startup timeout",
            )
        deadline.sleep(delay)

    def _fire_and_forget(self, state: ContainerState, command: ExecCommand) -> ExecResult:
        try:
            result = self.runtime.exec(state.id, command.cmd, user=command.user, workdir=command.workdir)
        except ContainerError as e:
            logger.warning(f"[{state.id[:12]}] ignored failure of {command.display()}: {e}")
            return ExecResult(exit_code=None)

        if result.exit_code not in (0, None):
            logger.warning(f"[{state.id[:12]}] {command.display()} exited with {result.exit_code}")
        return result

    def _wait_container(self, state: ContainerState, command: ExecCommand, deadline: Deadline | None) -> None:
        if not command.container_ready_conditions:
            return
        if deadline is None:
            deadline = Deadline(self.evaluator.settings.STARTUP_TIMEOUT)
        self.evaluator.wait_all(command.container_ready_conditions, state, deadline)

    def copy(self, state: ContainerState, payload: CopyToContainer) -> None:
        logger.info(f"[{state.id[:12]}] {payload.display()}")
        self.runtime.copy_to(state.id, payload.content, payload.target, payload.mode)

    def materialize(self, state: ContainerState, target: str, render: Renderer, mode: int = 0o644) -> None:
        for payload in materializer(target, render, mode)(state):
            self.copy(state, payload)

    def run_all(
        self, state: ContainerState, sources: Sequence[CommandSource], deadline: Deadline | None = None
    ) -> list[ExecResult]:
        """Strictly sequential; the first hard failure stops the list."""
        results = []
        for step in expand(sources, state):
            if isinstance(step, CopyToContainer):
                self.copy(state, step)
            else:
                results.append(self.exec(state, step, deadline))
        return results
