"""Typed failures of a single container lifecycle."""

from collections.abc import Sequence


class ContainerError(Exception):
    """Base class for everything the lifecycle can fail with."""


class RuntimeUnavailable(ContainerError):
    pass


class CreateFailed(ContainerError):
    def __init__(self, image: str, reason: str):
        self.image = image
        self.reason = reason
        super().__init__(f"Runtime rejected container for {image}: {reason}")


class StartFailed(ContainerError):
    def __init__(self, container_id: str, reason: str):
        self.container_id = container_id
        self.reason = reason
        super().__init__(f"Container {container_id[:12]} failed to start: {reason}")


class ExecFailed(ContainerError):
    def __init__(
        self,
        command: Sequence[str],
        exit_code: int | None,
        stdout: bytes = b"",
        stderr: bytes = b"",
        reason: str | None = None,
    ):
        self.command = list(command)
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr
        detail = reason or f"exit code {exit_code}"
        super().__init__(f"Command {self.command!r} failed: {detail}")


class ReadinessTimeout(ContainerError):
    def __init__(self, unmet_conditions: Sequence[str], timeout: float | None = None, reason: str | None = None):
        self.unmet_conditions = list(unmet_conditions)
        self.timeout = timeout
        self.reason = reason

        message = "Readiness not reached"
        if timeout is not None:
            message += f" within {timeout:.1f}s"
        if reason:
            message += f" ({reason})"
        message += "; unmet: " + ", ".join(self.unmet_conditions)
        super().__init__(message)


class PortNotPublished(ContainerError):
    def __init__(self, internal_port: str):
        self.internal_port = internal_port
        super().__init__(f"Port {internal_port} was not declared as exposed")
