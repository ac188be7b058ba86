from collections.abc import Callable, Sequence
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .errors import ContainerError

Stream = Literal["stdout", "stderr"]


class ContainerPort(BaseModel):
    """A container-internal port, e.g. 9092/tcp."""

    model_config = ConfigDict(frozen=True)

    port: int = Field(..., ge=1, le=65535)
    protocol: Literal["tcp", "udp", "sctp"] = "tcp"

    @model_validator(mode="before")
    @classmethod
    def parse_shorthand(cls, data: Any) -> Any:
        if isinstance(data, int):
            return {"port": data}
        if isinstance(data, str):
            port, _, protocol = data.partition("/")
            return {"port": int(port), "protocol": protocol or "tcp"}
        return data

    @classmethod
    def parse(cls, value: "ContainerPort | int | str") -> "ContainerPort":
        if isinstance(value, ContainerPort):
            return value
        return cls.model_validate(value)

    @property
    def key(self) -> str:
        return f"{self.port}/{self.protocol}"

    def __str__(self) -> str:
        return self.key


# --- Wait conditions -------------------------------------------------------


class LogMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["log_message"] = "log_message"
    stream: Stream = "stdout"
    text: str = Field(..., min_length=1)

    def describe(self) -> str:
        return f"{self.stream} message {self.text!r}"


class Http(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["http"] = "http"
    path: str = "/"
    port: ContainerPort
    expected_status: int = 200
    expected_body: str | None = None
    method: str = "GET"
    scheme: Literal["http", "https"] = "http"
    verify_tls: bool = True
    headers: dict[str, str] = Field(default_factory=dict)
    poll_interval: float | None = Field(None, gt=0)

    @field_validator("path")
    @classmethod
    def ensure_leading_slash(cls, v: str) -> str:
        return v if v.startswith("/") else f"/{v}"

    def describe(self) -> str:
        return f"HTTP {self.method} {self.path} on {self.port} -> {self.expected_status}"


class Duration(BaseModel):
    """Fixed delay. Flaky under load; prefer a real signal where the image has one."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["duration"] = "duration"
    millis: int = Field(..., ge=0)

    def describe(self) -> str:
        return f"fixed delay of {self.millis}ms"


class Healthcheck(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["healthcheck"] = "healthcheck"

    def describe(self) -> str:
        return "runtime healthcheck"


class All(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["all"] = "all"
    conditions: tuple["WaitCondition", ...] = Field(..., min_length=1)

    def describe(self) -> str:
        return "all of [" + ", ".join(c.describe() for c in self.conditions) + "]"


WaitCondition = Annotated[
    Union[LogMessage, Http, Duration, Healthcheck, All],
    Field(discriminator="kind"),
]

All.model_rebuild()


def message_on_stdout(text: str) -> LogMessage:
    return LogMessage(stream="stdout", text=text)


def message_on_stderr(text: str) -> LogMessage:
    return LogMessage(stream="stderr", text=text)


def http(path: str, port: "ContainerPort | int | str", status: int = 200, body: str | None = None, **options) -> Http:
    return Http(path=path, port=ContainerPort.parse(port), expected_status=status, expected_body=body, **options)


def seconds(value: float) -> Duration:
    return Duration(millis=int(value * 1000))


def millis(value: int) -> Duration:
    return Duration(millis=value)


def healthcheck() -> Healthcheck:
    return Healthcheck()


def all_of(*conditions: WaitCondition) -> All:
    return All(conditions=conditions)


# --- Commands ---------------------------------------------------------------


class ExitCode(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["exit_code"] = "exit_code"
    code: int = 0


class OutputMessage(BaseModel):
    """Message expected in the command's own output, not the container log."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["output_message"] = "output_message"
    stream: Stream = "stdout"
    text: str = Field(..., min_length=1)


class CmdSleep(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["sleep"] = "sleep"
    millis: int = Field(..., ge=0)


CmdWaitFor = Annotated[Union[ExitCode, OutputMessage, CmdSleep], Field(discriminator="kind")]


def exit_code(code: int = 0) -> ExitCode:
    return ExitCode(code=code)


class ExecCommand(BaseModel):
    model_config = ConfigDict(frozen=True)

    cmd: tuple[str, ...] = Field(..., min_length=1)
    cmd_ready_condition: CmdWaitFor | None = None
    container_ready_conditions: tuple[WaitCondition, ...] = ()
    user: str | None = None
    workdir: str | None = None
    description: str | None = None

    def display(self) -> str:
        return self.description or " ".join(self.cmd)


class CopyToContainer(BaseModel):
    """Bytes written to an absolute path inside the container."""

    model_config = ConfigDict(frozen=True)

    target: str
    content: bytes
    mode: int = 0o644

    @field_validator("target")
    @classmethod
    def require_absolute(cls, v: str) -> str:
        if not v.startswith("/"):
            raise ValueError(f"target must be an absolute path, got {v!r}")
        return v

    def display(self) -> str:
        return f"copy {len(self.content)} bytes to {self.target}"


Step = Union[ExecCommand, CopyToContainer]


class Mount(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["bind", "volume", "tmpfs"] = "volume"
    target: str
    source: str | None = None
    read_only: bool = False

    @model_validator(mode="after")
    def check_source(self) -> "Mount":
        if self.kind != "tmpfs" and not self.source:
            raise ValueError(f"{self.kind} mount for {self.target} needs a source")
        return self

    @classmethod
    def tmpfs(cls, target: str) -> "Mount":
        return cls(kind="tmpfs", target=target)


class HealthcheckConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    test: tuple[str, ...] = Field(..., min_length=1)
    interval: float = 1.0
    timeout: float = 5.0
    retries: int = 3
    start_period: float = 0.0


# --- Container description --------------------------------------------------


class ContainerState(BaseModel):
    """Runtime-assigned identity, captured once the container reports running."""

    model_config = ConfigDict(frozen=True)

    id: str
    host: str
    ports: dict[str, int] = Field(default_factory=dict)
    started_at: datetime | None = None


CommandSource = Union[ExecCommand, CopyToContainer, Callable[[ContainerState], Sequence[Step]]]


class ContainerSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    image: str = Field(..., min_length=1, description="Image name, optionally with :tag")
    tag: str = "latest"
    name: str | None = None
    entrypoint: str | None = None
    cmd: tuple[str, ...] = ()
    env: dict[str, str] = Field(default_factory=dict)
    labels: dict[str, str] = Field(default_factory=dict)
    exposed_ports: tuple[ContainerPort, ...] = ()
    copy_to: tuple[CopyToContainer, ...] = ()
    mounts: tuple[Mount, ...] = ()
    healthcheck: HealthcheckConfig | None = None
    wait_for: tuple[WaitCondition, ...] = ()
    exec_before_ready: tuple[CommandSource, ...] = ()
    exec_after_start: tuple[CommandSource, ...] = ()
    startup_timeout: float | None = Field(None, gt=0)

    @model_validator(mode="before")
    @classmethod
    def split_image_tag(cls, data: Any) -> Any:
        if isinstance(data, dict) and "tag" not in data and isinstance(data.get("image"), str):
            name, sep, tag = data["image"].rpartition(":")
            if sep and "/" not in tag:
                data = {**data, "image": name, "tag": tag}
        return data

    @field_validator("exposed_ports")
    @classmethod
    def dedupe_ports(cls, v: tuple[ContainerPort, ...]) -> tuple[ContainerPort, ...]:
        return tuple(dict.fromkeys(v))

    @property
    def image_ref(self) -> str:
        return f"{self.image}:{self.tag}"

    def replace(self, **changes: Any) -> "ContainerSpec":
        """Validated copy with some fields changed."""
        return type(self)(**{**dict(self), **changes})


# --- Outcome ----------------------------------------------------------------


class ExecResult(BaseModel):
    exit_code: int | None
    stdout: bytes = b""
    stderr: bytes = b""

    @property
    def stdout_text(self) -> str:
        return self.stdout.decode("utf-8", errors="replace")

    @property
    def stderr_text(self) -> str:
        return self.stderr.decode("utf-8", errors="replace")

    def output(self, stream: Stream) -> str:
        return self.stdout_text if stream == "stdout" else self.stderr_text


class LifecycleState(str, Enum):
    CREATED = "created"
    STARTED = "started"
    PRE_READY_EXEC = "pre_ready_exec"
    EVALUATING = "evaluating"
    POST_START_EXEC = "post_start_exec"
    READY = "ready"
    FAILED = "failed"


class LifecycleResult(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    state: Literal[LifecycleState.READY, LifecycleState.FAILED]
    container_id: str | None = None
    container: ContainerState | None = None
    error: ContainerError | None = None
    history: list[LifecycleState] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.state == LifecycleState.READY

    def unwrap(self) -> ContainerState:
        if self.error is not None:
            raise self.error
        if self.container is None:
            raise ContainerError(f"Lifecycle ended in {self.state.value} without a container state")
        return self.container
