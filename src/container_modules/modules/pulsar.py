"""Apache Pulsar standalone, dev-mode only."""

from pydantic import BaseModel, Field

from ..models import ContainerSpec, ExecCommand, Mount, exit_code, message_on_stdout

NAME = "apachepulsar/pulsar"
TAG = "2.10.6"

PULSAR_PORT = 6650
ADMIN_PORT = 8080


class Pulsar(BaseModel):
    tag: str = TAG
    config: dict[str, str] = Field(default_factory=dict, description="standalone.conf overrides")
    tenants: list[str] = Field(default_factory=list)
    namespaces: list[str] = Field(default_factory=list)
    topics: list[str] = Field(default_factory=list)
    admin_commands: list[list[str]] = Field(default_factory=list, description="Extra pulsar-admin invocations")
    startup_timeout: float | None = None

    def env(self) -> dict[str, str]:
        # read by bin/apply-config-from-env.py
        return {f"PULSAR_PREFIX_{name}": value for name, value in self.config.items()}

    def admin_invocations(self) -> list[list[str]]:
        commands = [["tenants", "create", t] for t in self.tenants]
        commands += [["namespaces", "create", n] for n in self.namespaces]
        commands += [["topics", "create", t] for t in self.topics]
        commands += self.admin_commands
        return [["bin/pulsar-admin", *c] for c in commands]

    def spec(self) -> ContainerSpec:
        return ContainerSpec(
            image=NAME,
            tag=self.tag,
            cmd=["sh", "-c", "bin/apply-config-from-env.py conf/standalone.conf && bin/pulsar standalone"],
            env=self.env(),
            exposed_ports=[PULSAR_PORT, ADMIN_PORT],
            mounts=[Mount.tmpfs("/pulsar/data")],
            wait_for=[
                message_on_stdout("HTTP Service started at"),
                message_on_stdout("messaging service is ready"),
            ],
            exec_after_start=[
                ExecCommand(cmd=c, cmd_ready_condition=exit_code(0)) for c in self.admin_invocations()
            ],
            startup_timeout=self.startup_timeout,
        )
