from typing import Literal

from pydantic import BaseModel

from ..models import ContainerSpec, ExecCommand, OutputMessage, message_on_stdout

NAME = "mongo"
TAG = "5.0.6"
MONGO_PORT = 27017


class Mongo(BaseModel):
    kind: Literal["standalone", "repl_set"] = "standalone"
    tag: str = TAG
    startup_timeout: float | None = None

    def spec(self) -> ContainerSpec:
        after_start = []
        if self.kind == "repl_set":
            after_start.append(
                ExecCommand(
                    cmd=["mongosh", "--quiet", "--eval", "rs.initiate()"],
                    cmd_ready_condition=OutputMessage(text="Using a default configuration for the set"),
                    container_ready_conditions=[message_on_stdout("Rebuilding PrimaryOnlyService due to stepUp")],
                )
            )

        return ContainerSpec(
            image=NAME,
            tag=self.tag,
            cmd=["--replSet", "rs"] if self.kind == "repl_set" else [],
            exposed_ports=[MONGO_PORT],
            wait_for=[message_on_stdout("Waiting for connections")],
            exec_after_start=after_start,
            startup_timeout=self.startup_timeout,
        )
