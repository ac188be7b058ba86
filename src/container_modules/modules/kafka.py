"""
Apache Kafka broker in KRaft mode.

The broker must advertise the host-visible port, which only exists once the
container is running. The main process therefore starts as a bash loop
waiting for a start script; the script is written after start with the
resolved port baked in, and readiness is read from the container log.
"""

from pydantic import BaseModel, Field

from ..injector import render_command, wait_for_file_command
from ..models import ContainerSpec, ContainerState, Step, message_on_stdout
from ..ports import resolve

KAFKA_NATIVE_IMAGE_NAME = "apache/kafka-native"
KAFKA_IMAGE_NAME = "apache/kafka"
KAFKA_PORT = 9092

START_SCRIPT = "/opt/kafka/testcontainers_start.sh"
READY_MESSAGE = "Kafka Server started"


class Kafka(BaseModel):
    jvm_image: bool = Field(False, description="Use apache/kafka instead of the GraalVM native image")
    tag: str = "latest"
    cluster_id: str = "5L6g3nShT-eMCtK--X86sw"
    broker_id: int = 1
    internal_topic_rf: int = Field(1, ge=1)
    startup_timeout: float | None = None

    @property
    def image(self) -> str:
        return KAFKA_IMAGE_NAME if self.jvm_image else KAFKA_NATIVE_IMAGE_NAME

    def env(self) -> dict[str, str]:
        return {
            "KAFKA_LISTENERS": f"PLAINTEXT://0.0.0.0:{KAFKA_PORT},BROKER://0.0.0.0:9093,CONTROLLER://0.0.0.0:9094",
            "CLUSTER_ID": self.cluster_id,
            "KAFKA_PROCESS_ROLES": "broker,controller",
            "KAFKA_CONTROLLER_LISTENER_NAMES": "CONTROLLER",
            "KAFKA_LISTENER_SECURITY_PROTOCOL_MAP": "BROKER:PLAINTEXT,PLAINTEXT:PLAINTEXT,CONTROLLER:PLAINTEXT",
            "KAFKA_INTER_BROKER_LISTENER_NAME": "BROKER",
            "KAFKA_ADVERTISED_LISTENERS": f"PLAINTEXT://localhost:{KAFKA_PORT},BROKER://localhost:9093",
            "KAFKA_BROKER_ID": str(self.broker_id),
            "KAFKA_OFFSETS_TOPIC_REPLICATION_FACTOR": str(self.internal_topic_rf),
            "KAFKA_CONTROLLER_QUORUM_VOTERS": f"{self.broker_id}@localhost:9094",
        }

    def render_start_script(self, state: ContainerState) -> str:
        advertised = f"PLAINTEXT://{state.host}:{resolve(state, KAFKA_PORT)},BROKER://localhost:9093"
        return f"#!/usr/bin/env bash\nexport KAFKA_ADVERTISED_LISTENERS={advertised}\n/etc/kafka/docker/run\n"

    def start_script(self, state: ContainerState) -> list[Step]:
        write = render_command(state, START_SCRIPT, self.render_start_script, mode="755")
        # the broker runs from the placeholder process, so readiness is in the container log
        return [write.model_copy(update={"container_ready_conditions": (message_on_stdout(READY_MESSAGE),)})]

    def spec(self) -> ContainerSpec:
        entrypoint, *cmd = wait_for_file_command(START_SCRIPT, START_SCRIPT, shell="bash")
        return ContainerSpec(
            image=self.image,
            tag=self.tag,
            entrypoint=entrypoint,
            cmd=cmd,
            env=self.env(),
            exposed_ports=[KAFKA_PORT],
            exec_after_start=[self.start_script],
            startup_timeout=self.startup_timeout,
        )
