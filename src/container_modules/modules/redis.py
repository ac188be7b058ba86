from pydantic import BaseModel

from ..models import ContainerSpec, HealthcheckConfig, healthcheck, message_on_stdout

NAME = "redis"
TAG = "7.2"
REDIS_PORT = 6379


class Redis(BaseModel):
    tag: str = TAG
    use_healthcheck: bool = False
    startup_timeout: float | None = None

    def spec(self) -> ContainerSpec:
        if self.use_healthcheck:
            return ContainerSpec(
                image=NAME,
                tag=self.tag,
                exposed_ports=[REDIS_PORT],
                healthcheck=HealthcheckConfig(test=["redis-cli", "ping"], interval=0.5),
                wait_for=[healthcheck()],
                startup_timeout=self.startup_timeout,
            )

        return ContainerSpec(
            image=NAME,
            tag=self.tag,
            exposed_ports=[REDIS_PORT],
            wait_for=[message_on_stdout("Ready to accept connections")],
            startup_timeout=self.startup_timeout,
        )
