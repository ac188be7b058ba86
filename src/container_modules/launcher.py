import signal
import sys
import time
from typing import Any

import yaml
from pydantic import BaseModel, Field, model_validator
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .lifecycle import LifecycleController, RunningContainer
from .models import ContainerSpec, LifecycleResult
from .modules.dex import Dex
from .modules.gitea import Gitea
from .modules.kafka import Kafka
from .modules.mongo import Mongo
from .modules.pulsar import Pulsar
from .modules.redis import Redis
from .runtime import DockerRuntime
from .settings import AppSettings, get_settings

MODULES: dict[str, type[BaseModel]] = {
    "dex": Dex,
    "gitea": Gitea,
    "kafka": Kafka,
    "mongo": Mongo,
    "pulsar": Pulsar,
    "redis": Redis,
}


class ServiceEntry(BaseModel):
    """One service in the launch file: a known module or a raw container spec."""

    module: str | None = Field(None, description="Name of a bundled service module")
    options: dict[str, Any] = Field(default_factory=dict)
    spec: ContainerSpec | None = None

    @model_validator(mode="after")
    def exactly_one_source(self) -> "ServiceEntry":
        if (self.module is None) == (self.spec is None):
            raise ValueError("set exactly one of 'module' or 'spec'")
        if self.module is not None and self.module not in MODULES:
            raise ValueError(f"unknown module {self.module!r}, expected one of {sorted(MODULES)}")
        return self

    def build(self) -> ContainerSpec:
        if self.spec is not None:
            return self.spec
        return MODULES[self.module].model_validate(self.options).spec()


class LaunchPlan(BaseModel):
    services: list[ServiceEntry] = Field(..., min_length=1)

    @model_validator(mode="before")
    @classmethod
    def single_service_shorthand(cls, data: Any) -> Any:
        if isinstance(data, dict) and "services" not in data:
            return {"services": [data]}
        return data


class ServiceLauncher:
    """Starts the services of a launch file and holds them until interrupted."""

    def __init__(self, settings: AppSettings | None = None, controller: LifecycleController | None = None):
        self.settings = settings or get_settings()
        self.console = Console()
        self.running = False
        self.containers: list[RunningContainer] = []
        self._controller = controller

        signal.signal(signal.SIGINT, self.shutdown)
        signal.signal(signal.SIGTERM, self.shutdown)

    @property
    def controller(self) -> LifecycleController:
        if self._controller is None:
            self._controller = LifecycleController(DockerRuntime(self.settings), self.settings)
        return self._controller

    def load_plan(self) -> LaunchPlan:
        """Loads and validates the launch file from disk."""
        if not self.settings.SPEC_FILE.exists():
            self.console.print(f"[bold red]Fatal: {self.settings.SPEC_FILE} not found.[/]")
            sys.exit(1)

        with open(self.settings.SPEC_FILE) as f:
            raw_config = yaml.safe_load(f)

        return LaunchPlan.model_validate(raw_config)

    def launch(self, plan: LaunchPlan) -> list[LifecycleResult]:
        specs = [entry.build() for entry in plan.services]
        results = self.controller.start_many(specs)

        for spec, result in zip(specs, results):
            if result.ok:
                self.containers.append(
                    RunningContainer(self.controller.runtime, spec, result.container, self.controller.injector)
                )
        return results

    def report(self, plan: LaunchPlan, results: list[LifecycleResult]) -> None:
        table = Table(title="Services")
        table.add_column("Service")
        table.add_column("State")
        table.add_column("Endpoints")

        for entry, result in zip(plan.services, results):
            label = entry.module or entry.spec.image_ref
            if result.ok:
                state = result.container
                endpoints = ", ".join(f"{key} → {state.host}:{port}" for key, port in state.ports.items())
                table.add_row(label, "[green]ready[/green]", endpoints)
            else:
                table.add_row(label, "[bold red]failed[/bold red]", str(result.error))

        self.console.print(table)

    def start(self) -> int:
        """Launches the plan and idles until a signal arrives."""
        plan = self.load_plan()
        self.running = True

        self.console.print(
            Panel.fit(
                "[bold cyan]Container Modules[/bold cyan]\n"
                f"Plan: [blue]{self.settings.SPEC_FILE}[/blue]\n"
                f"Services: [blue]{len(plan.services)}[/blue]\n"
                f"Startup timeout: [blue]{self.settings.STARTUP_TIMEOUT:.0f}s[/blue]",
                title="Launch",
            )
        )

        results = self.launch(plan)
        self.report(plan, results)

        if not all(r.ok for r in results):
            self.shutdown(None, None)
            return 1

        self.console.print("[dim green]✓ All services ready. Ctrl+C to stop.[/dim green]")
        while self.running:
            time.sleep(0.1)
        return 0

    def shutdown(self, signum, frame):
        """Removes every container this launcher started."""
        if not self.running:
            return

        if signum is not None:
            self.console.print(f"\n[bold orange1]🛑 Signal {signum} received. Shutting down...[/bold orange1]")
        self.running = False

        for container in self.containers:
            try:
                self.console.print(f"🧹 Removing container: {container.id[:12]} ({container.spec.image_ref})...")
                container.remove()
            except Exception as e:
                self.console.print(f"❌ Error during cleanup: {e}")
        self.containers.clear()
        self.console.print("✅ Cleanup complete.")
