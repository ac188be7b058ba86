"""Container runtime boundary.

The lifecycle only talks to a ``ContainerRuntime``; ``DockerRuntime`` is the
adapter for a Docker Engine reachable through the ``docker`` SDK.
"""

import io
import logging
import os
import re
import tarfile
import time
from collections.abc import Iterator, Sequence
from datetime import datetime
from posixpath import basename, dirname
from typing import Protocol
from urllib.parse import urlparse

import docker
from docker.errors import APIError, DockerException, ImageNotFound, NotFound
from docker.models.containers import Container
from docker.types import Mount as DockerMount

from .errors import CreateFailed, ExecFailed, RuntimeUnavailable, StartFailed
from .models import ContainerSpec, ContainerState, ExecResult, Stream
from .settings import AppSettings, get_settings

logger = logging.getLogger(__name__)

_FRACTION = re.compile(r"\.(\d{6})\d*")


class LogStream(Protocol):
    """Append-only, live byte stream. ``close()`` unblocks a pending read."""

    def __iter__(self) -> Iterator[bytes]: ...

    def close(self) -> None: ...


class ContainerRuntime(Protocol):
    def create(self, spec: ContainerSpec) -> str: ...

    def start(self, container_id: str) -> None: ...

    def status(self, container_id: str) -> str: ...

    def inspect(self, container_id: str) -> ContainerState: ...

    def health(self, container_id: str) -> str | None: ...

    def logs(self, container_id: str, stream: Stream, since: datetime | None = None) -> LogStream: ...

    def log_snapshot(self, container_id: str, stream: Stream) -> bytes: ...

    def exec(
        self, container_id: str, cmd: Sequence[str], user: str | None = None, workdir: str | None = None
    ) -> ExecResult: ...

    def copy_to(self, container_id: str, content: bytes, path: str, mode: int = 0o644) -> None: ...

    def stop(self, container_id: str) -> None: ...

    def remove(self, container_id: str) -> None: ...


def _parse_timestamp(value: str | None) -> datetime | None:
    # Docker reports nanoseconds, fromisoformat accepts at most microseconds.
    if not value or value.startswith("0001-"):
        return None
    value = _FRACTION.sub(r".\1", value.replace("Z", "+00:00"))
    return datetime.fromisoformat(value)


def _tar_single_file(name: str, content: bytes, mode: int) -> bytes:
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w") as archive:
        info = tarfile.TarInfo(name=name)
        info.size = len(content)
        info.mode = mode
        info.mtime = int(time.time())
        archive.addfile(info, io.BytesIO(content))
    return buffer.getvalue()


class DockerRuntime:
    """``ContainerRuntime`` backed by the Docker Engine API."""

    def __init__(self, settings: AppSettings | None = None, client: docker.DockerClient | None = None):
        self.settings = settings or get_settings()
        if client is not None:
            self.client = client
            return
        try:
            self.client = (
                docker.DockerClient(base_url=self.settings.DOCKER_BASE_URL)
                if self.settings.DOCKER_BASE_URL
                else docker.from_env()
            )
        except DockerException as e:
            raise RuntimeUnavailable(f"Could not connect to Docker daemon: {e}") from e

    def host(self) -> str:
        """Address at which published ports are reachable from this process."""
        if self.settings.HOST_OVERRIDE:
            return self.settings.HOST_OVERRIDE

        base_url = self.settings.DOCKER_BASE_URL or os.environ.get("DOCKER_HOST", "")
        parsed = urlparse(base_url)
        if parsed.scheme in ("tcp", "http", "https") and parsed.hostname:
            return parsed.hostname
        return "localhost"

    def _container(self, container_id: str) -> Container:
        return self.client.containers.get(container_id)

    def _reloaded(self, container_id: str) -> Container:
        try:
            container = self._container(container_id)
            container.reload()
        except APIError as e:
            raise StartFailed(container_id, f"container no longer available: {e}") from e
        return container

    def _remove_quietly(self, container: Container) -> None:
        try:
            container.remove(force=True, v=True)
        except APIError as e:
            logger.warning(f"Could not remove container {container.short_id}: {e}")

    def _ensure_image(self, spec: ContainerSpec) -> None:
        try:
            self.client.images.get(spec.image_ref)
        except ImageNotFound:
            if not self.settings.PULL_MISSING_IMAGES:
                raise
            logger.info(f"Pulling image {spec.image_ref}")
            self.client.images.pull(spec.image, tag=spec.tag)

    def create(self, spec: ContainerSpec) -> str:
        healthcheck = None
        if spec.healthcheck:
            healthcheck = {
                "test": ["CMD", *spec.healthcheck.test],
                "interval": int(spec.healthcheck.interval * 1e9),
                "timeout": int(spec.healthcheck.timeout * 1e9),
                "retries": spec.healthcheck.retries,
                "start_period": int(spec.healthcheck.start_period * 1e9),
            }

        mounts = [
            DockerMount(target=m.target, source=m.source, type=m.kind, read_only=m.read_only) for m in spec.mounts
        ]

        try:
            self._ensure_image(spec)
            container = self.client.containers.create(
                spec.image_ref,
                command=list(spec.cmd) or None,
                entrypoint=spec.entrypoint,
                environment=dict(spec.env),
                labels=dict(spec.labels),
                name=spec.name,
                # None asks the daemon for a random free host port
                ports={p.key: None for p in spec.exposed_ports},
                mounts=mounts,
                healthcheck=healthcheck,
                detach=True,
            )
        except (ImageNotFound, APIError) as e:
            raise CreateFailed(spec.image_ref, str(e)) from e

        try:
            for payload in spec.copy_to:
                self.copy_to(container.id, payload.content, payload.target, payload.mode)
        except ExecFailed as e:
            # the caller never sees this id, so it cannot clean up
            self._remove_quietly(container)
            raise CreateFailed(spec.image_ref, f"copy-in failed: {e}") from e

        logger.debug(f"Created container {container.short_id} from {spec.image_ref}")
        return container.id

    def start(self, container_id: str) -> None:
        try:
            self._container(container_id).start()
        except APIError as e:
            raise StartFailed(container_id, str(e)) from e

    def status(self, container_id: str) -> str:
        return self._reloaded(container_id).status

    def inspect(self, container_id: str) -> ContainerState:
        container = self._reloaded(container_id)

        ports: dict[str, int] = {}
        for key, bindings in (container.attrs["NetworkSettings"]["Ports"] or {}).items():
            if not bindings:
                continue
            ipv4 = [b for b in bindings if ":" not in b.get("HostIp", "")]
            ports[key] = int((ipv4 or bindings)[0]["HostPort"])

        return ContainerState(
            id=container.id,
            host=self.host(),
            ports=ports,
            started_at=_parse_timestamp(container.attrs["State"].get("StartedAt")),
        )

    def health(self, container_id: str) -> str | None:
        health = self._reloaded(container_id).attrs["State"].get("Health")
        return health["Status"] if health else None

    def logs(self, container_id: str, stream: Stream, since: datetime | None = None) -> LogStream:
        try:
            return self._container(container_id).logs(
                stdout=stream == "stdout",
                stderr=stream == "stderr",
                stream=True,
                follow=True,
                since=since,
            )
        except APIError as e:
            raise StartFailed(container_id, f"cannot follow {stream}: {e}") from e

    def log_snapshot(self, container_id: str, stream: Stream) -> bytes:
        return self._container(container_id).logs(stdout=stream == "stdout", stderr=stream == "stderr")

    def exec(
        self, container_id: str, cmd: Sequence[str], user: str | None = None, workdir: str | None = None
    ) -> ExecResult:
        try:
            result = self._container(container_id).exec_run(list(cmd), demux=True, user=user or "", workdir=workdir)
        except APIError as e:
            raise ExecFailed(cmd, None, reason=str(e)) from e
        stdout, stderr = result.output if result.output else (None, None)
        return ExecResult(exit_code=result.exit_code, stdout=stdout or b"", stderr=stderr or b"")

    def copy_to(self, container_id: str, content: bytes, path: str, mode: int = 0o644) -> None:
        archive = _tar_single_file(basename(path), content, mode)
        try:
            self._container(container_id).put_archive(dirname(path) or "/", archive)
        except APIError as e:
            raise ExecFailed(["copy_to", path], None, reason=str(e)) from e

    def stop(self, container_id: str) -> None:
        try:
            self._container(container_id).stop()
        except NotFound:
            logger.debug(f"Container {container_id[:12]} already gone")

    def remove(self, container_id: str) -> None:
        try:
            self._container(container_id).remove(force=True, v=True)
        except NotFound:
            logger.debug(f"Container {container_id[:12]} already gone")
