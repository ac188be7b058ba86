"""Published port lookup. Pure reads of a ContainerState, no I/O."""

from .errors import PortNotPublished
from .models import ContainerPort, ContainerState


def resolve(state: ContainerState, internal_port: ContainerPort | int | str) -> int:
    """Host port the runtime bound to ``internal_port``."""
    port = ContainerPort.parse(internal_port)
    try:
        return state.ports[port.key]
    except KeyError:
        raise PortNotPublished(port.key) from None


def resolve_host(state: ContainerState) -> str:
    return state.host


def endpoint(state: ContainerState, internal_port: ContainerPort | int | str) -> str:
    """``host:port`` string, the form most client configs want."""
    return f"{state.host}:{resolve(state, internal_port)}"
