from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from pathlib import Path

from pydantic import BaseModel

type Labels = Mapping[str, str]
type Volumes = Mapping[Path, str]  # host_path -> container_path


class ContainerDetails(BaseModel):
    """Summary of a container as returned by `list_containers`."""

    id: str
    name: str
    image: str


class PortBindings(BaseModel):
    tcp: dict[int, int] = {}  # container_port -> host_port
    udp: dict[int, int] = {}


class ContainerInspect(BaseModel):
    """Details of a single container as returned by `inspect`."""

    id: str
    name: str
    image: str
    ports: PortBindings = PortBindings()


class CommandResult(BaseModel):
    stdout: str
    stderr: str


class ContainerBackend(ABC):
    """Container runtime operations needed to manage a cluster."""

    @abstractmethod
    async def create_network(
        self,
        name: str,
        *,
        driver: str = "bridge",
        attachable: bool = False,
        internal: bool = False,
        labels: Labels | None = None,
    ) -> None:
        pass

    @abstractmethod
    async def run_detached(
        self,
        image: str,
        *,
        name: str | None = None,
        hostname: str | None = None,
        networks: Sequence[str] = (),
        ports: Sequence[int] = (),
        volumes: Volumes | None = None,
        labels: Labels | None = None,
        args: Sequence[str] = (),
    ) -> None:
        pass

    @abstractmethod
    async def run(
        self,
        image: str,
        *,
        name: str | None = None,
        networks: Sequence[str] = (),
        volumes: Volumes | None = None,
        labels: Labels | None = None,
        args: Sequence[str] = (),
    ) -> CommandResult:
        pass

    @abstractmethod
    async def inspect(self, container: str) -> ContainerInspect:
        pass

    @abstractmethod
    async def list_containers(self, *, labels: Labels | None = None) -> list[ContainerDetails]:
        pass

    @abstractmethod
    async def list_networks(self, *, labels: Labels | None = None) -> list[str]:
        pass

    @abstractmethod
    async def remove(
        self, containers: Sequence[str], *, force: bool = False, volumes: bool = False
    ) -> None:
        pass

    @abstractmethod
    async def remove_networks(self, networks: Sequence[str], *, force: bool = False) -> None:
        pass
