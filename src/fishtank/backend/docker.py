"""Container lifecycle management using the Docker CLI."""

import asyncio
import errno
import json
import logging
from collections.abc import Sequence
from typing import cast, final, override

from ..errors import DockerError
from .base import (
    CommandResult,
    ContainerBackend,
    ContainerDetails,
    ContainerInspect,
    Labels,
    PortBindings,
    Volumes,
)

logger = logging.getLogger(__name__)

DEFAULT_COMMAND = "docker"


def _label_args(flag: str, labels: Labels | None) -> list[str]:
    args: list[str] = []
    for key, value in (labels or {}).items():
        args.extend([flag, f"{key}={value}"])
    return args


def _parse_ports(raw_ports: dict[str, list[dict[str, str]] | None] | None) -> PortBindings:
    bindings = PortBindings()
    for port_spec, host_bindings in (raw_ports or {}).items():
        if not host_bindings:
            continue
        port, _, protocol = port_spec.partition("/")
        target = bindings.udp if protocol == "udp" else bindings.tcp
        target[int(port)] = int(host_bindings[0]["HostPort"])
    return bindings


@final
class Docker(ContainerBackend):
    def __init__(self, executable: str = DEFAULT_COMMAND):
        self.executable = executable

    async def _run_command(self, args: Sequence[str]) -> CommandResult:
        """Run a docker command and return its output, raising `DockerError` on failure."""
        command = [self.executable, *args]
        logger.debug(f"Running {' '.join(command)}")

        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            exit_code = errno.errorcode.get(e.errno, str(e.errno)) if e.errno else str(e)
            raise DockerError(command, exit_code, "", str(e)) from e

        stdout, stderr = await process.communicate()
        result = CommandResult(
            stdout=stdout.decode(errors="replace"),
            stderr=stderr.decode(errors="replace"),
        )
        assert process.returncode is not None
        if process.returncode != 0:
            raise DockerError(command, process.returncode, result.stdout, result.stderr)
        return result

    def _container_args(
        self,
        *,
        name: str | None,
        hostname: str | None,
        networks: Sequence[str],
        ports: Sequence[int],
        volumes: Volumes | None,
        labels: Labels | None,
    ) -> list[str]:
        args: list[str] = []
        if name:
            args.extend(["--name", name])
        if hostname:
            args.extend(["--hostname", hostname])
        for network in networks:
            args.extend(["--network", network])
        for port in ports:
            args.extend(["--publish", str(port)])
        args.extend(_label_args("--label", labels))
        for host_path, container_path in (volumes or {}).items():
            args.extend(["--volume", f"{host_path}:{container_path}"])
        return args

    @override
    async def create_network(
        self,
        name: str,
        *,
        driver: str = "bridge",
        attachable: bool = False,
        internal: bool = False,
        labels: Labels | None = None,
    ) -> None:
        command = ["network", "create", "--driver", driver]
        if attachable:
            command.append("--attachable")
        if internal:
            command.append("--internal")
        command.extend(_label_args("--label", labels))
        command.append(name)
        _ = await self._run_command(command)
        logger.info(f"Created docker network {name}")

    @override
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
        command = ["run", "--quiet", "--detach"]
        command.extend(
            self._container_args(
                name=name,
                hostname=hostname,
                networks=networks,
                ports=ports,
                volumes=volumes,
                labels=labels,
            )
        )
        command.append(image)
        command.extend(args)
        _ = await self._run_command(command)
        logger.info(f"Started container {name or image}")

    @override
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
        command = ["run", "--quiet", "--rm"]
        command.extend(
            self._container_args(
                name=name,
                hostname=None,
                networks=networks,
                ports=(),
                volumes=volumes,
                labels=labels,
            )
        )
        command.append(image)
        command.extend(args)
        return await self._run_command(command)

    @override
    async def inspect(self, container: str) -> ContainerInspect:
        result = await self._run_command(["inspect", "--format=json", container])
        data = cast(list[dict[str, object]], json.loads(result.stdout))
        if not data:
            raise DockerError(
                [self.executable, "inspect", "--format=json", container],
                "ENOENT",
                result.stdout,
                f"No such container: {container}",
            )

        info = data[0]
        config = cast(dict[str, object], info.get("Config") or {})
        network_settings = cast(dict[str, object], info.get("NetworkSettings") or {})
        raw_ports = cast(
            dict[str, list[dict[str, str]] | None] | None, network_settings.get("Ports")
        )
        return ContainerInspect(
            id=cast(str, info["Id"]),
            name=cast(str, info["Name"]).lstrip("/"),
            image=cast(str, config.get("Image", "")),
            ports=_parse_ports(raw_ports),
        )

    @override
    async def list_containers(self, *, labels: Labels | None = None) -> list[ContainerDetails]:
        command = ["ps", "--no-trunc", "--all", "--format=json"]
        for key, value in (labels or {}).items():
            command.extend(["--filter", f"label={key}={value}"])
        result = await self._run_command(command)

        containers: list[ContainerDetails] = []
        for line in result.stdout.splitlines():
            if not line:
                continue
            info = cast(dict[str, str], json.loads(line))
            containers.append(ContainerDetails(id=info["ID"], name=info["Names"], image=info["Image"]))
        return containers

    @override
    async def list_networks(self, *, labels: Labels | None = None) -> list[str]:
        command = ["network", "ls", "--no-trunc", "--format=json"]
        for key, value in (labels or {}).items():
            command.extend(["--filter", f"label={key}={value}"])
        result = await self._run_command(command)

        networks: list[str] = []
        for line in result.stdout.splitlines():
            if not line:
                continue
            info = cast(dict[str, str], json.loads(line))
            networks.append(info["Name"])
        return networks

    @override
    async def remove(
        self, containers: Sequence[str], *, force: bool = False, volumes: bool = False
    ) -> None:
        if not containers:
            return
        command = ["rm"]
        if force:
            command.append("--force")
        if volumes:
            command.append("--volumes")
        command.extend(containers)
        _ = await self._run_command(command)
        logger.info(f"Removed containers {', '.join(containers)}")

    @override
    async def remove_networks(self, networks: Sequence[str], *, force: bool = False) -> None:
        if not networks:
            return
        command = ["network", "remove"]
        if force:
            command.append("--force")
        command.extend(networks)
        _ = await self._run_command(command)
        logger.info(f"Removed docker networks {', '.join(networks)}")
