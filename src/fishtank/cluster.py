import asyncio
import json
import logging
import shutil
from collections.abc import Mapping, Sequence
from contextlib import AsyncExitStack
from pathlib import Path
from typing import Any, final

from pydantic import BaseModel

from . import naming
from .backend import ContainerBackend, Docker, Labels
from .config import FishtankConfig
from .errors import NodeExistsError
from .node import CONTAINER_DATADIR, NODE_RPC_TCP_PORT, BlockSequence, Node
from .wait_loop import Readiness, loop_with_timeout

logger = logging.getLogger(__name__)

DEFAULT_BOOTSTRAP_NODE_NAME = "bootstrap"
DEVNET_NETWORK_ID = 2
BOOTSTRAP_MINE_SEQUENCE = 2

NODE_RPC_ARGS = ["--rpc.tcp", "--rpc.tcp.host", "0.0.0.0", "--no-rpc.tcp.tls"]

type JSONObject = Mapping[str, Any]


class BootstrapOptions(BaseModel):
    node_name: str = DEFAULT_BOOTSTRAP_NODE_NAME
    node_image: str | None = None
    config: dict[str, Any] | None = None
    network_definition: dict[str, Any] | None = None
    mine: bool = True


def build_node_config(config: JSONObject | None, bootstrap_nodes: Sequence[str]) -> dict[str, Any]:
    """Returns the node configuration to write, leaving `config` untouched.

    `bootstrapNodes` is filled in from the live bootstrap nodes unless the
    caller already chose a value.
    """
    node_config = dict(config or {})
    if bootstrap_nodes and "bootstrapNodes" not in node_config:
        node_config["bootstrapNodes"] = list(bootstrap_nodes)
    return node_config


def build_start_args(
    node_config: JSONObject,
    network_definition: JSONObject | None,
    extra_args: Sequence[str] = (),
) -> list[str]:
    args = ["start"]
    if network_definition is not None:
        args.extend(["--customNetwork", f"{CONTAINER_DATADIR}/customNetwork.json"])
    else:
        args.extend(["--networkId", str(node_config.get("networkId", DEVNET_NETWORK_ID))])
    args.extend(NODE_RPC_ARGS)
    args.extend(extra_args)
    return args


async def get_node_version(backend: ContainerBackend, image: str) -> str:
    """Returns the version reported by the node binary in `image`."""
    result = await backend.run(image, args=["--version"])
    return result.stdout.strip()


def _write_json(file: Path, content: JSONObject) -> None:
    _ = file.write_text(json.dumps(content))


@final
class Cluster:
    """A named Docker network plus the node containers attached to it.

    The container runtime is the only source of truth: nodes are discovered
    through the `fishtank.cluster` label every time they are needed.
    """

    def __init__(
        self,
        name: str,
        *,
        backend: ContainerBackend | None = None,
        config: FishtankConfig | None = None,
    ):
        naming.assert_valid_name(name)
        self.name: str = name
        self.backend: ContainerBackend = backend if backend is not None else Docker()
        self.config: FishtankConfig = config if config is not None else FishtankConfig()

    def __repr__(self) -> str:
        return f"Cluster(name={self.name!r})"

    @property
    def network_name(self) -> str:
        return naming.network_name(self.name)

    @property
    def data_dir(self) -> Path:
        return self.config.data_root / self.name

    async def init(self, bootstrap: bool | BootstrapOptions = True) -> None:
        await self.backend.create_network(
            self.network_name,
            attachable=True,
            internal=self.config.internal_network,
            labels=naming.cluster_labels(self.name),
        )
        logger.info(f"Created network for cluster '{self.name}'")

        if bootstrap is True:
            _ = await self.bootstrap()
        elif isinstance(bootstrap, BootstrapOptions):
            _ = await self.bootstrap(bootstrap)

    async def bootstrap(self, options: BootstrapOptions | None = None) -> Node:
        """Spawn the bootstrap node and, unless disabled, mine it past genesis."""
        options = options if options is not None else BootstrapOptions()

        node = await self._spawn(
            options.node_name,
            image=options.node_image,
            config=options.config,
            network_definition=options.network_definition,
            extra_labels=naming.bootstrap_labels(self.name),
        )
        if options.mine:
            await node.mine_until(BlockSequence(BOOTSTRAP_MINE_SEQUENCE))
        return node

    async def get_bootstrap_nodes(self) -> list[Node]:
        return await self._nodes_with_labels(naming.bootstrap_labels(self.name))

    async def get_nodes(self) -> list[Node]:
        return await self._nodes_with_labels(naming.cluster_labels(self.name))

    async def get_node(self, name: str) -> Node | None:
        for node in await self.get_nodes():
            if node.name == name:
                return node
        return None

    async def _member_nodes(self) -> list[Node]:
        return [
            node
            for node in await self.get_nodes()
            if not naming.is_companion_container(self.name, node.container_name)
        ]

    async def _nodes_with_labels(self, labels: Labels) -> list[Node]:
        containers = await self.backend.list_containers(labels=labels)
        return [
            Node(self, naming.node_name_from_container(self.name, container.name))
            for container in containers
        ]

    async def spawn(
        self,
        name: str,
        *,
        image: str | None = None,
        config: JSONObject | None = None,
        internal: JSONObject | None = None,
        network_definition: JSONObject | None = None,
        wait_for_start: bool = True,
        timeout: float | None = None,
    ) -> Node:
        bootstrap_nodes = [node.name for node in await self.get_bootstrap_nodes()]
        return await self._spawn(
            name,
            image=image,
            config=config,
            internal=internal,
            network_definition=network_definition,
            bootstrap_nodes=bootstrap_nodes,
            wait_for_start=wait_for_start,
            timeout=timeout,
        )

    async def _spawn(
        self,
        name: str,
        *,
        image: str | None = None,
        config: JSONObject | None = None,
        internal: JSONObject | None = None,
        network_definition: JSONObject | None = None,
        bootstrap_nodes: Sequence[str] = (),
        extra_labels: Labels | None = None,
        wait_for_start: bool = True,
        timeout: float | None = None,
    ) -> Node:
        node = Node(self, name)
        if await self.get_node(name) is not None:
            raise NodeExistsError(self.name, name)
        node_config = build_node_config(config, bootstrap_nodes)

        data_dir = node.data_dir
        data_dir.mkdir(parents=True, exist_ok=True)
        _write_json(data_dir / "config.json", node_config)
        if internal is not None:
            _write_json(data_dir / "internal.json", internal)
        if network_definition is not None:
            _write_json(data_dir / "customNetwork.json", network_definition)

        await self.backend.run_detached(
            image or self.config.node_image,
            name=node.container_name,
            hostname=name,
            networks=[self.network_name],
            ports=[NODE_RPC_TCP_PORT],
            volumes={data_dir: CONTAINER_DATADIR},
            labels={**naming.cluster_labels(self.name), **(extra_labels or {})},
            args=build_start_args(node_config, network_definition, self.config.extra_start_args),
        )
        logger.info(f"Spawned node '{name}' in cluster '{self.name}'")

        if wait_for_start:
            await node.wait_for_start(timeout=timeout)
        return node

    async def wait_for_convergence(
        self,
        nodes: Sequence[Node] | None = None,
        *,
        timeout: float | None = None,
    ) -> None:
        """Wait until `nodes` (all cluster nodes by default) are synced on the
        same chain head and their wallets have scanned up to it.

        Both phases share a single `timeout` budget.
        """
        nodes = list(nodes) if nodes is not None else await self._member_nodes()
        timeout = self.config.wait_timeout if timeout is None else timeout

        loop = asyncio.get_running_loop()
        started_at = loop.time()

        async with AsyncExitStack() as stack:
            clients = [await stack.enter_async_context(await node.connect_rpc()) for node in nodes]

            async def converged() -> Readiness:
                statuses = await asyncio.gather(*(client.get_status() for client in clients))

                not_synced = [
                    node.name for node, status in zip(nodes, statuses) if not status.blockchain.synced
                ]
                if not_synced:
                    return Readiness(False, f"nodes not synced: {', '.join(not_synced)}")

                heads = {status.blockchain.head.hash for status in statuses}
                if len(heads) > 1:
                    return Readiness(
                        False,
                        "nodes disagree on the chain head: "
                        + ", ".join(
                            f"{node.name}={status.blockchain.head.sequence} ({status.blockchain.head.hash})"
                            for node, status in zip(nodes, statuses)
                        ),
                    )
                return Readiness(True)

            await loop_with_timeout(converged, timeout=timeout, interval=self.config.poll_interval)

        remaining = max(timeout - (loop.time() - started_at), 0.0)
        _ = await asyncio.gather(*(node.wait_for_scan(timeout=remaining) for node in nodes))

    async def teardown(self) -> None:
        """Remove every resource labeled with this cluster, then the scratch directory."""
        labels = naming.cluster_labels(self.name)

        containers = await self.backend.list_containers(labels=labels)
        await self.backend.remove(
            [container.name for container in containers], force=True, volumes=True
        )

        networks = await self.backend.list_networks(labels=labels)
        await self.backend.remove_networks(networks, force=True)

        if self.data_dir.exists():
            await asyncio.to_thread(shutil.rmtree, self.data_dir)
        logger.info(f"Cluster '{self.name}' torn down")

    async def get_node_version(self, image: str | None = None) -> str:
        return await get_node_version(self.backend, image or self.config.node_image)
