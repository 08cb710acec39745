import json
from collections.abc import Iterator
from pathlib import Path
from unittest.mock import AsyncMock, Mock, patch

import pytest
from fakes import FakeRpc, node_status

from fishtank import (
    BlockSequence,
    BootstrapOptions,
    Cluster,
    CommandResult,
    ContainerDetails,
    Docker,
    FishtankConfig,
    InvalidNameError,
    NodeExistsError,
    Node,
    WaitTimeoutError,
)
from fishtank.cluster import build_node_config, build_start_args, get_node_version

RPC_ARGS = ["--rpc.tcp", "--rpc.tcp.host", "0.0.0.0", "--no-rpc.tcp.tls"]


@pytest.fixture
def node_mocks() -> Iterator[tuple[AsyncMock, AsyncMock]]:
    with (
        patch.object(Node, "wait_for_start", AsyncMock()) as wait_for_start,
        patch.object(Node, "mine_until", AsyncMock()) as mine_until,
    ):
        yield wait_for_start, mine_until


def _containers(*names: str) -> list[ContainerDetails]:
    return [ContainerDetails(id=str(i), name=name, image="img") for i, name in enumerate(names)]


def _read_json(path: Path) -> object:
    return json.loads(path.read_text())


def test_invalid_cluster_name():
    with pytest.raises(InvalidNameError):
        _ = Cluster("my cluster", backend=Mock())


def test_cluster_properties(cluster: Cluster, config: FishtankConfig):
    assert cluster.network_name == "test-1"
    assert cluster.data_dir == config.data_root / "test-1"


def test_default_backend_is_docker():
    assert isinstance(Cluster("test-1").backend, Docker)


def test_build_node_config_does_not_mutate():
    config = {"networkId": 7}
    assert build_node_config(config, ["bootstrap"]) == {
        "networkId": 7,
        "bootstrapNodes": ["bootstrap"],
    }
    assert config == {"networkId": 7}


def test_build_node_config_keeps_explicit_bootstrap_nodes():
    config = {"bootstrapNodes": []}
    assert build_node_config(config, ["bootstrap"]) == {"bootstrapNodes": []}
    assert build_node_config(None, []) == {}


def test_build_start_args():
    assert build_start_args({}, None) == ["start", "--networkId", "2", *RPC_ARGS]
    assert build_start_args({"networkId": 0}, None, ["--verbose"]) == [
        "start",
        "--networkId",
        "0",
        *RPC_ARGS,
        "--verbose",
    ]
    assert build_start_args({"networkId": 0}, {"id": 42}) == [
        "start",
        "--customNetwork",
        "/root/.ironfish/customNetwork.json",
        *RPC_ARGS,
    ]


@pytest.mark.asyncio
async def test_init(
    cluster: Cluster, backend: Mock, node_mocks: tuple[AsyncMock, AsyncMock]
):
    wait_for_start, mine_until = node_mocks

    await cluster.init()

    backend.create_network.assert_awaited_once_with(
        "test-1", attachable=True, internal=False, labels={"fishtank.cluster": "test-1"}
    )
    data_dir = cluster.data_dir / "bootstrap" / ".ironfish"
    backend.run_detached.assert_awaited_once_with(
        "ironfish:test",
        name="test-1_bootstrap",
        hostname="bootstrap",
        networks=["test-1"],
        ports=[8020],
        volumes={data_dir: "/root/.ironfish"},
        labels={"fishtank.cluster": "test-1", "fishtank.node.role": "bootstrap"},
        args=["start", "--networkId", "2", *RPC_ARGS],
    )
    assert _read_json(data_dir / "config.json") == {}
    wait_for_start.assert_awaited_once()
    mine_until.assert_awaited_once_with(BlockSequence(2))


@pytest.mark.asyncio
async def test_init_internal_network(
    backend: Mock, config: FishtankConfig, node_mocks: tuple[AsyncMock, AsyncMock]
):
    config = config.model_copy(update={"internal_network": True})
    cluster = Cluster("test-1", backend=backend, config=config)

    await cluster.init(False)

    backend.create_network.assert_awaited_once_with(
        "test-1", attachable=True, internal=True, labels={"fishtank.cluster": "test-1"}
    )


@pytest.mark.asyncio
async def test_init_without_bootstrap(
    cluster: Cluster, backend: Mock, node_mocks: tuple[AsyncMock, AsyncMock]
):
    await cluster.init(False)

    backend.create_network.assert_awaited_once()
    backend.run_detached.assert_not_awaited()


@pytest.mark.asyncio
async def test_init_with_bootstrap_options(
    cluster: Cluster, backend: Mock, node_mocks: tuple[AsyncMock, AsyncMock]
):
    _, mine_until = node_mocks

    await cluster.init(BootstrapOptions(node_name="seed", node_image="ironfish:old", mine=False))

    kwargs = backend.run_detached.await_args.kwargs
    assert backend.run_detached.await_args.args == ("ironfish:old",)
    assert kwargs["name"] == "test-1_seed"
    assert kwargs["labels"]["fishtank.node.role"] == "bootstrap"
    mine_until.assert_not_awaited()


@pytest.mark.asyncio
async def test_spawn(cluster: Cluster, backend: Mock, node_mocks: tuple[AsyncMock, AsyncMock]):
    wait_for_start, _ = node_mocks
    backend.list_containers.return_value = _containers("test-1_bootstrap")

    node = await cluster.spawn("a")

    assert node.name == "a"
    assert node.container_name == "test-1_a"
    backend.list_containers.assert_any_await(
        labels={"fishtank.cluster": "test-1", "fishtank.node.role": "bootstrap"}
    )
    backend.list_containers.assert_any_await(labels={"fishtank.cluster": "test-1"})
    backend.run_detached.assert_awaited_once_with(
        "ironfish:test",
        name="test-1_a",
        hostname="a",
        networks=["test-1"],
        ports=[8020],
        volumes={node.data_dir: "/root/.ironfish"},
        labels={"fishtank.cluster": "test-1"},
        args=["start", "--networkId", "2", *RPC_ARGS],
    )
    assert _read_json(node.data_dir / "config.json") == {"bootstrapNodes": ["bootstrap"]}
    assert not (node.data_dir / "internal.json").exists()
    assert not (node.data_dir / "customNetwork.json").exists()
    wait_for_start.assert_awaited_once_with(timeout=None)


@pytest.mark.asyncio
async def test_spawn_with_files(
    cluster: Cluster, backend: Mock, node_mocks: tuple[AsyncMock, AsyncMock]
):
    wait_for_start, _ = node_mocks
    config = {"networkId": 7, "enableTelemetry": False}
    internal = {"isFirstRun": False}
    network_definition = {"id": 42, "bootstrapNodes": []}

    node = await cluster.spawn(
        "b",
        image="ironfish:dev",
        config=config,
        internal=internal,
        network_definition=network_definition,
        wait_for_start=False,
    )

    assert _read_json(node.data_dir / "config.json") == config
    assert _read_json(node.data_dir / "internal.json") == internal
    assert _read_json(node.data_dir / "customNetwork.json") == network_definition
    assert backend.run_detached.await_args.args == ("ironfish:dev",)
    assert backend.run_detached.await_args.kwargs["args"] == [
        "start",
        "--customNetwork",
        "/root/.ironfish/customNetwork.json",
        *RPC_ARGS,
    ]
    wait_for_start.assert_not_awaited()


@pytest.mark.asyncio
async def test_spawn_extra_start_args(
    backend: Mock, config: FishtankConfig, node_mocks: tuple[AsyncMock, AsyncMock]
):
    config = config.model_copy(update={"extra_start_args": ["--verbose", "--logLevel", "*:debug"]})
    cluster = Cluster("test-1", backend=backend, config=config)

    _ = await cluster.spawn("a", config={"networkId": 0})

    assert backend.run_detached.await_args.kwargs["args"] == [
        "start",
        "--networkId",
        "0",
        *RPC_ARGS,
        "--verbose",
        "--logLevel",
        "*:debug",
    ]


@pytest.mark.asyncio
async def test_spawn_invalid_name(cluster: Cluster, backend: Mock):
    with pytest.raises(InvalidNameError):
        _ = await cluster.spawn("a.b")

    backend.run_detached.assert_not_awaited()


@pytest.mark.asyncio
async def test_get_nodes(cluster: Cluster, backend: Mock):
    backend.list_containers.return_value = _containers("test-1_bootstrap", "test-1_a")

    nodes = await cluster.get_nodes()

    assert [node.name for node in nodes] == ["bootstrap", "a"]
    backend.list_containers.assert_awaited_once_with(labels={"fishtank.cluster": "test-1"})

    node = await cluster.get_node("a")
    assert node is not None
    assert node.cluster is cluster
    assert await cluster.get_node("missing") is None


@pytest.mark.asyncio
async def test_get_bootstrap_nodes(cluster: Cluster, backend: Mock):
    backend.list_containers.return_value = _containers("test-1_bootstrap")

    nodes = await cluster.get_bootstrap_nodes()

    assert [node.name for node in nodes] == ["bootstrap"]


@pytest.mark.asyncio
async def test_teardown(cluster: Cluster, backend: Mock):
    backend.list_containers.return_value = _containers("test-1_bootstrap", "test-1_a")
    backend.list_networks.return_value = ["test-1"]
    cluster.data_dir.mkdir(parents=True)
    _ = (cluster.data_dir / "marker").write_text("x")

    await cluster.teardown()

    backend.list_containers.assert_awaited_once_with(labels={"fishtank.cluster": "test-1"})
    backend.remove.assert_awaited_once_with(
        ["test-1_bootstrap", "test-1_a"], force=True, volumes=True
    )
    backend.list_networks.assert_awaited_once_with(labels={"fishtank.cluster": "test-1"})
    backend.remove_networks.assert_awaited_once_with(["test-1"], force=True)
    assert not cluster.data_dir.exists()


@pytest.mark.asyncio
async def test_teardown_of_empty_cluster_only_lists(config: FishtankConfig):
    docker = Docker()
    run_command = AsyncMock(return_value=CommandResult(stdout="", stderr=""))
    with patch.object(docker, "_run_command", run_command):
        cluster = Cluster("test-1", backend=docker, config=config)
        await cluster.teardown()
        await cluster.teardown()

    assert [c.args[0][:2] for c in run_command.await_args_list] == [
        ["ps", "--no-trunc"],
        ["network", "ls"],
    ] * 2


@pytest.mark.asyncio
async def test_get_node_version(cluster: Cluster, backend: Mock):
    backend.run.return_value = CommandResult(stdout="1.2.3 @ abcdef\n", stderr="")

    assert await cluster.get_node_version() == "1.2.3 @ abcdef"
    backend.run.assert_awaited_once_with("ironfish:test", args=["--version"])


def _patch_rpcs(clients: dict[str, FakeRpc]):
    async def connect_rpc(self: Node) -> FakeRpc:
        return clients[self.name]

    return patch.object(Node, "connect_rpc", connect_rpc)


@pytest.mark.asyncio
async def test_wait_for_convergence(cluster: Cluster):
    nodes = [Node(cluster, "a"), Node(cluster, "b")]
    clients = {"a": FakeRpc(), "b": FakeRpc()}
    clients["a"].get_status.side_effect = [
        node_status(5, head_hash="aa"),
        node_status(6, head_hash="bb"),
        node_status(6, head_hash="bb"),
    ]
    clients["b"].get_status.side_effect = [
        node_status(5, head_hash="aa", synced=False),
        node_status(5, head_hash="aa"),
        node_status(6, head_hash="bb"),
    ]

    with (
        _patch_rpcs(clients),
        patch.object(Node, "wait_for_scan", AsyncMock()) as wait_for_scan,
    ):
        await cluster.wait_for_convergence(nodes, timeout=5)

    assert clients["a"].get_status.await_count == 3
    assert wait_for_scan.await_count == 2
    for scan_call in wait_for_scan.await_args_list:
        assert 0 <= scan_call.kwargs["timeout"] <= 5
    assert all(client.closed for client in clients.values())


@pytest.mark.asyncio
async def test_wait_for_convergence_defaults_to_all_nodes(cluster: Cluster, backend: Mock):
    backend.list_containers.return_value = _containers("test-1_a")
    clients = {"a": FakeRpc()}
    clients["a"].get_status.return_value = node_status(1)

    with (
        _patch_rpcs(clients),
        patch.object(Node, "wait_for_scan", AsyncMock()) as wait_for_scan,
    ):
        await cluster.wait_for_convergence()

    wait_for_scan.assert_awaited_once()


@pytest.mark.asyncio
async def test_wait_for_convergence_timeout(cluster: Cluster):
    nodes = [Node(cluster, "a"), Node(cluster, "b")]
    clients = {"a": FakeRpc(), "b": FakeRpc()}
    clients["a"].get_status.return_value = node_status(6, head_hash="aa")
    clients["b"].get_status.return_value = node_status(6, head_hash="bb")

    with (
        _patch_rpcs(clients),
        patch.object(Node, "wait_for_scan", AsyncMock()) as wait_for_scan,
    ):
        with pytest.raises(WaitTimeoutError, match="disagree") as exc_info:
            await cluster.wait_for_convergence(nodes, timeout=0.05)

    assert "a=6 (aa)" in exc_info.value.reason
    assert "b=6 (bb)" in exc_info.value.reason
    wait_for_scan.assert_not_awaited()
    assert all(client.closed for client in clients.values())


@pytest.mark.asyncio
async def test_spawn_existing_node_keeps_its_files(
    cluster: Cluster, backend: Mock, node_mocks: tuple[AsyncMock, AsyncMock]
):
    node = await cluster.spawn("a", config={"networkId": 7})
    backend.list_containers.return_value = _containers("test-1_a")
    backend.run_detached.reset_mock()

    with pytest.raises(NodeExistsError, match="'a' already exists in cluster 'test-1'"):
        _ = await cluster.spawn("a", config={"networkId": 99}, internal={"isFirstRun": True})

    assert _read_json(node.data_dir / "config.json") == {"networkId": 7}
    assert not (node.data_dir / "internal.json").exists()
    backend.run_detached.assert_not_awaited()


@pytest.mark.asyncio
async def test_wait_for_convergence_skips_companions(cluster: Cluster, backend: Mock):
    backend.list_containers.return_value = _containers(
        "test-1_a", "test-1_a-miner-0a1b2c3d", "test-1_a-pool-deadbeef"
    )
    clients = {"a": FakeRpc()}
    clients["a"].get_status.return_value = node_status(1)

    with (
        _patch_rpcs(clients),
        patch.object(Node, "wait_for_scan", AsyncMock()) as wait_for_scan,
    ):
        await cluster.wait_for_convergence()

    clients["a"].get_status.assert_awaited_once()
    wait_for_scan.assert_awaited_once()
    assert [node.name for node in await cluster.get_nodes()] == [
        "a",
        "a-miner-0a1b2c3d",
        "a-pool-deadbeef",
    ]


@pytest.mark.asyncio
async def test_get_node_version_without_cluster(backend: Mock):
    backend.run.return_value = CommandResult(stdout="2.0.0\n", stderr="")

    assert await get_node_version(backend, "ironfish:dev") == "2.0.0"
    backend.run.assert_awaited_once_with("ironfish:dev", args=["--version"])
