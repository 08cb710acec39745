import argparse
import asyncio
import logging
import sys
from collections.abc import Coroutine
from decimal import Decimal, InvalidOperation
from typing import Any, cast

from .backend import Docker
from .cluster import BootstrapOptions, Cluster, get_node_version
from .config import get_config
from .errors import FishtankError
from .node import AccountBalance, AdditionalBlocks, BlockSequence, MineCondition, TransactionMined
from .simulations import SIMULATIONS

logger = logging.getLogger(__name__)

ORE_PER_IRON = 10**8


def decode_iron(value: str) -> int:
    """Converts an amount of $IRON such as `1.5` into ore."""
    try:
        ore = Decimal(value.strip()) * ORE_PER_IRON
    except InvalidOperation:
        raise argparse.ArgumentTypeError(f"invalid amount: {value!r}") from None
    if ore < 0 or ore != ore.to_integral_value():
        raise argparse.ArgumentTypeError(f"invalid amount: {value!r}")
    return int(ore)


def _cluster(name: str) -> Cluster:
    return Cluster(name, config=get_config())


async def start(name: str, bootstrap: bool, image: str | None) -> None:
    cluster = _cluster(name)
    if bootstrap and image is not None:
        await cluster.init(BootstrapOptions(node_image=image))
    else:
        await cluster.init(bootstrap)
    logger.info(f"Cluster '{name}' started")


async def stop(name: str) -> None:
    await _cluster(name).teardown()


async def spawn(cluster_name: str, node_name: str, image: str | None) -> None:
    node = await _cluster(cluster_name).spawn(node_name, image=image)
    logger.info(f"Node '{node.name}' is running as container {node.container_name}")


async def mine_until(cluster_name: str, node_name: str, until: MineCondition, pool: bool) -> None:
    node = await _cluster(cluster_name).get_node(node_name)
    if node is None:
        logger.error(f"Node '{node_name}' not found in cluster '{cluster_name}'")
        sys.exit(1)
    await node.mine_until(until, pool=pool)


async def version(image: str | None) -> None:
    print(await get_node_version(Docker(), image or get_config().node_image))


async def run(name: str) -> None:
    simulation = SIMULATIONS.get(name)
    if simulation is None:
        logger.error(f"Could not find simulation '{name}'; available: {', '.join(SIMULATIONS)}")
        sys.exit(1)
    logger.info(f"Running simulation '{name}'")
    await simulation(get_config())
    logger.info(f"Simulation '{name}' finished")


def _condition(args: argparse.Namespace) -> MineCondition:
    if args.sequence is not None:
        return BlockSequence(cast(int, args.sequence))
    if args.additional_blocks is not None:
        return AdditionalBlocks(cast(int, args.additional_blocks))
    if args.transaction is not None:
        return TransactionMined(cast(str, args.transaction))
    return AccountBalance(cast(int, args.balance))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="fishtank",
        description="Manage clusters of Iron Fish nodes running in Docker",
    )
    _ = parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    start_parser = subparsers.add_parser("start", help="Spin up a new cluster")
    _ = start_parser.add_argument("name", help="The name of the cluster to create")
    _ = start_parser.add_argument(
        "--no-bootstrap",
        dest="bootstrap",
        action="store_false",
        help="Only create the network, without a bootstrap node",
    )
    _ = start_parser.add_argument("-i", "--image", help="Docker image for the bootstrap node")

    stop_parser = subparsers.add_parser(
        "stop", help="Remove all resources associated to a cluster"
    )
    _ = stop_parser.add_argument("name", help="The name of the cluster to stop")

    spawn_parser = subparsers.add_parser("spawn", help="Spin up a new node inside a cluster")
    _ = spawn_parser.add_argument(
        "name", help="A unique name to identify the node inside the cluster"
    )
    _ = spawn_parser.add_argument(
        "-c", "--cluster", required=True, help="The cluster to add the node to"
    )
    _ = spawn_parser.add_argument("-i", "--image", help="Docker image to spawn the node from")

    mine_parser = subparsers.add_parser(
        "mine-until", help="Mine on a node until a condition is met"
    )
    _ = mine_parser.add_argument("name", help="The name of the cluster")
    _ = mine_parser.add_argument("-n", "--node", required=True, help="The node to mine on")
    _ = mine_parser.add_argument(
        "--pool", action="store_true", help="Mine through a mining pool"
    )
    condition = mine_parser.add_mutually_exclusive_group(required=True)
    _ = condition.add_argument(
        "-s", "--sequence", type=int, help="Mine until the chain head is at least this sequence"
    )
    _ = condition.add_argument(
        "-a", "--additional-blocks", type=int, help="Mine this many blocks on top of the head"
    )
    _ = condition.add_argument(
        "-t", "--transaction", help="Mine until this transaction is on a block"
    )
    _ = condition.add_argument(
        "-b",
        "--balance",
        type=decode_iron,
        help="Mine until the account balance is at least this amount of $IRON",
    )

    version_parser = subparsers.add_parser("version", help="Print the node version of an image")
    _ = version_parser.add_argument("-i", "--image", help="Docker image to query")

    run_parser = subparsers.add_parser("run", help="Run a named simulation")
    _ = run_parser.add_argument(
        "simulation",
        type=str.strip,
        help=f"The simulation to run, one of: {', '.join(SIMULATIONS)}",
    )

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command == "start" and not args.bootstrap and args.image is not None:
        parser.error("--image cannot be used with --no-bootstrap")

    logging.basicConfig(
        level=logging.DEBUG if cast(bool, args.verbose) else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    command = cast(str, args.command)
    coroutine: Coroutine[Any, Any, None]
    if command == "start":
        coroutine = start(cast(str, args.name), cast(bool, args.bootstrap), args.image)
    elif command == "stop":
        coroutine = stop(cast(str, args.name))
    elif command == "spawn":
        coroutine = spawn(cast(str, args.cluster), cast(str, args.name), args.image)
    elif command == "mine-until":
        coroutine = mine_until(
            cast(str, args.name), cast(str, args.node), _condition(args), cast(bool, args.pool)
        )
    elif command == "version":
        coroutine = version(args.image)
    else:
        coroutine = run(cast(str, args.simulation))

    try:
        asyncio.run(coroutine)
    except FishtankError as e:
        logger.error(f"{command} failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
