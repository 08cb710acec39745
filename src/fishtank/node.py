import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, final

from pydantic import ValidationError

from . import naming
from .backend import CommandResult
from .companion import companion_process
from .errors import NodeConfigurationError, RpcConnectionError, RpcError, RpcRequestError
from .rpc import RpcClient
from .wait_loop import Readiness, loop_with_timeout

if TYPE_CHECKING:
    from .cluster import Cluster

logger = logging.getLogger(__name__)

NODE_RPC_TCP_PORT = 8020
CONTAINER_DATADIR = "/root/.ironfish"


@dataclass(frozen=True)
class BlockSequence:
    """Mine until the head of the chain is at least `sequence`."""

    sequence: int


@dataclass(frozen=True)
class AdditionalBlocks:
    """Mine `count` blocks on top of the head observed when mining starts."""

    count: int


@dataclass(frozen=True)
class TransactionMined:
    """Mine until the transaction is found on the chain."""

    hash: str


@dataclass(frozen=True)
class AccountBalance:
    """Mine until the available balance of the account is at least `amount` ore."""

    amount: int
    account: str | None = None


type MineCondition = BlockSequence | AdditionalBlocks | TransactionMined | AccountBalance

type _ConditionCheck = Callable[[], Awaitable[bool]]


@final
class Node:
    """A cluster member backed by a container.

    Nodes hold no state of their own: everything is looked up from the
    container runtime or the node RPC on demand, so instances can be created
    and discarded freely.
    """

    def __init__(self, cluster: "Cluster", name: str):
        naming.assert_valid_name(name)
        self.cluster: "Cluster" = cluster
        self.name: str = name

    def __repr__(self) -> str:
        return f"Node(cluster={self.cluster.name!r}, name={self.name!r})"

    @property
    def container_name(self) -> str:
        return naming.container_name(self.cluster.name, self.name)

    @property
    def data_dir(self) -> Path:
        return self.cluster.data_dir / self.name / ".ironfish"

    @property
    def _backend(self):
        return self.cluster.backend

    @property
    def _config(self):
        return self.cluster.config

    async def get_image(self) -> str:
        return (await self._backend.inspect(self.container_name)).image

    async def get_rpc_tcp_port(self) -> int:
        info = await self._backend.inspect(self.container_name)
        port = info.ports.tcp.get(NODE_RPC_TCP_PORT)
        if port is None:
            raise NodeConfigurationError(
                f"Container {self.container_name} does not publish the RPC port "
                f"{NODE_RPC_TCP_PORT}/tcp; the node is not configured for external RPC"
            )
        return port

    async def connect_rpc(self) -> RpcClient:
        port = await self.get_rpc_tcp_port()
        client = RpcClient(self._config.rpc_host, port)
        await client.connect()
        return client

    async def get_node_status(self) -> str:
        """Returns `stopped` if the RPC is unreachable, `error` if it fails to
        answer, otherwise the status reported by the node (e.g. `started`)."""
        try:
            rpc = await self.connect_rpc()
        except RpcConnectionError:
            return "stopped"

        async with rpc:
            try:
                status = await rpc.get_status()
            except (RpcError, ValidationError):
                return "error"
        return status.node.status

    async def is_started(self) -> bool:
        return await self.get_node_status() == "started"

    async def wait_for_start(self, *, timeout: float | None = None) -> None:
        async def check() -> Readiness:
            status = await self.get_node_status()
            return Readiness(status == "started", f"node '{self.name}' is {status}")

        await loop_with_timeout(
            check,
            timeout=self._config.wait_timeout if timeout is None else timeout,
            interval=self._config.poll_interval,
        )

    async def wait_for_scan(self, *, timeout: float | None = None) -> None:
        async with await self.connect_rpc() as rpc:

            async def check() -> Readiness:
                status = await rpc.get_status()
                chain_head = status.blockchain.head
                wallet_head = status.accounts.head
                if wallet_head is None:
                    return Readiness(False, f"wallet of node '{self.name}' has no head")
                return Readiness(
                    wallet_head.hash == chain_head.hash,
                    f"wallet head of node '{self.name}' is {wallet_head.sequence} "
                    f"({wallet_head.hash}), chain head is {chain_head.sequence} ({chain_head.hash})",
                )

            await loop_with_timeout(
                check,
                timeout=self._config.wait_timeout if timeout is None else timeout,
                interval=self._config.poll_interval,
            )

    async def mine_until(
        self,
        until: MineCondition,
        *,
        pool: bool = False,
        interval: float | None = None,
    ) -> None:
        """Run a miner against this node until `until` holds.

        Nothing is spawned when the condition already holds. There is no
        deadline; callers bound the total run time themselves.
        """
        interval = self._config.mine_poll_interval if interval is None else interval

        async with await self.connect_rpc() as rpc:
            condition_met = await self._condition_check(rpc, until)
            if await condition_met():
                logger.info(f"Node '{self.name}' already satisfies {until}")
                return

            image = await self.get_image()
            async with self._mining(rpc, image, pool=pool):
                while not await condition_met():
                    await asyncio.sleep(interval)

        logger.info(f"Node '{self.name}' reached {until}")

    async def _condition_check(self, rpc: RpcClient, until: MineCondition) -> _ConditionCheck:
        match until:
            case BlockSequence(sequence=sequence):
                return self._head_reached(rpc, sequence)
            case AdditionalBlocks(count=count):
                head = (await rpc.get_status()).blockchain.head
                return self._head_reached(rpc, head.sequence + count)
            case TransactionMined(hash=transaction_hash):

                async def transaction_mined() -> bool:
                    try:
                        _ = await rpc.get_transaction(transaction_hash)
                    except RpcRequestError as e:
                        if e.status == 404:
                            return False
                        raise
                    return True

                return transaction_mined
            case AccountBalance(amount=amount, account=account):

                async def balance_reached() -> bool:
                    balance = await rpc.get_account_balance(account)
                    return balance.available >= amount

                return balance_reached

    def _head_reached(self, rpc: RpcClient, sequence: int) -> _ConditionCheck:
        async def check() -> bool:
            status = await rpc.get_status()
            return status.blockchain.head.sequence >= sequence

        return check

    def _companion(self, role: str, image: str, args: Sequence[str]):
        return companion_process(
            self._backend,
            self.cluster.name,
            self.name,
            role,
            image,
            args,
            volumes={self.data_dir: CONTAINER_DATADIR},
        )

    @asynccontextmanager
    async def _mining(self, rpc: RpcClient, image: str, *, pool: bool) -> AsyncIterator[None]:
        node_rpc_args = ["--rpc.tcp", "--rpc.tcp.host", self.name, "--no-rpc.tcp.tls"]

        async with AsyncExitStack() as stack:
            if pool:
                address = (await rpc.get_account_public_key()).publicKey
                pool_name = await stack.enter_async_context(
                    self._companion("pool", image, ["miners:pools:start", *node_rpc_args])
                )
                miner_args = ["miners:start", "--pool", pool_name, "--address", address]
            else:
                miner_args = ["miners:start", *node_rpc_args]

            _ = await stack.enter_async_context(self._companion("miner", image, miner_args))
            yield

    async def remove(self) -> None:
        await self._backend.remove([self.container_name], force=True, volumes=True)

    async def run_command(
        self,
        base_name: str,
        *,
        image: str | None = None,
        args: Sequence[str] = (),
    ) -> CommandResult:
        """Run a one-off container against this node's data directory."""
        return await self._backend.run(
            image or self._config.node_image,
            name=naming.companion_name(self.cluster.name, self.name, base_name),
            networks=[self.cluster.network_name],
            volumes={self.data_dir: CONTAINER_DATADIR},
            labels=naming.cluster_labels(self.cluster.name),
            args=args,
        )
