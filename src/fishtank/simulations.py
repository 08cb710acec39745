"""Named end-to-end simulations runnable from the command line."""

import logging
from collections.abc import Awaitable, Callable

from .config import FishtankConfig
from .errors import SimulationError
from .node import AccountBalance, TransactionMined
from .rpc import TransactionOutput
from .testing import ephemeral_cluster

logger = logging.getLogger(__name__)

type Simulation = Callable[[FishtankConfig], Awaitable[None]]

SEND_AMOUNT = 100_000_000
SENDER_BALANCE = 2 * SEND_AMOUNT
TRANSACTION_FEE = 500
TRANSACTION_EXPIRATION = 100


async def send_transaction(config: FishtankConfig) -> None:
    """Send $IRON between two nodes and check the receiver sees it once mined."""
    async with ephemeral_cluster("send", config=config) as cluster:
        await cluster.init()
        sender = await cluster.spawn("node-1")
        receiver = await cluster.spawn("node-2")

        await sender.mine_until(AccountBalance(SENDER_BALANCE))

        async with await receiver.connect_rpc() as receiver_rpc:
            address = (await receiver_rpc.get_account_public_key()).publicKey

        async with await sender.connect_rpc() as sender_rpc:
            created = await sender_rpc.create_transaction(
                [TransactionOutput(publicAddress=address, amount=str(SEND_AMOUNT), memo="fishtank")],
                fee=TRANSACTION_FEE,
                expiration=TRANSACTION_EXPIRATION,
            )
            posted = await sender_rpc.post_transaction(created.transaction)

        if not (posted.accepted and posted.broadcasted):
            raise SimulationError(
                f"Transaction {posted.hash} was not accepted "
                f"(accepted={posted.accepted}, broadcasted={posted.broadcasted})"
            )
        logger.info(f"Posted transaction {posted.hash}")

        await sender.mine_until(TransactionMined(posted.hash))
        await cluster.wait_for_convergence([sender, receiver])

        async with await receiver.connect_rpc() as receiver_rpc:
            balance = await receiver_rpc.get_account_balance()
        if balance.unconfirmed != SEND_AMOUNT:
            raise SimulationError(
                f"Receiver balance is {balance.unconfirmed} ore, expected {SEND_AMOUNT}"
            )


SIMULATIONS: dict[str, Simulation] = {
    "send": send_transaction,
}
