"""Minimal client for the Iron Fish socket RPC protocol.

Messages are JSON documents terminated by a form feed. Only the routes needed
to drive a cluster are exposed.
"""

import asyncio
import json
import logging
import traceback
from typing import Any, cast, final

from pydantic import BaseModel

from .errors import RpcConnectionError, RpcRequestError

logger = logging.getLogger(__name__)

MESSAGE_DELIMITER = b"\f"
NATIVE_ASSET_ID = "51f33a2f14f92735e562dc658a5639279ddca3d5079a6d1242b2a588a9cbf44c"


class ChainHead(BaseModel):
    hash: str
    sequence: int


class NodeInfo(BaseModel):
    status: str
    nodeName: str = ""


class BlockchainInfo(BaseModel):
    synced: bool = False
    head: ChainHead


class AccountsInfo(BaseModel):
    head: ChainHead | None = None


class NodeStatusResponse(BaseModel):
    node: NodeInfo
    blockchain: BlockchainInfo
    accounts: AccountsInfo = AccountsInfo()


class AccountBalanceResponse(BaseModel):
    account: str = ""
    confirmed: int = 0
    unconfirmed: int = 0
    available: int


class AccountPublicKeyResponse(BaseModel):
    account: str = ""
    publicKey: str


class TransactionOutput(BaseModel):
    publicAddress: str
    amount: str  # ore, encoded as a decimal string
    memo: str = ""
    assetId: str = NATIVE_ASSET_ID


class CreateTransactionResponse(BaseModel):
    transaction: str


class PostTransactionResponse(BaseModel):
    accepted: bool
    broadcasted: bool
    hash: str
    transaction: str = ""


@final
class RpcClient:
    def __init__(self, host: str, port: int, auth_token: str | None = None):
        self.host = host
        self.port = port
        self._auth_token = auth_token
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._next_message_id = 1

    @property
    def connected(self) -> bool:
        return self._writer is not None

    async def connect(self) -> None:
        if self._writer is not None:
            return
        try:
            self._reader, self._writer = await asyncio.open_connection(self.host, self.port)
        except OSError as e:
            raise RpcConnectionError(f"Could not connect to {self.host}:{self.port}: {e}") from e

    async def aclose(self) -> None:
        if self._writer is not None:
            self._writer.close()
            try:
                await self._writer.wait_closed()
            except OSError:
                pass
            self._reader = None
            self._writer = None

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: traceback.TracebackException | None,
    ):
        await self.aclose()

    async def _read_frame(self) -> dict[str, Any]:
        assert self._reader is not None
        try:
            raw = await self._reader.readuntil(MESSAGE_DELIMITER)
        except (asyncio.IncompleteReadError, OSError) as e:
            raise RpcConnectionError(f"Connection to {self.host}:{self.port} lost: {e}") from e
        return cast(dict[str, Any], json.loads(raw[: -len(MESSAGE_DELIMITER)]))

    async def request(self, route: str, data: object = None) -> Any:
        if self._writer is None:
            raise RpcConnectionError(f"Not connected to {self.host}:{self.port}")

        message_id = self._next_message_id
        self._next_message_id += 1

        message = {
            "type": "message",
            "data": {"mid": message_id, "type": route, "data": data, "auth": self._auth_token},
        }
        self._writer.write(json.dumps(message).encode() + MESSAGE_DELIMITER)
        try:
            await self._writer.drain()
        except OSError as e:
            raise RpcConnectionError(f"Connection to {self.host}:{self.port} lost: {e}") from e

        while True:
            frame = await self._read_frame()
            frame_type = frame.get("type")
            payload = cast(dict[str, Any], frame.get("data") or {})

            if frame_type == "malformedRequest":
                raise RpcRequestError(
                    400, str(payload.get("code", "")), str(payload.get("message", ""))
                )
            if frame_type != "message" or payload.get("id") != message_id:
                continue

            status = int(payload.get("status", 200))
            content = payload.get("data")
            if status >= 400:
                error = cast(dict[str, Any], content or {})
                raise RpcRequestError(
                    status, str(error.get("code", "")), str(error.get("message", ""))
                )
            return content

    async def get_status(self) -> NodeStatusResponse:
        return NodeStatusResponse.model_validate(await self.request("node/getStatus"))

    async def get_transaction(self, transaction_hash: str) -> dict[str, Any]:
        return await self.request("chain/getTransaction", {"transactionHash": transaction_hash})

    async def get_account_balance(self, account: str | None = None) -> AccountBalanceResponse:
        data = {"account": account} if account else {}
        return AccountBalanceResponse.model_validate(await self.request("wallet/getBalance", data))

    async def get_account_public_key(self, account: str = "default") -> AccountPublicKeyResponse:
        return AccountPublicKeyResponse.model_validate(
            await self.request("wallet/getAccountPublicKey", {"account": account})
        )

    async def create_transaction(
        self,
        outputs: list[TransactionOutput],
        *,
        fee: int,
        account: str = "default",
        expiration: int | None = None,
    ) -> CreateTransactionResponse:
        data: dict[str, Any] = {
            "account": account,
            "outputs": [output.model_dump() for output in outputs],
            "fee": str(fee),
        }
        if expiration is not None:
            data["expiration"] = expiration
        return CreateTransactionResponse.model_validate(
            await self.request("wallet/createTransaction", data)
        )

    async def post_transaction(
        self, transaction: str, account: str = "default"
    ) -> PostTransactionResponse:
        return PostTransactionResponse.model_validate(
            await self.request(
                "wallet/postTransaction", {"transaction": transaction, "account": account}
            )
        )
