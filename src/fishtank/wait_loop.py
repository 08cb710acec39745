import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from .errors import WaitTimeoutError

DEFAULT_WAIT_TIMEOUT = 30.0
DEFAULT_POLL_INTERVAL = 0.2


@dataclass(frozen=True)
class Readiness:
    ready: bool
    reason: str = ""


type ReadinessCheck = Callable[[], Awaitable[Readiness]]


async def loop_with_timeout(
    check: ReadinessCheck,
    *,
    timeout: float | None = None,
    interval: float | None = None,
) -> None:
    """Poll `check` until it reports ready.

    Raises `WaitTimeoutError` with the last observed reason once `timeout`
    seconds have elapsed. Exceptions raised by `check` are not retried.
    """
    timeout = DEFAULT_WAIT_TIMEOUT if timeout is None else timeout
    interval = DEFAULT_POLL_INTERVAL if interval is None else interval

    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    status = Readiness(ready=False)

    while True:
        status = await check()
        if status.ready:
            return

        remaining = deadline - loop.time()
        if remaining <= 0:
            break
        await asyncio.sleep(min(interval, remaining))

    raise WaitTimeoutError(timeout, status.reason)
