"""Helpers for writing scenarios against throwaway clusters."""

import logging
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from .backend import ContainerBackend
from .cluster import Cluster
from .config import FishtankConfig, get_config

logger = logging.getLogger(__name__)


@asynccontextmanager
async def ephemeral_cluster(
    prefix: str = "fishtank-test",
    *,
    config: FishtankConfig | None = None,
    backend: ContainerBackend | None = None,
) -> AsyncIterator[Cluster]:
    config = config if config is not None else get_config()
    cluster = Cluster(f"{prefix}-{uuid.uuid4().hex[:8]}", backend=backend, config=config)

    try:
        yield cluster
    finally:
        if config.cleanup:
            await cluster.teardown()
        else:
            logger.info(f"Leaving cluster '{cluster.name}' running")
