"""Transient containers that live only while a node needs them (miners, pools)."""

import logging
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager

from . import naming
from .backend import ContainerBackend, Volumes

logger = logging.getLogger(__name__)


@asynccontextmanager
async def companion_process(
    backend: ContainerBackend,
    cluster_name: str,
    node_name: str,
    role: str,
    image: str,
    args: Sequence[str],
    *,
    volumes: Volumes | None = None,
) -> AsyncIterator[str]:
    """Run a companion container for a node and force-remove it on exit.

    The container joins the cluster network and carries only the cluster
    label, so a teardown reaps it even if this context is never exited.
    Yields the container name, which is also its address on the network.
    """
    name = naming.companion_name(cluster_name, node_name, role)
    await backend.run_detached(
        image,
        name=name,
        networks=[naming.network_name(cluster_name)],
        volumes=volumes,
        labels=naming.cluster_labels(cluster_name),
        args=args,
    )
    logger.info(f"Started {role} {name} for node '{node_name}'")

    try:
        yield name
    finally:
        await backend.remove([name], force=True)
        logger.info(f"Removed {role} {name}")
