from pathlib import Path
from unittest.mock import Mock

import pytest

from fishtank import Cluster, ContainerBackend, ContainerInspect, FishtankConfig
from fishtank.backend import PortBindings


@pytest.fixture
def config(tmp_path: Path) -> FishtankConfig:
    return FishtankConfig(
        node_image="ironfish:test",
        data_root=tmp_path,
        wait_timeout=1.0,
        poll_interval=0,
        mine_poll_interval=0,
    )


@pytest.fixture
def backend() -> Mock:
    backend = Mock(spec=ContainerBackend)
    backend.list_containers.return_value = []
    backend.list_networks.return_value = []
    backend.inspect.return_value = ContainerInspect(
        id="abc",
        name="test-1_a",
        image="ironfish:running",
        ports=PortBindings(tcp={8020: 32768}),
    )
    return backend


@pytest.fixture
def cluster(backend: Mock, config: FishtankConfig) -> Cluster:
    return Cluster("test-1", backend=backend, config=config)
