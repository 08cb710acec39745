from .backend import CommandResult, ContainerBackend, ContainerDetails, ContainerInspect, Docker
from .cluster import BootstrapOptions, Cluster
from .config import FishtankConfig, get_config
from .errors import (
    DockerError,
    FishtankError,
    InvalidNameError,
    NodeConfigurationError,
    NodeExistsError,
    RpcConnectionError,
    RpcError,
    RpcRequestError,
    SimulationError,
    WaitTimeoutError,
)
from .node import (
    AccountBalance,
    AdditionalBlocks,
    BlockSequence,
    MineCondition,
    Node,
    TransactionMined,
)
from .rpc import RpcClient
from .wait_loop import Readiness, loop_with_timeout

__all__ = [
    "AccountBalance",
    "AdditionalBlocks",
    "BlockSequence",
    "BootstrapOptions",
    "Cluster",
    "CommandResult",
    "ContainerBackend",
    "ContainerDetails",
    "ContainerInspect",
    "Docker",
    "DockerError",
    "FishtankConfig",
    "FishtankError",
    "InvalidNameError",
    "MineCondition",
    "Node",
    "NodeConfigurationError",
    "NodeExistsError",
    "Readiness",
    "RpcClient",
    "RpcConnectionError",
    "RpcError",
    "RpcRequestError",
    "SimulationError",
    "TransactionMined",
    "WaitTimeoutError",
    "get_config",
    "loop_with_timeout",
]
