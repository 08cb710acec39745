from .base import (
    CommandResult,
    ContainerBackend,
    ContainerDetails,
    ContainerInspect,
    Labels,
    PortBindings,
    Volumes,
)
from .docker import Docker

__all__ = [
    "CommandResult",
    "ContainerBackend",
    "ContainerDetails",
    "ContainerInspect",
    "Docker",
    "Labels",
    "PortBindings",
    "Volumes",
]
