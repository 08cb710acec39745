import re
import secrets

from .errors import InvalidNameError

CLUSTER_LABEL = "fishtank.cluster"
NODE_ROLE_LABEL = "fishtank.node.role"
BOOTSTRAP_NODE_ROLE = "bootstrap"

_NAME_RE = re.compile(r"^[A-Za-z0-9_-]+$")
_COMPANION_RE = re.compile(r".+-[A-Za-z0-9_]+-[0-9a-f]{8}")


def is_valid_name(name: str) -> bool:
    return _NAME_RE.fullmatch(name) is not None


def assert_valid_name(name: str) -> None:
    if not is_valid_name(name):
        raise InvalidNameError(name)


def network_name(cluster_name: str) -> str:
    """Returns the name of the Docker network used for a cluster."""
    assert_valid_name(cluster_name)
    return cluster_name


def container_name(cluster_name: str, node_name: str) -> str:
    """Returns the name of the Docker container hosting a node in a cluster."""
    assert_valid_name(cluster_name)
    assert_valid_name(node_name)
    return f"{cluster_name}_{node_name}"


def node_name_from_container(cluster_name: str, container: str) -> str:
    prefix = f"{cluster_name}_"
    if not container.startswith(prefix):
        raise InvalidNameError(container)
    return container[len(prefix) :]


def companion_name(cluster_name: str, node_name: str, role: str) -> str:
    """Returns a fresh container name for a transient process attached to a node."""
    return container_name(cluster_name, f"{node_name}-{role}-{secrets.token_hex(4)}")


def is_companion_container(cluster_name: str, container: str) -> bool:
    """Whether `container` was named by `companion_name` rather than being a node."""
    prefix = f"{cluster_name}_"
    if not container.startswith(prefix):
        return False
    return _COMPANION_RE.fullmatch(container[len(prefix) :]) is not None


def cluster_labels(cluster_name: str) -> dict[str, str]:
    return {CLUSTER_LABEL: cluster_name}


def bootstrap_labels(cluster_name: str) -> dict[str, str]:
    return {CLUSTER_LABEL: cluster_name, NODE_ROLE_LABEL: BOOTSTRAP_NODE_ROLE}
