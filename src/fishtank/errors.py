from typing import override


class FishtankError(Exception):
    pass


class InvalidNameError(FishtankError, ValueError):
    def __init__(self, name: str):
        super().__init__(
            f"Invalid name: {name!r}; names may only contain letters, numbers, underscores or hyphens"
        )
        self.name: str = name


class NodeConfigurationError(FishtankError):
    pass


class NodeExistsError(NodeConfigurationError):
    def __init__(self, cluster_name: str, node_name: str):
        super().__init__(f"Node '{node_name}' already exists in cluster '{cluster_name}'")
        self.cluster_name: str = cluster_name
        self.node_name: str = node_name


class DockerError(FishtankError):
    def __init__(self, command: list[str], exit_code: int | str, stdout: str, stderr: str):
        super().__init__(f"Command '{' '.join(command)}' exited with status {exit_code}:\n{stderr}")
        self.command: list[str] = command
        self.exit_code: int | str = exit_code
        self.stdout: str = stdout
        self.stderr: str = stderr


class WaitTimeoutError(FishtankError, TimeoutError):
    def __init__(self, timeout: float, reason: str):
        super().__init__(f"Timeout of {timeout}s exceeded\nStatus: {reason}")
        self.timeout: float = timeout
        self.reason: str = reason


class RpcError(FishtankError):
    pass


class RpcConnectionError(RpcError):
    pass


class RpcRequestError(RpcError):
    def __init__(self, status: int, code: str, message: str):
        super().__init__(message)
        self.status: int = status
        self.code: str = code
        self.message: str = message

    @override
    def __str__(self):
        return f"RpcRequestError(status={self.status}, code={self.code!r}, message={self.message!r})"


class SimulationError(FishtankError):
    pass
