import json
import os
import shlex
import tempfile
from pathlib import Path

from pydantic import BaseModel, Field

DEFAULT_NODE_IMAGE = "ghcr.io/iron-fish/ironfish:latest"


def _default_data_root() -> Path:
    return Path(tempfile.gettempdir()) / "fishtank"


class FishtankConfig(BaseModel):
    node_image: str = DEFAULT_NODE_IMAGE
    extra_start_args: list[str] = []
    data_root: Path = Field(default_factory=_default_data_root)
    internal_network: bool = False
    wait_timeout: float = 30.0
    poll_interval: float = 0.2
    mine_poll_interval: float = 1.0
    rpc_host: str = "127.0.0.1"
    cleanup: bool = True


def load_config_file(config_path: Path) -> FishtankConfig:
    with open(config_path, "r") as f:
        json_content = f.read()
    return FishtankConfig.model_validate_json(json_content)


def get_config(environ: dict[str, str] | None = None) -> FishtankConfig:
    """Build the configuration from an optional JSON file and the environment.

    `FISHTANK_CONFIG` points to a JSON file with `FishtankConfig` fields; the
    remaining `FISHTANK_*` variables override individual fields.
    """
    env = dict(os.environ) if environ is None else environ

    config_path = env.get("FISHTANK_CONFIG")
    config = load_config_file(Path(config_path)) if config_path else FishtankConfig()

    overrides: dict[str, object] = {}
    if "FISHTANK_NODE_IMAGE" in env:
        overrides["node_image"] = env["FISHTANK_NODE_IMAGE"]
    if "FISHTANK_NODE_ARGS" in env:
        overrides["extra_start_args"] = shlex.split(env["FISHTANK_NODE_ARGS"])
    if "FISHTANK_DATA_ROOT" in env:
        overrides["data_root"] = env["FISHTANK_DATA_ROOT"]
    if "FISHTANK_SCENARIOS_CLEANUP" in env:
        overrides["cleanup"] = json.loads(env["FISHTANK_SCENARIOS_CLEANUP"])

    if not overrides:
        return config
    return FishtankConfig.model_validate({**config.model_dump(), **overrides})
