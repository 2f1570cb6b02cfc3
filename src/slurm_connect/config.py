"""Configuration management for Slurm Connect.

Settings are read from a JSON config file (slurm-connect.json).
Environment variable SLURM_CONNECT_CONFIG can point to a custom config file.
"""

import json
import logging
import os
import sys
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

DEFAULT_STATE_DIR = "~/.slurm_connect"
DEFAULT_OVERLAY_PATH = f"{DEFAULT_STATE_DIR}/ssh-config"
DEFAULT_STATE_PATH = f"{DEFAULT_STATE_DIR}/state.json"


def expand_home(path: str) -> str:
    """Expand a leading ``~`` in a configured path."""
    if not path:
        return path
    return os.path.expanduser(path)


def default_editor_settings_path() -> str:
    """User settings.json of VS Code on this platform."""
    if sys.platform == "win32":
        return os.path.join(os.environ.get("APPDATA", "~"), "Code", "User", "settings.json")
    if sys.platform == "darwin":
        return "~/Library/Application Support/Code/User/settings.json"
    config_home = os.environ.get("XDG_CONFIG_HOME") or "~/.config"
    return os.path.join(config_home, "Code", "User", "settings.json")


class ConnectConfig(BaseModel):
    """Settings for connecting to a Slurm cluster through a login host."""

    # Login host resolution
    login_hosts: list[str] = Field(default_factory=list, description="Static login host names")
    login_hosts_command: str = Field(default="", description="Command printing login host names")
    login_hosts_query_host: str = Field(default="", description="Host to run login_hosts_command on")

    # Resource queries
    partition_command: str = Field(default="", description="Command printing partition names")
    partition_info_command: str = Field(default="", description="Custom pipe-delimited partition report command")
    qos_command: str = Field(default="", description="Command printing QoS names")
    account_command: str = Field(default="", description="Command printing account names")

    # SSH settings
    user: str = Field(default="", description="SSH username")
    identity_file: str = Field(default="", description="Path to SSH private key file")
    ssh_known_hosts: str = Field(default="", description="Path to known_hosts file")
    forward_agent: bool = Field(default=True, description="Forward the SSH agent")
    request_tty: bool = Field(default=True, description="Request a TTY")
    ssh_query_config_path: str = Field(default="", description="SSH config used for remote queries")
    ssh_connect_timeout_seconds: int = Field(default=15, description="Timeout for remote queries")
    additional_ssh_options: dict[str, str] = Field(default_factory=dict, description="Extra Host block options")

    # Launch helper
    module_load: str = Field(default="", description="Shell prefix run before the proxy (e.g. module load)")
    proxy_command: str = Field(default="", description="Remote launch helper command")
    proxy_args: list[str] = Field(default_factory=list, description="Arguments for the launch helper")
    extra_salloc_args: list[str] = Field(default_factory=list, description="salloc args added to every launch")
    prompt_for_extra_salloc_args: bool = Field(default=False, description="Ask for extra salloc args")

    # Resource defaults
    default_partition: str = Field(default="", description="Default partition")
    default_nodes: int = Field(default=1, description="Default node count")
    default_tasks_per_node: int = Field(default=1, description="Default tasks per node")
    default_cpus_per_task: int = Field(default=1, description="Default CPUs per task")
    default_time: str = Field(default="", description="Default wall time")
    default_memory_mb: int = Field(default=0, description="Default memory per node in MB")
    default_gpu_type: str = Field(default="", description="Default GPU type")
    default_gpu_count: int = Field(default=0, description="Default GPUs per node")

    # Overlay and connect behaviour
    ssh_host_prefix: str = Field(default="", description="Prefix for generated host aliases")
    connect_after_create: bool = Field(default=True, description="Open the editor after writing the overlay")
    open_in_new_window: bool = Field(default=False, description="Open the editor in a new window")
    remote_workspace_path: str = Field(default="", description="Remote folder to open")
    editor_command: str = Field(default="code", description="Editor CLI used to connect")
    editor_settings_path: str = Field(
        default="",
        description="Editor user settings.json holding remote.SSH.configFile (default: VS Code user settings)",
    )
    temporary_ssh_config_path: str = Field(default="", description="Overlay path")
    ssh_config_includes: list[str] = Field(
        default_factory=lambda: ["~/.ssh/config"],
        description="SSH config files included by the overlay",
    )
    restore_ssh_config_after_connect: bool = Field(default=True, description="Restore the SSH config pointer")
    restore_delay_seconds: float = Field(default=2.0, description="Delay before restoring the pointer")
    state_path: str = Field(default=DEFAULT_STATE_PATH, description="Settings store path")

    @field_validator(
        "login_hosts_command",
        "login_hosts_query_host",
        "partition_command",
        "partition_info_command",
        "qos_command",
        "account_command",
        "user",
        "identity_file",
        "ssh_known_hosts",
        "ssh_query_config_path",
        "module_load",
        "proxy_command",
        "default_partition",
        "default_time",
        "default_gpu_type",
        "ssh_host_prefix",
        "remote_workspace_path",
        "editor_command",
        "editor_settings_path",
        "temporary_ssh_config_path",
        "state_path",
        mode="before",
    )
    @classmethod
    def strip_strings(cls, value):
        """Trim surrounding whitespace and map None to an empty string."""
        if value is None:
            return ""
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator("login_hosts", "proxy_args", "extra_salloc_args", "ssh_config_includes", mode="before")
    @classmethod
    def split_lists(cls, value):
        """Accept comma or whitespace separated strings for list fields."""
        if value is None:
            return []
        if isinstance(value, str):
            return [v for v in value.replace(",", " ").split() if v]
        return [v.strip() for v in value if v and v.strip()]

    @property
    def overlay_path(self) -> Path:
        """Resolved path of the SSH config overlay."""
        return Path(expand_home(self.temporary_ssh_config_path or DEFAULT_OVERLAY_PATH))

    @property
    def settings_file(self) -> Path:
        """Resolved path of the editor user settings file."""
        return Path(expand_home(self.editor_settings_path or default_editor_settings_path()))

    @property
    def state_file(self) -> Path:
        """Resolved path of the settings store."""
        return Path(expand_home(self.state_path or DEFAULT_STATE_PATH))

    def with_overrides(self, **overrides) -> "ConnectConfig":
        """Return a copy with every non-None override applied."""
        updates = {k: v for k, v in overrides.items() if v is not None}
        if not updates:
            return self
        return ConnectConfig(**{**self.model_dump(), **updates})


def load_connect_config(config_path: Optional[str] = None) -> ConnectConfig:
    """Load configuration from a JSON file.

    Args:
        config_path: Path to the JSON config file. If None, looks for:
            1. SLURM_CONNECT_CONFIG environment variable
            2. ./slurm-connect.json
            3. ~/.slurm_connect/config.json

    Returns:
        ConnectConfig instance (defaults when no file is found).

    Raises:
        FileNotFoundError: If an explicitly requested config file is missing.
        ValueError: If config file is invalid.
    """
    if config_path is None:
        config_path = os.environ.get("SLURM_CONNECT_CONFIG")

    if config_path is None:
        candidates = [
            Path("./slurm-connect.json"),
            Path(f"{DEFAULT_STATE_DIR}/config.json").expanduser(),
        ]

        for candidate in candidates:
            if candidate.exists():
                config_path = str(candidate)
                break

    if config_path is None:
        logger.info("No slurm-connect config file found, using defaults")
        return ConnectConfig()

    config_file = Path(config_path).expanduser()

    if not config_file.exists():
        raise FileNotFoundError(f"Slurm Connect config file not found: {config_file}")

    logger.info(f"Loading configuration from {config_file}")

    with open(config_file, "r") as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in {config_file}: {e}") from e

    return ConnectConfig(**data)
