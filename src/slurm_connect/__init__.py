"""Slurm Connect - SSH hosts whose sessions run inside Slurm allocations."""

__version__ = "0.1.0"

from slurm_connect.config import ConnectConfig, load_connect_config
from slurm_connect.exceptions import (
    ConfigWriteError,
    ConnectError,
    ConnectionAborted,
    DiscoveryError,
    InputValidationError,
    PromptCancelled,
    RemoteQueryError,
    SlurmConnectError,
)
from slurm_connect.models import (
    ClusterInfo,
    CommandResult,
    ConnectionSession,
    ConnectRequest,
    ConnectResult,
    PartitionRecord,
    ResourceSelection,
    SSHHostEntry,
)
from slurm_connect.orchestrator import ConnectionOrchestrator

__all__ = [
    # Config
    "ConnectConfig",
    "load_connect_config",
    # Orchestrator
    "ConnectionOrchestrator",
    # Errors
    "SlurmConnectError",
    "DiscoveryError",
    "RemoteQueryError",
    "InputValidationError",
    "ConfigWriteError",
    "ConnectError",
    "PromptCancelled",
    "ConnectionAborted",
    # Models
    "CommandResult",
    "PartitionRecord",
    "ClusterInfo",
    "ResourceSelection",
    "SSHHostEntry",
    "ConnectionSession",
    "ConnectRequest",
    "ConnectResult",
]
