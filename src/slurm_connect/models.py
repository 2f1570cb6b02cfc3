"""Pydantic models for Slurm Connect data structures."""

import re
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, NonNegativeInt, PositiveInt

# Wall time accepted by salloc: HH:MM:SS or D-HH:MM:SS
TIME_PATTERN = re.compile(r"^(\d+-)?\d{1,2}:\d{2}:\d{2}$")


class CommandResult(BaseModel):
    """Result of executing a command via SSH."""
    stdout: str = Field(default="", description="Standard output")
    stderr: str = Field(default="", description="Standard error")
    return_code: int = Field(description="Command return code")

    @property
    def success(self) -> bool:
        """Check if command succeeded."""
        return self.return_code == 0

    @property
    def output(self) -> str:
        """Get combined output, preferring stdout."""
        return self.stdout if self.stdout else self.stderr


class PartitionRecord(BaseModel):
    """Normalized resources of one partition.

    Numeric fields are maxima observed across report rows; 0 means unknown.
    """
    model_config = ConfigDict(frozen=True)

    name: str = Field(description="Partition name")
    nodes: NonNegativeInt = Field(default=0, description="Number of nodes")
    cpus: NonNegativeInt = Field(default=0, description="CPUs per node (max observed)")
    mem_mb: NonNegativeInt = Field(default=0, description="Memory per node in MB (max observed)")
    gpu_max: NonNegativeInt = Field(default=0, description="GPUs per node (max observed)")
    gpu_types: dict[str, int] = Field(
        default_factory=dict,
        description="GPU type label to max count; empty label means untyped",
    )
    is_default: bool = Field(default=False, description="Whether this is the cluster default partition")


class ClusterInfo(BaseModel):
    """Partitions of a cluster, sorted by name."""
    model_config = ConfigDict(frozen=True)

    partitions: list[PartitionRecord] = Field(default_factory=list, description="Partitions sorted by name")
    default_partition: Optional[str] = Field(default=None, description="Cluster default partition")

    @property
    def partition_names(self) -> list[str]:
        """Names of all partitions in order."""
        return [p.name for p in self.partitions]

    def get_partition(self, name: Optional[str]) -> Optional[PartitionRecord]:
        """Get a partition record by name."""
        for partition in self.partitions:
            if partition.name == name:
                return partition
        return None

    def has_gpus(self) -> bool:
        """Check if any partition reports GPUs."""
        return any(p.gpu_max > 0 for p in self.partitions)

    def is_meaningful(self) -> bool:
        """Check if at least one partition carries resource data."""
        return any(p.cpus > 0 or p.mem_mb > 0 or p.gpu_max > 0 for p in self.partitions)


class CachedClusterInfo(BaseModel):
    """Cluster info stored per login host."""
    info: ClusterInfo = Field(description="Cached cluster info")
    fetched_at: str = Field(description="ISO-8601 fetch timestamp")


class ResourceSelection(BaseModel):
    """Resources requested for an allocation."""
    model_config = ConfigDict(frozen=True)

    partition: Optional[str] = Field(default=None, description="Partition (None lets the scheduler decide)")
    qos: Optional[str] = Field(default=None, description="Quality of service")
    account: Optional[str] = Field(default=None, description="Account for billing")
    nodes: PositiveInt = Field(description="Number of nodes")
    tasks_per_node: PositiveInt = Field(description="Tasks per node")
    cpus_per_task: PositiveInt = Field(description="CPUs per task")
    time: str = Field(pattern=TIME_PATTERN.pattern, description="Wall time (HH:MM:SS or D-HH:MM:SS)")
    memory_mb: NonNegativeInt = Field(default=0, description="Memory per node in MB (0 = scheduler default)")
    gpu_type: str = Field(default="", description="GPU type (empty = any)")
    gpu_count: NonNegativeInt = Field(default=0, description="GPUs per node")
    extra_args: tuple[str, ...] = Field(default=(), description="Extra salloc arguments")


class SSHHostEntry(BaseModel):
    """A generated SSH Host block."""
    alias: str = Field(min_length=1, description="Host alias")
    hostname: str = Field(description="Login host name")
    user: Optional[str] = Field(default=None, description="SSH user")
    request_tty: bool = Field(default=True, description="Emit RequestTTY yes")
    forward_agent: bool = Field(default=True, description="Emit ForwardAgent yes")
    identity_file: Optional[str] = Field(default=None, description="Identity file path")
    remote_command: str = Field(description="RemoteCommand launching the proxy")
    options: dict[str, str] = Field(default_factory=dict, description="Additional SSH options")


class ConnectionSession(BaseModel):
    """An applied SSH config overlay."""
    alias: str = Field(description="Host alias")
    overlay_path: str = Field(description="Path of the written overlay")
    previous_config_file: Optional[str] = Field(
        default=None,
        description="SSH config pointer active before the overlay was applied",
    )


class ConnectRequest(BaseModel):
    """Request to open an editor window on a generated host."""
    alias: str = Field(description="Host alias to connect to")
    open_in_new_window: bool = Field(default=False, description="Open a new editor window")
    remote_workspace_path: Optional[str] = Field(default=None, description="Remote folder to open")


class ConnectResult(BaseModel):
    """Outcome of a completed connect flow."""
    alias: str = Field(description="Generated host alias")
    login_host: str = Field(description="Login host the alias points at")
    overlay_path: str = Field(description="Path of the written SSH config overlay")
    remote_command: str = Field(description="RemoteCommand written for the alias")
    selection: ResourceSelection = Field(description="Requested resources")
    connected: bool = Field(default=False, description="Whether the editor connect action succeeded")
    restore_scheduled: bool = Field(default=False, description="Whether a pointer restore was scheduled")
    warnings: list[str] = Field(default_factory=list, description="Non-fatal problems met along the way")
