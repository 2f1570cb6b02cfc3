"""MCP server exposing Slurm Connect tools."""

import logging
from typing import Annotated, Optional

from dotenv import load_dotenv
from fastmcp import FastMCP
from fastmcp.exceptions import ToolError
from pydantic import Field

from slurm_connect.config import ConnectConfig, load_connect_config
from slurm_connect.connection import LocalConnectionLayer
from slurm_connect.exceptions import ConnectionAborted, RemoteQueryError, SettingsError
from slurm_connect.hosts import HostResolver
from slurm_connect.orchestrator import ConnectionOrchestrator
from slurm_connect.parsers import format_cluster_info
from slurm_connect.slurm_commands import SlurmCommands
from slurm_connect.ssh_client import SSHClient
from slurm_connect.state import ClusterInfoCache, StateStore

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Create MCP server
mcp = FastMCP(
    "slurm-connect",
    instructions="MCP server that creates SSH hosts running inside Slurm allocations",
)

# Global instances (initialized on first use)
_config: Optional[ConnectConfig] = None
_ssh: Optional[SSHClient] = None
_slurm: Optional[SlurmCommands] = None
_store: Optional[StateStore] = None
_connection: Optional[LocalConnectionLayer] = None


def get_instances():
    """Get or initialize global instances."""
    global _config, _ssh, _slurm, _store, _connection

    if _config is None:
        load_dotenv()
        _config = load_connect_config()

    if _ssh is None:
        _ssh = SSHClient(_config)

    if _slurm is None:
        _slurm = SlurmCommands(_ssh, _config)

    if _store is None:
        _store = StateStore(_config.state_file)

    if _connection is None:
        _connection = LocalConnectionLayer(_store, _config)

    return _config, _slurm, _store, _connection


async def _resolve_host(host: Optional[str]) -> str:
    config, slurm, _, _ = get_instances()
    if host:
        return host
    hosts = await HostResolver(slurm, config).resolve()
    if not hosts:
        raise ToolError("No login hosts available. Configure login_hosts or login_hosts_command.")
    return hosts[0]


# =============================================================================
# Cluster Info Tools
# =============================================================================

@mcp.tool()
async def get_cluster_info(
    host: Annotated[Optional[str], Field(description="Login host to query (default: first resolved host)")] = None,
) -> str:
    """Query partition resources (nodes, CPUs, memory, GPUs) from a login host and cache them."""
    try:
        _, slurm, store, _ = get_instances()
        host = await _resolve_host(host)

        info = await slurm.fetch_cluster_info(host)
        ClusterInfoCache(store).put(host, info)

        return format_cluster_info(host, info)

    except ToolError:
        raise
    except RemoteQueryError as e:
        raise ToolError(f"Failed to get cluster info: {e}")


@mcp.tool()
async def get_cached_cluster_info(
    host: Annotated[str, Field(description="Login host whose cached info to show")],
) -> str:
    """Show the last cluster info fetched for a login host without contacting it."""
    _, _, store, _ = get_instances()
    cached = ClusterInfoCache(store).get(host)
    if cached is None:
        return f"No cached cluster info for {host}."
    return format_cluster_info(host, cached.info, cached.fetched_at)


@mcp.tool()
async def list_login_hosts() -> str:
    """List the login hosts from configuration or the discovery command."""
    config, slurm, _, _ = get_instances()
    hosts = await HostResolver(slurm, config).resolve()
    if not hosts:
        return "No login hosts configured."
    return "Login hosts:\n" + "\n".join(f"  {h}" for h in hosts)


# =============================================================================
# Connection Tools
# =============================================================================

@mcp.tool()
async def create_connection(
    login_host: Annotated[Optional[str], Field(description="Login host (default: first resolved host)")] = None,
    partition: Annotated[Optional[str], Field(description="Partition to allocate in")] = None,
    nodes: Annotated[Optional[int], Field(description="Number of nodes", ge=1)] = None,
    tasks_per_node: Annotated[Optional[int], Field(description="Tasks per node", ge=1)] = None,
    cpus_per_task: Annotated[Optional[int], Field(description="CPUs per task", ge=1)] = None,
    time: Annotated[Optional[str], Field(description="Wall time (HH:MM:SS or D-HH:MM:SS)")] = None,
    memory_mb: Annotated[Optional[int], Field(description="Memory per node in MB", ge=0)] = None,
    gpu_type: Annotated[Optional[str], Field(description="GPU type")] = None,
    gpu_count: Annotated[Optional[int], Field(description="GPUs per node", ge=0)] = None,
    connect: Annotated[bool, Field(description="Open the editor on the new host")] = False,
) -> str:
    """Create an SSH host whose session runs inside a Slurm allocation.

    Writes the SSH config overlay and points the connection layer at it.
    Resource values not given fall back to the configured defaults.
    """
    config, _, store, _ = get_instances()
    overrides = config.with_overrides(
        login_hosts=[login_host] if login_host else None,
        default_partition=partition,
        default_nodes=nodes,
        default_tasks_per_node=tasks_per_node,
        default_cpus_per_task=cpus_per_task,
        default_time=time,
        default_memory_mb=memory_mb,
        default_gpu_type=gpu_type,
        default_gpu_count=gpu_count,
        connect_after_create=connect,
    )

    ssh = SSHClient(overrides)
    orchestrator = ConnectionOrchestrator(
        overrides,
        SlurmCommands(ssh, overrides),
        LocalConnectionLayer(store, overrides),
        ClusterInfoCache(store),
    )
    try:
        result = await orchestrator.run(interactive=False)
    except ConnectionAborted as e:
        raise ToolError(f"Failed to create connection at {e.step}: {e}")
    finally:
        await ssh.disconnect()

    lines = [
        f"Created SSH host '{result.alias}' on {result.login_host}",
        f"  Overlay: {result.overlay_path}",
        f"  RemoteCommand: {result.remote_command}",
    ]
    if connect:
        lines.append(f"  Connected: {'yes' if result.connected else 'no'}")
    if result.restore_scheduled:
        lines.append(f"  SSH config pointer restores in {overrides.restore_delay_seconds}s")
    for warning in result.warnings:
        lines.append(f"  Warning: {warning}")
    return "\n".join(lines)


@mcp.tool()
async def restore_ssh_config() -> str:
    """Restore the SSH config pointer captured before the last connection."""
    _, _, _, connection = get_instances()
    try:
        restored = connection.restore()
    except SettingsError as e:
        raise ToolError(f"Failed to restore SSH config: {e}")
    if not restored:
        return "Nothing to restore."
    return f"SSH config pointer restored to {connection.get_config_file() or '(default)'}."


# =============================================================================
# Main Entry Point
# =============================================================================

def main():
    """Main entry point for the MCP server."""
    mcp.run()


if __name__ == "__main__":
    main()
