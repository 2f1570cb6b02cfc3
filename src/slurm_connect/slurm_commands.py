"""Slurm queries executed on a login host via SSH."""

import logging
from typing import Optional

from slurm_connect.config import ConnectConfig
from slurm_connect.exceptions import RemoteQueryError
from slurm_connect.models import ClusterInfo
from slurm_connect.parsers import (
    has_gpu_marker,
    max_field_count,
    parse_partition_info,
    parse_partition_list,
    parse_simple_list,
)
from slurm_connect.ssh_client import SSHClient

logger = logging.getLogger(__name__)

# %P=partition, %n=hostname, %D=node count, %c=cpus per node, %m=memory MB, %G=gres
NODE_REPORT_COMMAND = 'sinfo -h -N -o "%P|%n|%c|%m|%G"'
PARTITION_REPORT_COMMAND = 'sinfo -h -o "%P|%D|%c|%m|%G"'

# Reports with fewer columns cannot carry cpu, memory and gres together
MIN_REPORT_FIELDS = 5


class SlurmCommands:
    """Wrapper for Slurm report commands executed via SSH."""

    def __init__(self, ssh_client: SSHClient, config: ConnectConfig):
        """Initialize Slurm commands wrapper.

        Args:
            ssh_client: SSH client for remote execution.
            config: Configuration settings.
        """
        self.ssh = ssh_client
        self.config = config

    def report_commands(self) -> list[str]:
        """Candidate partition report commands, in the order they are tried."""
        commands = [
            self.config.partition_info_command,
            NODE_REPORT_COMMAND,
            PARTITION_REPORT_COMMAND,
        ]
        return [c for c in commands if c]

    # =========================================================================
    # Cluster Info
    # =========================================================================

    async def fetch_cluster_info(self, host: str) -> ClusterInfo:
        """Fetch partition resources from ``host``.

        Each report command is tried in order. The first result with usable
        resource data wins; otherwise the last parsed result is returned,
        which may be empty.

        Args:
            host: Login host to query.

        Returns:
            ClusterInfo for the cluster.

        Raises:
            RemoteQueryError: If every report command failed to execute.
        """
        last_info: Optional[ClusterInfo] = None
        last_error: Optional[RemoteQueryError] = None

        for command in self.report_commands():
            logger.info(f"Cluster info command: {command}")
            try:
                output = await self.ssh.run(host, command)
            except RemoteQueryError as e:
                logger.warning(f"Cluster info command failed on {host}: {e}")
                last_error = e
                continue

            info = parse_partition_info(output)
            last_info = info

            fields = max_field_count(output)
            output_has_gpu = has_gpu_marker(output)
            has_gpu = info.has_gpus()
            logger.info(
                f"Cluster info fields: {fields}, partitions: {len(info.partitions)}, "
                f"outputHasGpu: {output_has_gpu}, hasGpu: {has_gpu}"
            )

            if output_has_gpu and not has_gpu:
                logger.info("GPU data present but parse yielded none; trying next command.")
                continue
            if fields < MIN_REPORT_FIELDS:
                continue
            if info.is_meaningful():
                return info

        if last_info is None:
            raise RemoteQueryError(f"All cluster info commands failed on {host}: {last_error}")

        return last_info

    # =========================================================================
    # Simple List Queries
    # =========================================================================

    async def query_list(self, host: str, command: str) -> list[str]:
        """Run ``command`` and return its whitespace-separated tokens.

        An empty command returns an empty list without running anything.

        Raises:
            RemoteQueryError: If the command failed.
        """
        if not command:
            return []
        output = await self.ssh.run(host, command)
        return parse_simple_list(output)

    async def query_qos(self, host: str) -> list[str]:
        """List QoS names using the configured command."""
        return await self.query_list(host, self.config.qos_command)

    async def query_accounts(self, host: str) -> list[str]:
        """List account names using the configured command."""
        return await self.query_list(host, self.config.account_command)

    async def query_partitions(self, host: str) -> tuple[list[str], Optional[str]]:
        """List partition names using the plain partition command.

        Returns:
            Tuple of (partition names, default partition or None).
        """
        if not self.config.partition_command:
            return [], None
        output = await self.ssh.run(host, self.config.partition_command)
        return parse_partition_list(output)

    async def discover_login_hosts(self, query_host: str) -> list[str]:
        """Run the login host discovery command on ``query_host``."""
        return await self.query_list(query_host, self.config.login_hosts_command)
