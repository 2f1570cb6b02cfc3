"""Composition of the remote launch command."""

import re
from typing import Optional

from slurm_connect.config import ConnectConfig
from slurm_connect.models import ResourceSelection

_ALIAS_UNSAFE_RE = re.compile(r"[^A-Za-z0-9_-]")

DEFAULT_ALIAS_PREFIX = "slurm"


def build_salloc_args(selection: ResourceSelection) -> list[str]:
    """Build salloc flags for ``selection`` in a fixed order."""
    args = []
    if selection.partition:
        args.append(f"--partition={selection.partition}")
    args.append(f"--nodes={selection.nodes}")
    args.append(f"--ntasks-per-node={selection.tasks_per_node}")
    args.append(f"--cpus-per-task={selection.cpus_per_task}")
    args.append(f"--time={selection.time}")
    if selection.qos:
        args.append(f"--qos={selection.qos}")
    if selection.account:
        args.append(f"--account={selection.account}")
    if selection.memory_mb > 0:
        args.append(f"--mem={selection.memory_mb}")
    if selection.gpu_count > 0:
        gpu_type = selection.gpu_type.strip()
        if gpu_type:
            args.append(f"--gres=gpu:{gpu_type}:{selection.gpu_count}")
        else:
            args.append(f"--gres=gpu:{selection.gpu_count}")
    return args


def sanitize_alias(alias: str) -> str:
    """Replace characters outside ``[A-Za-z0-9_-]`` with ``-``."""
    return _ALIAS_UNSAFE_RE.sub("-", alias)


def build_default_alias(
    prefix: str,
    login_host: str,
    partition: Optional[str],
    nodes: int,
    cpus_per_task: int,
) -> str:
    """Build ``{prefix}-{host}-{partition}-{nodes}n-{cpus}c`` as a safe alias."""
    host_short = login_host.split(".")[0]
    pieces = [prefix or DEFAULT_ALIAS_PREFIX, host_short]
    if partition:
        pieces.append(partition)
    pieces.extend([f"{nodes}n", f"{cpus_per_task}c"])
    return sanitize_alias("-".join(pieces))


class LaunchCommandBuilder:
    """Builds the RemoteCommand that asks the launch helper for an allocation.

    The result depends only on the selection and the configuration.
    """

    def __init__(self, config: ConnectConfig):
        self.config = config

    def proxy_command(self) -> str:
        """The helper command with its configured arguments, or ''."""
        parts = [self.config.proxy_command, *self.config.proxy_args]
        return " ".join(p for p in parts if p).strip()

    def build(self, selection: ResourceSelection, session_key: Optional[str] = None) -> str:
        """Build the remote command for ``selection``.

        Args:
            selection: Requested resources.
            session_key: Key identifying the session to the launch helper.

        Returns:
            The command string, or '' when no proxy command is configured.
        """
        proxy = self.proxy_command()
        if not proxy:
            return ""

        salloc_args = [
            *build_salloc_args(selection),
            *self.config.extra_salloc_args,
            *selection.extra_args,
        ]
        parts = [proxy, *(f"--salloc-arg={arg}" for arg in salloc_args)]
        if session_key:
            parts.append(f"--session-key={session_key}")
        command = " ".join(parts).strip()

        if self.config.module_load:
            return f"{self.config.module_load} && {command}"
        return command
