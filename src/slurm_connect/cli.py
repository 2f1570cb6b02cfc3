#!/usr/bin/env python3
"""
Command line interface for Slurm Connect.

Usage:
    slurm-connect                                  # Interactive connect
    slurm-connect connect --non-interactive        # Use configured defaults
    slurm-connect connect --partition gpu --time 02:00:00
    slurm-connect cluster-info login1.example.org  # Query partitions
    slurm-connect cluster-info login1 --cached     # Show cached partitions
    slurm-connect restore                          # Restore the SSH config pointer
    slurm-connect status                           # Show the active SSH config
"""

import argparse
import asyncio
import logging
import sys
from typing import Optional

from dotenv import load_dotenv

from slurm_connect.config import ConnectConfig, load_connect_config
from slurm_connect.connection import LocalConnectionLayer
from slurm_connect.exceptions import ConnectionAborted, PromptCancelled, RemoteQueryError, SettingsError
from slurm_connect.hosts import HostResolver
from slurm_connect.orchestrator import ConnectionOrchestrator, wait_for_restores
from slurm_connect.parsers import format_cluster_info
from slurm_connect.prompts import ConsolePrompter
from slurm_connect.slurm_commands import SlurmCommands
from slurm_connect.ssh_client import SSHClient
from slurm_connect.state import ClusterInfoCache, StateStore

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for all subcommands."""
    parser = argparse.ArgumentParser(
        prog="slurm-connect",
        description="Create an SSH host whose session runs inside a Slurm allocation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    %(prog)s                                       # Interactive connect
    %(prog)s connect --non-interactive --no-connect
    %(prog)s cluster-info --cached
        """,
    )
    parser.add_argument("--config", help="Path to slurm-connect JSON config file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command")

    connect = subparsers.add_parser("connect", help="Create an SSH host and connect (default)")
    connect.add_argument("--non-interactive", action="store_true", help="Use configured values without prompting")
    connect.add_argument("--login-host", help="Login host to use")
    connect.add_argument("--partition", help="Partition to allocate in")
    connect.add_argument("--nodes", type=int, help="Number of nodes")
    connect.add_argument("--tasks-per-node", type=int, help="Tasks per node")
    connect.add_argument("--cpus-per-task", type=int, help="CPUs per task")
    connect.add_argument("--time", help="Wall time (HH:MM:SS or D-HH:MM:SS)")
    connect.add_argument("--memory-mb", type=int, help="Memory per node in MB")
    connect.add_argument("--gpu-type", help="GPU type")
    connect.add_argument("--gpu-count", type=int, help="GPUs per node")
    connect.add_argument("--no-connect", action="store_true", help="Only write the SSH config overlay")

    info = subparsers.add_parser("cluster-info", help="Show partitions of a cluster")
    info.add_argument("host", nargs="?", help="Login host (default: first resolved host)")
    info.add_argument("--cached", action="store_true", help="Show cached info without querying")

    subparsers.add_parser("restore", help="Restore the SSH config pointer captured before the last connect")
    subparsers.add_parser("status", help="Show the active SSH config and its hosts")

    return parser


def apply_overrides(config: ConnectConfig, args: argparse.Namespace) -> ConnectConfig:
    """Apply connect command line overrides to ``config``."""
    return config.with_overrides(
        login_hosts=[args.login_host] if args.login_host else None,
        default_partition=args.partition,
        default_nodes=args.nodes,
        default_tasks_per_node=args.tasks_per_node,
        default_cpus_per_task=args.cpus_per_task,
        default_time=args.time,
        default_memory_mb=args.memory_mb,
        default_gpu_type=args.gpu_type,
        default_gpu_count=args.gpu_count,
        connect_after_create=False if args.no_connect else None,
    )


async def run_connect(config: ConnectConfig, args: argparse.Namespace) -> int:
    config = apply_overrides(config, args)
    interactive = not args.non_interactive
    store = StateStore(config.state_file)

    async with SSHClient(config) as ssh:
        orchestrator = ConnectionOrchestrator(
            config,
            SlurmCommands(ssh, config),
            LocalConnectionLayer(store, config),
            ClusterInfoCache(store),
            prompter=ConsolePrompter() if interactive else None,
        )
        try:
            result = await orchestrator.run(interactive=interactive)
        except PromptCancelled:
            print("Cancelled.", file=sys.stderr)
            return 130
        except ConnectionAborted as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1

    print(f"SSH host '{result.alias}' written to {result.overlay_path}")
    if result.restore_scheduled:
        print(f"Restoring SSH config pointer in {config.restore_delay_seconds}s...")
        await wait_for_restores()
    return 0


async def run_cluster_info(config: ConnectConfig, args: argparse.Namespace) -> int:
    store = StateStore(config.state_file)
    cache = ClusterInfoCache(store)

    async with SSHClient(config) as ssh:
        slurm = SlurmCommands(ssh, config)
        host = args.host
        if not host:
            hosts = await HostResolver(slurm, config).resolve()
            if not hosts:
                print("Error: No login hosts available.", file=sys.stderr)
                return 1
            host = hosts[0]

        if args.cached:
            cached = cache.get(host)
            if cached is None:
                print(f"No cached cluster info for {host}.")
                return 1
            print(format_cluster_info(host, cached.info, cached.fetched_at))
            return 0

        try:
            info = await slurm.fetch_cluster_info(host)
        except RemoteQueryError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1

    cache.put(host, info)
    print(format_cluster_info(host, info))
    return 0


def run_restore(config: ConnectConfig) -> int:
    connection = LocalConnectionLayer(StateStore(config.state_file), config)
    try:
        restored = connection.restore()
    except SettingsError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    if not restored:
        print("Nothing to restore.")
        return 0
    print(f"SSH config pointer restored to {connection.get_config_file() or '(default)'}")
    return 0


def run_status(config: ConnectConfig) -> int:
    connection = LocalConnectionLayer(StateStore(config.state_file), config)
    try:
        active = connection.get_config_file()
        remote_command = connection.remote_command_enabled()
    except SettingsError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    print(f"Editor settings: {connection.settings.path}")
    print(f"Active SSH config: {active or '(default)'}")
    if not remote_command:
        print("Warning: remote.SSH.enableRemoteCommand is off; generated hosts will not start Slurm sessions.")
    hosts = connection.refresh_hosts()
    if hosts:
        print(f"Hosts: {', '.join(hosts)}")
    pending = connection.pending_restore()
    if pending is not None:
        print(f"Pending restore to: {pending or '(default)'}")
    return 0


def main(argv: Optional[list[str]] = None) -> None:
    """Main entry point for the slurm-connect command."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if args.command is None:
        # Connect is the default subcommand
        args = parser.parse_args([*(argv if argv is not None else sys.argv[1:]), "connect"])

    load_dotenv()
    try:
        config = load_connect_config(args.config)
    except (FileNotFoundError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    if args.command == "connect":
        code = asyncio.run(run_connect(config, args))
    elif args.command == "cluster-info":
        code = asyncio.run(run_cluster_info(config, args))
    elif args.command == "restore":
        code = run_restore(config)
    else:
        code = run_status(config)

    sys.exit(code)


if __name__ == "__main__":
    main()
