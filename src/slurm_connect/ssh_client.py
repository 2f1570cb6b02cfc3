"""SSH client for running commands on Slurm login hosts."""

import asyncio
import logging
from pathlib import Path
from typing import Optional

import asyncssh

from slurm_connect.config import ConnectConfig, expand_home
from slurm_connect.exceptions import RemoteQueryError
from slurm_connect.models import CommandResult

logger = logging.getLogger(__name__)


class SSHConnectionError(RemoteQueryError):
    """Raised when SSH connection fails."""
    pass


class SSHCommandError(RemoteQueryError):
    """Raised when SSH command execution fails."""
    pass


class SSHClient:
    """Runs commands on login hosts over SSH.

    Connections are opened lazily per host and reused until
    ``disconnect`` is called. Authentication is non-interactive: keys,
    the SSH agent and OpenSSH config files only.
    """

    def __init__(self, config: ConnectConfig):
        """Initialize SSH client with settings.

        Args:
            config: Configuration containing SSH connection details.
        """
        self.config = config
        self._connections: dict[str, asyncssh.SSHClientConnection] = {}
        self._lock = asyncio.Lock()

    def is_connected(self, host: str) -> bool:
        """Check if a connection to ``host`` is open."""
        conn = self._connections.get(host)
        return conn is not None and not conn.is_closed()

    def _connect_kwargs(
        self,
        host: str,
        identity_file: Optional[str],
        config_path: Optional[str],
        timeout: float,
    ) -> dict:
        connect_kwargs: dict = {
            "host": host,
            "connect_timeout": timeout,
        }
        if self.config.user:
            connect_kwargs["username"] = self.config.user

        # Handle SSH key authentication
        if identity_file:
            key_path = Path(expand_home(identity_file))
            if key_path.exists():
                connect_kwargs["client_keys"] = [str(key_path)]
            else:
                logger.warning(f"SSH key not found at {key_path}, falling back to other auth methods")

        # Host aliases and proxies may come from an OpenSSH config file
        if config_path:
            ssh_config = Path(expand_home(config_path))
            if ssh_config.exists():
                connect_kwargs["config"] = [str(ssh_config)]
            else:
                logger.warning(f"SSH config not found at {ssh_config}")

        # Handle known_hosts
        if self.config.ssh_known_hosts:
            known_hosts_path = Path(expand_home(self.config.ssh_known_hosts))
            if known_hosts_path.exists():
                connect_kwargs["known_hosts"] = str(known_hosts_path)
            else:
                logger.warning(f"Known hosts file not found at {known_hosts_path}")
                connect_kwargs["known_hosts"] = None
        else:
            connect_kwargs["known_hosts"] = None

        return connect_kwargs

    async def connect(
        self,
        host: str,
        identity_file: Optional[str] = None,
        config_path: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> asyncssh.SSHClientConnection:
        """Open (or reuse) a connection to ``host``.

        Raises:
            SSHConnectionError: If connection fails.
        """
        if timeout is None:
            timeout = self.config.ssh_connect_timeout_seconds

        async with self._lock:
            if self.is_connected(host):
                return self._connections[host]

            connect_kwargs = self._connect_kwargs(host, identity_file, config_path, timeout)
            target = f"{self.config.user}@{host}" if self.config.user else host
            try:
                logger.info(f"Connecting to {target}")
                conn = await asyncio.wait_for(asyncssh.connect(**connect_kwargs), timeout=timeout)
                logger.info(f"SSH connection to {host} established")
            except asyncio.TimeoutError:
                raise SSHConnectionError(f"Timed out connecting to {host} after {timeout} seconds")
            except (asyncssh.Error, OSError) as e:
                raise SSHConnectionError(f"Failed to connect to {host}: {e}") from e

            self._connections[host] = conn
            return conn

    async def disconnect(self) -> None:
        """Close all open connections."""
        async with self._lock:
            for host, conn in list(self._connections.items()):
                conn.close()
                await conn.wait_closed()
                logger.info(f"SSH connection to {host} closed")
            self._connections.clear()

    async def execute(
        self,
        host: str,
        command: str,
        identity_file: Optional[str] = None,
        config_path: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        """Execute a command on ``host``.

        Args:
            host: Login host to run on.
            command: The command to execute.
            identity_file: Private key to authenticate with.
            config_path: OpenSSH config file to load.
            timeout: Timeout in seconds for connecting and running.

        Returns:
            CommandResult with stdout, stderr, and return code.

        Raises:
            SSHConnectionError: If the host cannot be reached.
            SSHCommandError: If the command times out or the session breaks.
        """
        if timeout is None:
            timeout = self.config.ssh_connect_timeout_seconds

        conn = await self.connect(host, identity_file, config_path, timeout)

        try:
            logger.debug(f"Executing on {host}: {command[:100]}")

            result = await asyncio.wait_for(conn.run(command, check=False), timeout=timeout)

            cmd_result = CommandResult(
                stdout=result.stdout or "",
                stderr=result.stderr or "",
                return_code=result.exit_status or 0,
            )

            logger.debug(f"Command completed with return code {cmd_result.return_code}")
            return cmd_result

        except asyncio.TimeoutError:
            raise SSHCommandError(f"Command timed out after {timeout} seconds: {command[:50]}")
        except asyncssh.Error as e:
            # Connection might be broken, drop it
            self._connections.pop(host, None)
            raise SSHCommandError(f"SSH error executing command on {host}: {e}") from e

    async def run(
        self,
        host: str,
        command: str,
        identity_file: Optional[str] = None,
        config_path: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> str:
        """Run a command and return its trimmed stdout.

        Uses the configured identity file and query config unless given.

        Raises:
            SSHConnectionError: If the host cannot be reached.
            SSHCommandError: If the command fails, times out or exits non-zero.
        """
        if identity_file is None:
            identity_file = self.config.identity_file
        if config_path is None:
            config_path = self.config.ssh_query_config_path

        result = await self.execute(host, command, identity_file, config_path, timeout)
        if not result.success:
            raise SSHCommandError(
                f"Command failed with return code {result.return_code}: {result.stderr.strip()}"
            )
        return result.stdout.strip()

    async def __aenter__(self) -> "SSHClient":
        """Async context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.disconnect()
