"""Connection layer: active SSH config pointer, host listing and editor connect.

The pointer is the editor's ``remote.SSH.configFile`` user setting, so the
editor resolves generated aliases from the overlay. The value it held before
an overlay was applied is kept in the state file until it is restored.
"""

import asyncio
import json
import logging
import shlex
from pathlib import Path
from typing import Any, Optional

from slurm_connect.config import ConnectConfig, expand_home
from slurm_connect.exceptions import ConnectError, SettingsError
from slurm_connect.models import ConnectRequest
from slurm_connect.ssh_config import list_host_aliases
from slurm_connect.state import PREVIOUS_SSH_CONFIG_FILE_KEY, StateStore, write_json_atomic

logger = logging.getLogger(__name__)

REMOTE_SSH_CONFIG_FILE = "remote.SSH.configFile"
REMOTE_SSH_ENABLE_REMOTE_COMMAND = "remote.SSH.enableRemoteCommand"


class EditorSettings:
    """Top-level keys of the editor's user settings.json.

    Only strict JSON is read. A file the parser rejects (comments, trailing
    commas) raises SettingsError and is never rewritten.
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def _load(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            text = self.path.read_text(encoding="utf-8")
        except OSError as e:
            raise SettingsError(f"Failed to read editor settings {self.path}: {e}") from e
        if not text.strip():
            return {}
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise SettingsError(
                f"Cannot parse editor settings {self.path}: {e}. "
                f"Remove comments and trailing commas or set {REMOTE_SSH_CONFIG_FILE} by hand."
            ) from e
        if not isinstance(data, dict):
            raise SettingsError(f"Editor settings {self.path} is not a JSON object")
        return data

    def get(self, key: str, default: Any = None) -> Any:
        return self._load().get(key, default)

    def update(self, key: str, value: Any) -> None:
        """Set ``key``; ``None`` removes it. Other settings are kept."""
        data = self._load()
        if value is None:
            data.pop(key, None)
        else:
            data[key] = value
        try:
            write_json_atomic(self.path, data)
        except OSError as e:
            raise SettingsError(f"Failed to write editor settings {self.path}: {e}") from e
        logger.debug(f"Updated editor setting '{key}' in {self.path}")


class ConnectionLayer:
    """Interface to the tool that opens remote sessions over SSH.

    The layer keeps a single pointer to the SSH config file it reads hosts
    from, plus one restore slot holding the pointer value captured before the
    most recent overlay was applied.
    """

    def get_config_file(self) -> str:
        """Currently active SSH config file, or '' for the system default."""
        raise NotImplementedError

    def set_config_file(self, path: Optional[str]) -> None:
        """Point the layer at ``path``; None or '' resets to the default."""
        raise NotImplementedError

    def capture_previous(self) -> str:
        """Store the current pointer in the restore slot and return it."""
        raise NotImplementedError

    def restore(self) -> bool:
        """Write the restore slot back to the pointer.

        Returns:
            True if a captured value was restored.
        """
        raise NotImplementedError

    def remote_command_enabled(self) -> bool:
        """Whether the layer runs a host's RemoteCommand when connecting."""
        raise NotImplementedError

    def enable_remote_command(self) -> None:
        raise NotImplementedError

    def refresh_hosts(self) -> list[str]:
        """Reload host aliases from the active config file."""
        raise NotImplementedError

    async def connect(self, request: ConnectRequest) -> bool:
        """Open a remote session on ``request.alias``."""
        raise NotImplementedError


class LocalConnectionLayer(ConnectionLayer):
    """Connection layer backed by the editor's settings file and CLI."""

    def __init__(
        self,
        store: StateStore,
        config: ConnectConfig,
        settings: Optional[EditorSettings] = None,
    ):
        self.store = store
        self.config = config
        self.settings = settings or EditorSettings(config.settings_file)
        self.hosts: list[str] = []

    def _update_slot(self, value: Optional[str]) -> None:
        try:
            self.store.update(PREVIOUS_SSH_CONFIG_FILE_KEY, value)
        except OSError as e:
            raise SettingsError(f"Failed to save SSH config restore slot in {self.store.path}: {e}") from e

    def get_config_file(self) -> str:
        value = self.settings.get(REMOTE_SSH_CONFIG_FILE)
        return value if isinstance(value, str) else ""

    def set_config_file(self, path: Optional[str]) -> None:
        self.settings.update(REMOTE_SSH_CONFIG_FILE, path or None)
        logger.info(f"SSH config pointer set to {path or '(default)'}")

    def capture_previous(self) -> str:
        previous = self.get_config_file()
        # Only one value is kept; a newer capture replaces an older one
        self._update_slot(previous)
        logger.debug(f"Captured SSH config pointer: {previous or '(default)'}")
        return previous

    def pending_restore(self) -> Optional[str]:
        """Value waiting in the restore slot, or None when the slot is empty."""
        return self.store.get(PREVIOUS_SSH_CONFIG_FILE_KEY)

    def restore(self) -> bool:
        previous = self.pending_restore()
        if previous is None:
            logger.info("No captured SSH config pointer to restore")
            return False
        self.set_config_file(previous)
        self._update_slot(None)
        logger.info(f"Restored SSH config pointer to {previous or '(default)'}")
        return True

    def remote_command_enabled(self) -> bool:
        # Remote-SSH leaves RemoteCommand disabled unless the setting is true
        return self.settings.get(REMOTE_SSH_ENABLE_REMOTE_COMMAND, False) is True

    def enable_remote_command(self) -> None:
        self.settings.update(REMOTE_SSH_ENABLE_REMOTE_COMMAND, True)
        logger.info(f"Enabled {REMOTE_SSH_ENABLE_REMOTE_COMMAND} in {self.settings.path}")

    def refresh_hosts(self) -> list[str]:
        config_file = self.get_config_file()
        if not config_file:
            self.hosts = []
            return self.hosts

        path = Path(expand_home(config_file))
        try:
            content = path.read_text(encoding="utf-8")
        except OSError as e:
            logger.warning(f"Failed to read SSH config {path}: {e}")
            self.hosts = []
            return self.hosts

        self.hosts = list_host_aliases(content)
        logger.debug(f"Hosts in {path}: {', '.join(self.hosts) or '(none)'}")
        return self.hosts

    def build_editor_args(self, request: ConnectRequest) -> list[str]:
        """Build the editor invocation for ``request``.

        Example:
            code --new-window --remote ssh-remote+slurm-login1-gpu-1n-8c /home/me
        """
        args = shlex.split(self.config.editor_command or "code")
        args.append("--new-window" if request.open_in_new_window else "--reuse-window")
        args.extend(["--remote", f"ssh-remote+{request.alias}"])

        workspace = (request.remote_workspace_path or "").strip()
        if workspace:
            if not workspace.startswith("/"):
                workspace = f"/{workspace}"
            args.append(workspace)
        return args

    async def connect(self, request: ConnectRequest) -> bool:
        """Launch the editor on the generated host.

        Raises:
            ConnectError: If the editor cannot be started or exits with an error.
        """
        args = self.build_editor_args(request)
        logger.info(f"Connecting: {' '.join(args)}")

        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise ConnectError(f"Failed to start {args[0]}: {e}") from e

        _, stderr = await process.communicate()
        if process.returncode != 0:
            message = stderr.decode("utf-8", errors="replace").strip()
            raise ConnectError(
                f"{args[0]} exited with code {process.returncode}"
                + (f": {message}" if message else "")
            )
        return True
