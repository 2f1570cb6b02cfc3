"""Rendering and writing of the SSH config overlay."""

import logging
import os
import re
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from slurm_connect.config import ConnectConfig, expand_home
from slurm_connect.exceptions import ConfigWriteError
from slurm_connect.models import SSHHostEntry

logger = logging.getLogger(__name__)

TOOL_NAME = "Slurm Connect"

_WHITESPACE_RE = re.compile(r"\s")
_HOST_RE = re.compile(r"^\s*Host\s+(.+)$", re.IGNORECASE)


def format_value(value: str) -> str:
    """Quote an SSH config value when it contains whitespace.

    Values already wrapped in double quotes are returned unchanged.

    Examples:
        'simple' -> 'simple'
        'path with space' -> '"path with space"'
        'C:\\My Keys\\id' -> '"C:\\\\My Keys\\\\id"'
    """
    if len(value) >= 2 and value.startswith('"') and value.endswith('"'):
        return value
    if not _WHITESPACE_RE.search(value):
        return value
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def build_host_entry(
    alias: str,
    login_host: str,
    config: ConnectConfig,
    remote_command: str,
) -> SSHHostEntry:
    """Build the host entry for a generated alias."""
    return SSHHostEntry(
        alias=alias,
        hostname=login_host,
        user=config.user or None,
        request_tty=config.request_tty,
        forward_agent=config.forward_agent,
        identity_file=config.identity_file or None,
        remote_command=remote_command,
        options=dict(config.additional_ssh_options),
    )


def render_host_entry(entry: SSHHostEntry, generated_at: Optional[datetime] = None) -> str:
    """Render a Host block.

    RemoteCommand is written verbatim since OpenSSH reads the rest of the line.
    """
    if generated_at is None:
        generated_at = datetime.now(timezone.utc)
    timestamp = generated_at.isoformat(timespec="milliseconds").replace("+00:00", "Z")

    lines = [
        f"# Generated by {TOOL_NAME} on {timestamp}",
        f"Host {entry.alias}",
        f"  HostName {format_value(entry.hostname)}",
    ]
    if entry.user:
        lines.append(f"  User {format_value(entry.user)}")
    if entry.request_tty:
        lines.append("  RequestTTY yes")
    if entry.forward_agent:
        lines.append("  ForwardAgent yes")
    if entry.identity_file:
        lines.append(f"  IdentityFile {format_value(entry.identity_file)}")
    lines.append(f"  RemoteCommand {entry.remote_command}")

    for key in sorted(entry.options):
        value = entry.options[key]
        if value is None or str(value) == "":
            continue
        lines.append(f"  {key} {format_value(str(value))}")

    return "\n".join(lines) + "\n"


def render_overlay(host_block: str, includes: list[str]) -> str:
    """Render the overlay: Include directives followed by the host block."""
    lines = [f"# Temporary SSH config generated by {TOOL_NAME}"]
    for include in includes:
        if include:
            lines.append(f"Include {format_value(expand_home(include))}")
    if len(lines) > 1:
        lines.append("")
    return "\n".join(lines) + "\n" + host_block


def list_host_aliases(content: str) -> list[str]:
    """Return the aliases declared by ``Host`` lines."""
    aliases: list[str] = []
    for line in content.splitlines():
        match = _HOST_RE.match(line)
        if match:
            aliases.extend(a for a in match.group(1).split() if a not in aliases)
    return aliases


class SSHConfigWriter:
    """Writes the SSH config overlay for a generated host."""

    def __init__(self, config: ConnectConfig):
        self.config = config

    def write(self, entry: SSHHostEntry) -> Path:
        """Render ``entry`` and write the overlay atomically.

        Returns:
            Path of the written overlay.

        Raises:
            ConfigWriteError: If the file cannot be written.
        """
        path = self.config.overlay_path
        content = render_overlay(render_host_entry(entry), self.config.ssh_config_includes)

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=".ssh-config-", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(content)
                os.replace(tmp_path, path)
            except BaseException:
                Path(tmp_path).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise ConfigWriteError(f"Failed to write temporary SSH config: {e}") from e

        logger.info(f"Wrote SSH config overlay for {entry.alias} to {path}")
        return path
