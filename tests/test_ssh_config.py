"""Unit tests for SSH config overlay rendering and writing.

Run with: pytest tests/test_ssh_config.py -v
"""

import os
from datetime import datetime, timezone
from pathlib import Path

import pytest

from slurm_connect.exceptions import ConfigWriteError
from slurm_connect.models import SSHHostEntry
from slurm_connect.ssh_config import (
    SSHConfigWriter,
    build_host_entry,
    format_value,
    list_host_aliases,
    render_host_entry,
    render_overlay,
)

GENERATED_AT = datetime(2026, 3, 1, 12, 30, 0, tzinfo=timezone.utc)


def make_entry(**overrides) -> SSHHostEntry:
    values = {
        "alias": "slurm-login1-gpu-1n-8c",
        "hostname": "login1.cluster.example.org",
        "user": "alice",
        "remote_command": "proxy --salloc-arg=--nodes=1",
    }
    values.update(overrides)
    return SSHHostEntry(**values)


# =============================================================================
# Test: Value quoting
# =============================================================================

class TestFormatValue:
    """Tests for SSH config value quoting."""

    def test_simple(self):
        assert format_value("simple") == "simple"

    def test_whitespace_is_quoted(self):
        assert format_value("path with space") == '"path with space"'

    def test_already_quoted_unchanged(self):
        assert format_value('"already quoted"') == '"already quoted"'

    def test_backslash_and_space(self):
        """Test a Windows path doubles backslashes inside quotes."""
        assert format_value("C:\\My Keys\\id_rsa") == '"C:\\\\My Keys\\\\id_rsa"'

    def test_embedded_quote_escaped(self):
        assert format_value('say "hi" now') == '"say \\"hi\\" now"'

    def test_backslash_without_space_unchanged(self):
        assert format_value("C:\\keys\\id") == "C:\\keys\\id"


# =============================================================================
# Test: Host block
# =============================================================================

class TestRenderHostEntry:
    """Tests for the rendered Host block."""

    def test_full_block(self):
        """Test every line in order."""
        entry = make_entry(
            identity_file="~/.ssh/my key",
            options={"ServerAliveInterval": "30", "LogLevel": "ERROR", "Empty": ""},
        )
        assert render_host_entry(entry, GENERATED_AT) == (
            "# Generated by Slurm Connect on 2026-03-01T12:30:00.000Z\n"
            "Host slurm-login1-gpu-1n-8c\n"
            "  HostName login1.cluster.example.org\n"
            "  User alice\n"
            "  RequestTTY yes\n"
            "  ForwardAgent yes\n"
            '  IdentityFile "~/.ssh/my key"\n'
            "  RemoteCommand proxy --salloc-arg=--nodes=1\n"
            "  LogLevel ERROR\n"
            "  ServerAliveInterval 30\n"
        )

    def test_optional_lines_omitted(self):
        """Test user, flags and identity file are left out when unset."""
        entry = make_entry(user=None, request_tty=False, forward_agent=False)
        block = render_host_entry(entry, GENERATED_AT)

        assert "User" not in block
        assert "RequestTTY" not in block
        assert "ForwardAgent" not in block
        assert "IdentityFile" not in block

    def test_build_host_entry_from_config(self, make_config):
        """Test the entry takes SSH settings from configuration."""
        config = make_config(
            identity_file="~/.ssh/id_ed25519",
            forward_agent=False,
            additional_ssh_options={"ServerAliveInterval": "60"},
        )
        entry = build_host_entry("alias1", "login1", config, "proxy")

        assert entry.user == "alice"
        assert entry.identity_file == "~/.ssh/id_ed25519"
        assert entry.forward_agent is False
        assert entry.request_tty is True
        assert entry.options == {"ServerAliveInterval": "60"}

    def test_empty_user_becomes_none(self, make_config):
        entry = build_host_entry("alias1", "login1", make_config(user=""), "proxy")
        assert entry.user is None


# =============================================================================
# Test: Overlay
# =============================================================================

class TestRenderOverlay:
    """Tests for the overlay file layout."""

    def test_includes_then_block(self, monkeypatch):
        """Test include lines come before the host block."""
        monkeypatch.setenv("HOME", "/home/alice")
        overlay = render_overlay("Host x\n", ["~/.ssh/config", "/etc/ssh/my config"])

        assert overlay == (
            "# Temporary SSH config generated by Slurm Connect\n"
            "Include /home/alice/.ssh/config\n"
            'Include "/etc/ssh/my config"\n'
            "\n"
            "Host x\n"
        )

    def test_no_includes(self):
        assert render_overlay("Host x\n", []) == (
            "# Temporary SSH config generated by Slurm Connect\nHost x\n"
        )

    def test_list_host_aliases(self):
        """Test Host lines are read back, including multi-alias lines."""
        content = "Include foo\nHost a b\n  HostName x\nhost c\n  Host d\nHostName e\n"
        assert list_host_aliases(content) == ["a", "b", "c", "d"]


# =============================================================================
# Test: Writing
# =============================================================================

class TestSSHConfigWriter:
    """Tests for writing the overlay file."""

    def test_write_creates_parent_dirs(self, make_config, tmp_path):
        """Test the overlay is written to a new directory."""
        target = tmp_path / "nested" / "dir" / "ssh-config"
        config = make_config(temporary_ssh_config_path=str(target))

        path = SSHConfigWriter(config).write(make_entry())

        assert path == target
        content = target.read_text()
        assert content.startswith("# Temporary SSH config generated by Slurm Connect\n")
        assert "Host slurm-login1-gpu-1n-8c\n" in content
        assert [p.name for p in target.parent.iterdir()] == ["ssh-config"]

    def test_write_replaces_existing(self, config):
        """Test a second write replaces the first overlay."""
        writer = SSHConfigWriter(config)
        writer.write(make_entry(alias="first"))
        writer.write(make_entry(alias="second"))

        assert list_host_aliases(config.overlay_path.read_text()) == ["second"]

    @pytest.mark.skipif(os.name == "nt" or os.geteuid() == 0, reason="needs POSIX permissions as non-root")
    def test_write_failure_raises(self, make_config, tmp_path):
        """Test filesystem errors surface as ConfigWriteError."""
        locked = tmp_path / "locked"
        locked.mkdir()
        locked.chmod(0o500)
        config = make_config(temporary_ssh_config_path=str(locked / "ssh-config"))
        try:
            with pytest.raises(ConfigWriteError, match="Failed to write temporary SSH config"):
                SSHConfigWriter(config).write(make_entry())
        finally:
            locked.chmod(0o700)

    def test_write_failure_when_parent_is_file(self, make_config, tmp_path):
        """Test a file in place of the directory raises ConfigWriteError."""
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        config = make_config(temporary_ssh_config_path=str(blocker / "ssh-config"))

        with pytest.raises(ConfigWriteError):
            SSHConfigWriter(config).write(make_entry())
        assert Path(blocker).read_text() == "not a directory"
