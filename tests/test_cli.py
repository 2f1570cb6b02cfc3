"""Unit tests for the command line interface.

Run with: pytest tests/test_cli.py -v
"""

import json

import pytest

from slurm_connect.cli import (
    apply_overrides,
    build_parser,
    main,
    run_cluster_info,
    run_restore,
    run_status,
)
from slurm_connect.connection import LocalConnectionLayer
from slurm_connect.parsers import parse_partition_info
from slurm_connect.state import ClusterInfoCache, StateStore


# =============================================================================
# Test: Argument parsing
# =============================================================================

class TestParser:
    """Tests for the argument parser."""

    def test_connect_options(self):
        args = build_parser().parse_args(
            ["connect", "--non-interactive", "--partition", "gpu", "--nodes", "2", "--no-connect"]
        )

        assert args.command == "connect"
        assert args.non_interactive is True
        assert args.partition == "gpu"
        assert args.nodes == 2
        assert args.no_connect is True

    def test_cluster_info_host_optional(self):
        args = build_parser().parse_args(["cluster-info", "--cached"])
        assert args.host is None
        assert args.cached is True

    def test_apply_overrides(self, config):
        """Test only given options replace configured values."""
        args = build_parser().parse_args(
            ["connect", "--login-host", "login9", "--time", "02:00:00", "--no-connect"]
        )
        updated = apply_overrides(config, args)

        assert updated.login_hosts == ["login9"]
        assert updated.default_time == "02:00:00"
        assert updated.connect_after_create is False
        assert updated.default_cpus_per_task == config.default_cpus_per_task

    def test_apply_no_overrides(self, config):
        args = build_parser().parse_args(["connect"])
        assert apply_overrides(config, args) is config


# =============================================================================
# Test: Subcommands
# =============================================================================

class TestSubcommands:
    """Tests for the restore, status and cluster-info commands."""

    def test_restore_nothing_pending(self, config, capsys):
        assert run_restore(config) == 0
        assert "Nothing to restore." in capsys.readouterr().out

    def test_restore_pending(self, config, capsys):
        """Test a captured pointer is written back."""
        connection = LocalConnectionLayer(StateStore(config.state_file), config)
        connection.set_config_file("/home/alice/.ssh/custom")
        connection.capture_previous()
        connection.set_config_file(str(config.overlay_path))

        assert run_restore(config) == 0
        assert "restored to /home/alice/.ssh/custom" in capsys.readouterr().out
        assert connection.get_config_file() == "/home/alice/.ssh/custom"

    def test_status(self, config, capsys):
        config.overlay_path.write_text("Host slurm-alias\n  HostName login1\n")
        connection = LocalConnectionLayer(StateStore(config.state_file), config)
        connection.capture_previous()
        connection.set_config_file(str(config.overlay_path))

        assert run_status(config) == 0
        out = capsys.readouterr().out
        assert f"Active SSH config: {config.overlay_path}" in out
        assert "Hosts: slurm-alias" in out
        assert "Pending restore to: (default)" in out
        assert "enableRemoteCommand is off" not in out

    def test_status_warns_remote_command_off(self, make_config, tmp_path, capsys):
        settings_file = tmp_path / "off.json"
        settings_file.write_text("{}")

        assert run_status(make_config(editor_settings_path=str(settings_file))) == 0
        assert "remote.SSH.enableRemoteCommand is off" in capsys.readouterr().out

    def test_restore_unreadable_settings(self, make_config, tmp_path, capsys):
        """Test a settings file that cannot be parsed is reported, not rewritten."""
        settings_file = tmp_path / "commented.json"
        settings_file.write_text("{ // comment\n}")
        config = make_config(editor_settings_path=str(settings_file))
        StateStore(config.state_file).update("previous_ssh_config_file", "")

        assert run_restore(config) == 1
        assert "Cannot parse editor settings" in capsys.readouterr().err
        assert settings_file.read_text() == "{ // comment\n}"

    @pytest.mark.asyncio
    async def test_cluster_info_cached(self, config, capsys):
        """Test cached info is printed without querying the cluster."""
        ClusterInfoCache(StateStore(config.state_file)).put(
            "login1", parse_partition_info("gpu*|2|64|128000|gpu:a100:4")
        )
        args = build_parser().parse_args(["cluster-info", "login1", "--cached"])

        assert await run_cluster_info(config, args) == 0
        out = capsys.readouterr().out
        assert out.startswith("Cluster info for login1 (cached ")
        assert "gpu (default)" in out

    @pytest.mark.asyncio
    async def test_cluster_info_cached_missing(self, config, capsys):
        args = build_parser().parse_args(["cluster-info", "login1", "--cached"])

        assert await run_cluster_info(config, args) == 1
        assert "No cached cluster info for login1." in capsys.readouterr().out


# =============================================================================
# Test: Entry point
# =============================================================================

class TestMain:
    """Tests for the main entry point."""

    def test_missing_config_exits(self, tmp_path, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main(["--config", str(tmp_path / "missing.json"), "status"])

        assert exc_info.value.code == 1
        assert "config file not found" in capsys.readouterr().err

    def test_status_command(self, tmp_path, capsys):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({
            "state_path": str(tmp_path / "state.json"),
            "editor_settings_path": str(tmp_path / "settings.json"),
        }))

        with pytest.raises(SystemExit) as exc_info:
            main(["--config", str(path), "status"])

        assert exc_info.value.code == 0
        assert "Active SSH config: (default)" in capsys.readouterr().out
