"""Unit tests for launch command and alias building.

Run with: pytest tests/test_launch.py -v
"""

import pytest

from slurm_connect.launch import (
    LaunchCommandBuilder,
    build_default_alias,
    build_salloc_args,
    sanitize_alias,
)
from slurm_connect.models import ResourceSelection


def make_selection(**overrides) -> ResourceSelection:
    values = {
        "nodes": 1,
        "tasks_per_node": 1,
        "cpus_per_task": 8,
        "time": "04:00:00",
    }
    values.update(overrides)
    return ResourceSelection(**values)


# =============================================================================
# Test: salloc flags
# =============================================================================

class TestBuildSallocArgs:
    """Tests for flag order and optional flags."""

    def test_minimal(self):
        """Test required flags only."""
        assert build_salloc_args(make_selection()) == [
            "--nodes=1",
            "--ntasks-per-node=1",
            "--cpus-per-task=8",
            "--time=04:00:00",
        ]

    def test_full_order(self):
        """Test every optional flag in its fixed position."""
        selection = make_selection(
            partition="gpu",
            qos="high",
            account="proj1",
            memory_mb=64000,
            gpu_type="a100",
            gpu_count=2,
        )
        assert build_salloc_args(selection) == [
            "--partition=gpu",
            "--nodes=1",
            "--ntasks-per-node=1",
            "--cpus-per-task=8",
            "--time=04:00:00",
            "--qos=high",
            "--account=proj1",
            "--mem=64000",
            "--gres=gpu:a100:2",
        ]

    def test_untyped_gpu(self):
        """Test GPUs without a type."""
        assert build_salloc_args(make_selection(gpu_count=1))[-1] == "--gres=gpu:1"

    def test_gpu_type_without_count_ignored(self):
        """Test a GPU type alone adds no flag."""
        args = build_salloc_args(make_selection(gpu_type="a100"))
        assert not any(a.startswith("--gres") for a in args)


# =============================================================================
# Test: Remote command
# =============================================================================

class TestLaunchCommandBuilder:
    """Tests for the composed RemoteCommand."""

    def test_command_layout(self, make_config):
        """Test proxy, wrapped flags, extras and session key in order."""
        config = make_config(
            proxy_command="python3 proxy.py",
            proxy_args=["--log", "/tmp/proxy.log"],
            extra_salloc_args=["--exclusive"],
        )
        command = LaunchCommandBuilder(config).build(
            make_selection(partition="gpu", extra_args=["--mem=32G"]),
            session_key="slurm-login1-gpu-1n-8c",
        )

        assert command == (
            "python3 proxy.py --log /tmp/proxy.log"
            " --salloc-arg=--partition=gpu"
            " --salloc-arg=--nodes=1"
            " --salloc-arg=--ntasks-per-node=1"
            " --salloc-arg=--cpus-per-task=8"
            " --salloc-arg=--time=04:00:00"
            " --salloc-arg=--exclusive"
            " --salloc-arg=--mem=32G"
            " --session-key=slurm-login1-gpu-1n-8c"
        )

    def test_module_load_prefix(self, make_config):
        """Test the module load prefix is joined with &&."""
        config = make_config(module_load="module load slurm", proxy_command="proxy")
        command = LaunchCommandBuilder(config).build(make_selection())
        assert command.startswith("module load slurm && proxy --salloc-arg=--nodes=1")
        assert "--session-key" not in command

    def test_empty_without_proxy(self, make_config):
        """Test no proxy command means no remote command."""
        config = make_config(proxy_command="", module_load="module load slurm")
        assert LaunchCommandBuilder(config).build(make_selection()) == ""

    def test_deterministic(self, config):
        """Test identical inputs give byte-identical commands."""
        selection = make_selection(partition="cpu", gpu_count=1)
        first = LaunchCommandBuilder(config).build(selection, session_key="k")
        second = LaunchCommandBuilder(config).build(make_selection(partition="cpu", gpu_count=1), session_key="k")
        assert first == second


# =============================================================================
# Test: Aliases
# =============================================================================

class TestAliases:
    """Tests for alias defaults and sanitizing."""

    def test_default_alias(self):
        """Test the default alias layout."""
        assert build_default_alias("slurm", "login1.cluster.example.org", "gpu", 2, 16) == (
            "slurm-login1-gpu-2n-16c"
        )

    def test_default_alias_without_partition(self):
        """Test the partition segment is skipped when unset."""
        assert build_default_alias("hpc", "login1", None, 1, 4) == "hpc-login1-1n-4c"

    def test_default_alias_sanitized(self):
        """Test unsafe partition characters are replaced."""
        assert build_default_alias("slurm", "login1", "gpu.large", 1, 1) == "slurm-login1-gpu-large-1n-1c"

    @pytest.mark.parametrize("alias,expected", [
        ("my host", "my-host"),
        ("a.b/c@d", "a-b-c-d"),
        ("ok_name-1", "ok_name-1"),
        ("!!!", "---"),
    ])
    def test_sanitize_alias(self, alias, expected):
        """Test every unsafe character becomes a dash."""
        assert sanitize_alias(alias) == expected
