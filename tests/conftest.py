"""Shared pytest fixtures and configuration.

This module provides common fixtures used across all test modules.
Remote execution is replaced with AsyncMock and interactive input with a
scripted prompter, so no cluster is needed.
"""

import asyncio
import json
from pathlib import Path
from typing import Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from slurm_connect.config import ConnectConfig
from slurm_connect.exceptions import PromptCancelled
from slurm_connect.prompts import Choice, Prompter, Validator
from slurm_connect.slurm_commands import SlurmCommands
from slurm_connect.state import ClusterInfoCache, StateStore


class ScriptedPrompter(Prompter):
    """Prompter answering from a fixed script.

    ``pick`` answers are choice labels, ``ask`` answers are raw text. The
    ``CANCEL`` marker dismisses the prompt. An answer rejected by a validator
    is recorded in ``errors`` and the next answer is used instead.
    """

    CANCEL = object()

    def __init__(self, answers: Optional[list] = None):
        self.answers = list(answers or [])
        self.titles: list[str] = []
        self.picks: dict[str, list[Choice]] = {}
        self.errors: list[str] = []
        self.infos: list[str] = []
        self.warnings: list[str] = []

    def _next(self, title: str):
        self.titles.append(title)
        if not self.answers:
            raise AssertionError(f"No scripted answer for prompt: {title}")
        answer = self.answers.pop(0)
        if answer is self.CANCEL:
            raise PromptCancelled(f"Cancelled: {title}")
        return answer

    async def pick(self, title: str, choices: list[Choice]) -> Choice:
        self.picks[title] = choices
        label = self._next(title)
        for choice in choices:
            if choice.label == label:
                return choice
        raise AssertionError(f"No choice labelled {label!r} for {title}")

    async def ask(
        self,
        title: str,
        default: str = "",
        hint: str = "",
        validate: Optional[Validator] = None,
    ) -> str:
        while True:
            answer = self._next(title)
            answer = answer if answer != "" else default
            error = validate(answer) if validate else None
            if error is None:
                return answer
            self.errors.append(error)

    def info(self, message: str) -> None:
        self.infos.append(message)

    def warn(self, message: str) -> None:
        self.warnings.append(message)


# =============================================================================
# Shared Fixtures
# =============================================================================

@pytest.fixture(scope="session")
def event_loop_policy():
    """Return the event loop policy."""
    return asyncio.DefaultEventLoopPolicy()


def create_test_config(tmp_path, **overrides) -> ConnectConfig:
    """Create a ConnectConfig that writes only below ``tmp_path``.

    The editor settings file is created with remote commands enabled unless
    it already exists.
    """
    values = {
        "login_hosts": ["login1.cluster.example.org"],
        "user": "alice",
        "proxy_command": "python3 ~/.slurm-connect/vscode-proxy.py",
        "default_nodes": 1,
        "default_tasks_per_node": 1,
        "default_cpus_per_task": 8,
        "default_time": "04:00:00",
        "temporary_ssh_config_path": str(tmp_path / "ssh-config"),
        "state_path": str(tmp_path / "state.json"),
        "editor_settings_path": str(tmp_path / "settings.json"),
        "ssh_config_includes": [],
        "restore_ssh_config_after_connect": False,
        "restore_delay_seconds": 0,
    }
    values.update(overrides)
    settings = Path(values["editor_settings_path"])
    if not settings.exists():
        settings.parent.mkdir(parents=True, exist_ok=True)
        settings.write_text(json.dumps({"remote.SSH.enableRemoteCommand": True}))
    return ConnectConfig(**values)


@pytest.fixture
def config(tmp_path):
    """ConnectConfig with a static login host and valid sizing defaults."""
    return create_test_config(tmp_path)


@pytest.fixture
def ssh_client():
    """SSH client whose ``run`` is an AsyncMock."""
    client = MagicMock()
    client.run = AsyncMock(return_value="")
    return client


@pytest.fixture
def slurm(ssh_client, config):
    """Slurm commands wrapper over the mocked SSH client."""
    return SlurmCommands(ssh_client, config)


@pytest.fixture
def store(tmp_path):
    """State store in a temporary directory."""
    return StateStore(tmp_path / "state.json")


@pytest.fixture
def cache(store):
    """Cluster info cache backed by the temporary state store."""
    return ClusterInfoCache(store)


@pytest.fixture
def prompter():
    """Scripted prompter with no answers; tests fill ``answers``."""
    return ScriptedPrompter()


@pytest.fixture
def make_config(tmp_path):
    """Factory for ConnectConfig instances with overrides."""
    def _make(**overrides) -> ConnectConfig:
        return create_test_config(tmp_path, **overrides)
    return _make


@pytest.fixture
def make_prompter():
    """Factory for scripted prompters."""
    return ScriptedPrompter
