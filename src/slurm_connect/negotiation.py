"""Negotiation of allocation parameters, interactively or from configuration."""

import logging
from dataclasses import dataclass
from typing import Optional

from slurm_connect.config import ConnectConfig
from slurm_connect.exceptions import InputValidationError
from slurm_connect.models import TIME_PATTERN, ClusterInfo, ResourceSelection
from slurm_connect.parsers import describe_partition
from slurm_connect.prompts import Choice, Prompter

logger = logging.getLogger(__name__)

CLUSTER_DEFAULT_LABEL = "Use cluster default"
NONE_LABEL = "None"
DEFAULT_TIME = "01:00:00"


def validate_positive_int(value: str) -> Optional[str]:
    """Return an error message unless ``value`` is an integer >= 1."""
    value = value.strip()
    if not value.isdecimal() or int(value) < 1:
        return "Enter an integer >= 1."
    return None


def validate_time(value: str) -> Optional[str]:
    """Return an error message unless ``value`` is HH:MM:SS or D-HH:MM:SS."""
    if not TIME_PATTERN.match(value.strip()):
        return "Invalid time format (HH:MM:SS or D-HH:MM:SS)."
    return None


@dataclass(frozen=True)
class Sizing:
    """Node and time sizing of an allocation."""
    nodes: int
    tasks_per_node: int
    cpus_per_task: int
    time: str


class ResourceNegotiator:
    """Collects partition, QoS, account and sizing for a ResourceSelection.

    In interactive mode every value comes from the prompter, seeded with the
    configured defaults. Otherwise the configured defaults are used as-is and
    a missing or malformed sizing value raises InputValidationError.
    """

    def __init__(self, config: ConnectConfig, prompter: Optional[Prompter] = None):
        self.config = config
        self.prompter = prompter

    async def select_partition(
        self,
        partitions: list[str],
        cluster_default: Optional[str] = None,
        cluster_info: Optional[ClusterInfo] = None,
        interactive: bool = True,
    ) -> Optional[str]:
        """Choose a partition; None lets the scheduler decide.

        Args:
            partitions: Known partition names, possibly empty.
            cluster_default: Default partition reported by the cluster.
            cluster_info: Partition details used to describe the choices.
            interactive: Whether to ask the user.

        Raises:
            PromptCancelled: If the user dismisses the prompt.
        """
        if not interactive:
            return self.config.default_partition or None

        default = self.config.default_partition or cluster_default

        if not partitions:
            answer = await self.prompter.ask(
                "Partition (optional)",
                hint="leave blank to use cluster default",
            )
            return answer.strip() or None

        choices = [
            Choice(CLUSTER_DEFAULT_LABEL, None, description=f"({default})" if default else ""),
            *(Choice(name, name, description="default" if name == default else "") for name in partitions),
        ]
        picked = await self.prompter.pick("Select partition", choices)

        if picked.value is not None and cluster_info is not None:
            record = cluster_info.get_partition(picked.value)
            if record is not None:
                self.prompter.info(f"{record.name}: {describe_partition(record)}")
        return picked.value

    async def select_optional(self, title: str, items: list[str]) -> Optional[str]:
        """Pick one of ``items`` or the "None" sentinel; no prompt for an empty list."""
        if not items:
            return None
        choices = [Choice(NONE_LABEL, None), *(Choice(item, item) for item in items)]
        picked = await self.prompter.pick(title, choices)
        return picked.value

    def _configured_sizing(self) -> Sizing:
        config = self.config
        for field, value in (
            ("nodes", config.default_nodes),
            ("tasks_per_node", config.default_tasks_per_node),
            ("cpus_per_task", config.default_cpus_per_task),
        ):
            if not value or value < 1:
                raise InputValidationError(field, f"Default {field.replace('_', ' ')} is not set.")

        if not config.default_time:
            raise InputValidationError("time", "Default wall time is not set.")
        if validate_time(config.default_time):
            raise InputValidationError("time", f"Default wall time is invalid: {config.default_time}")

        return Sizing(
            nodes=config.default_nodes,
            tasks_per_node=config.default_tasks_per_node,
            cpus_per_task=config.default_cpus_per_task,
            time=config.default_time,
        )

    async def select_sizing(self, interactive: bool = True) -> Sizing:
        """Collect nodes, tasks per node, CPUs per task and wall time.

        Raises:
            InputValidationError: In non-interactive mode, naming the bad field.
            PromptCancelled: If the user dismisses a prompt.
        """
        if not interactive:
            return self._configured_sizing()

        config = self.config
        nodes = await self.prompter.ask("Nodes", default=str(config.default_nodes), validate=validate_positive_int)
        tasks = await self.prompter.ask(
            "Tasks per node", default=str(config.default_tasks_per_node), validate=validate_positive_int
        )
        cpus = await self.prompter.ask(
            "CPUs per task", default=str(config.default_cpus_per_task), validate=validate_positive_int
        )
        time = await self.prompter.ask(
            "Wall time",
            default=config.default_time or DEFAULT_TIME,
            hint="HH:MM:SS or D-HH:MM:SS",
            validate=validate_time,
        )
        return Sizing(int(nodes), int(tasks), int(cpus), time.strip())

    async def prompt_extra_args(self) -> list[str]:
        """Ask for extra salloc arguments, split on whitespace."""
        answer = await self.prompter.ask("Extra salloc args (optional)", hint="e.g. --gres=gpu:1 --mem=32G")
        return answer.split()

    def build_selection(
        self,
        sizing: Sizing,
        partition: Optional[str] = None,
        qos: Optional[str] = None,
        account: Optional[str] = None,
        extra_args: Optional[list[str]] = None,
    ) -> ResourceSelection:
        """Combine negotiated values with the configured memory and GPU defaults."""
        return ResourceSelection(
            partition=partition,
            qos=qos,
            account=account,
            nodes=sizing.nodes,
            tasks_per_node=sizing.tasks_per_node,
            cpus_per_task=sizing.cpus_per_task,
            time=sizing.time,
            memory_mb=max(self.config.default_memory_mb, 0),
            gpu_type=self.config.default_gpu_type,
            gpu_count=max(self.config.default_gpu_count, 0),
            extra_args=tuple(extra_args or ()),
        )
