"""Connect flow: from login host resolution to an applied SSH config overlay.

The flow is a fixed sequence of steps. Each step's failure policy lives in
``TRANSITIONS``: an ABORT step stops the flow with ConnectionAborted, a
DEGRADE step logs a warning and lets the flow continue. Cancelling a prompt
always stops the flow with PromptCancelled. Files already written are left
in place when the flow stops.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from slurm_connect.config import ConnectConfig
from slurm_connect.connection import ConnectionLayer
from slurm_connect.exceptions import (
    ConnectError,
    ConnectionAborted,
    DiscoveryError,
    InputValidationError,
    PromptCancelled,
    RemoteQueryError,
    SettingsError,
    SlurmConnectError,
)
from slurm_connect.hosts import HostResolver
from slurm_connect.launch import DEFAULT_ALIAS_PREFIX, LaunchCommandBuilder, build_default_alias, sanitize_alias
from slurm_connect.models import (
    ClusterInfo,
    ConnectionSession,
    ConnectRequest,
    ConnectResult,
    ResourceSelection,
)
from slurm_connect.negotiation import ResourceNegotiator, Sizing
from slurm_connect.prompts import Choice, Prompter
from slurm_connect.slurm_commands import SlurmCommands
from slurm_connect.ssh_config import SSHConfigWriter, build_host_entry, render_host_entry
from slurm_connect.state import ClusterInfoCache

logger = logging.getLogger(__name__)

MANUAL_HOST_LABEL = "Enter manually"
REMOTE_COMMAND_DISABLED = "Remote.SSH: Enable Remote Command is disabled. This is required for Slurm proxying."

# Delayed restores still pending; holding them here keeps them from being
# garbage collected before they run.
_pending_restores: set[asyncio.Task] = set()


class Step(str, Enum):
    """Steps of the connect flow, in order."""
    RESOLVE_HOSTS = "resolve_hosts"
    SELECT_HOST = "select_host"
    QUERY_RESOURCES = "query_resources"
    SELECT_PARTITION = "select_partition"
    SELECT_QOS = "select_qos"
    SELECT_ACCOUNT = "select_account"
    SELECT_SIZING = "select_sizing"
    EXTRA_ARGS = "extra_args"
    BUILD_LAUNCH_COMMAND = "build_launch_command"
    BUILD_ALIAS = "build_alias"
    WRITE_CONFIG = "write_config"
    APPLY_AND_CONNECT = "apply_and_connect"
    SCHEDULE_RESTORE = "schedule_restore"


class FailurePolicy(Enum):
    """What a failing step does to the flow."""
    ABORT = "abort"
    DEGRADE = "degrade"


@dataclass(frozen=True)
class Transition:
    handler: str
    next_step: Optional[Step]
    policy: FailurePolicy
    interactive_only: bool = False


TRANSITIONS: dict[Step, Transition] = {
    Step.RESOLVE_HOSTS: Transition("_resolve_hosts", Step.SELECT_HOST, FailurePolicy.ABORT),
    Step.SELECT_HOST: Transition("_select_host", Step.QUERY_RESOURCES, FailurePolicy.DEGRADE),
    Step.QUERY_RESOURCES: Transition(
        "_query_resources", Step.SELECT_PARTITION, FailurePolicy.DEGRADE, interactive_only=True
    ),
    Step.SELECT_PARTITION: Transition("_select_partition", Step.SELECT_QOS, FailurePolicy.DEGRADE),
    Step.SELECT_QOS: Transition("_select_qos", Step.SELECT_ACCOUNT, FailurePolicy.DEGRADE, interactive_only=True),
    Step.SELECT_ACCOUNT: Transition(
        "_select_account", Step.SELECT_SIZING, FailurePolicy.DEGRADE, interactive_only=True
    ),
    Step.SELECT_SIZING: Transition("_select_sizing", Step.EXTRA_ARGS, FailurePolicy.ABORT),
    Step.EXTRA_ARGS: Transition("_extra_args", Step.BUILD_LAUNCH_COMMAND, FailurePolicy.DEGRADE, interactive_only=True),
    Step.BUILD_LAUNCH_COMMAND: Transition("_build_launch_command", Step.BUILD_ALIAS, FailurePolicy.ABORT),
    Step.BUILD_ALIAS: Transition("_build_alias", Step.WRITE_CONFIG, FailurePolicy.ABORT),
    Step.WRITE_CONFIG: Transition("_write_config", Step.APPLY_AND_CONNECT, FailurePolicy.ABORT),
    Step.APPLY_AND_CONNECT: Transition("_apply_and_connect", Step.SCHEDULE_RESTORE, FailurePolicy.DEGRADE),
    Step.SCHEDULE_RESTORE: Transition("_schedule_restore", None, FailurePolicy.DEGRADE),
}

FIRST_STEP = Step.RESOLVE_HOSTS


@dataclass
class ConnectContext:
    """Values accumulated while the flow runs."""
    interactive: bool
    hosts: list[str] = field(default_factory=list)
    login_host: Optional[str] = None
    cluster_info: Optional[ClusterInfo] = None
    partitions: list[str] = field(default_factory=list)
    cluster_default: Optional[str] = None
    qos_options: list[str] = field(default_factory=list)
    account_options: list[str] = field(default_factory=list)
    partition: Optional[str] = None
    qos: Optional[str] = None
    account: Optional[str] = None
    sizing: Optional[Sizing] = None
    extra_args: list[str] = field(default_factory=list)
    selection: Optional[ResourceSelection] = None
    remote_command: str = ""
    alias: str = ""
    session: Optional[ConnectionSession] = None
    connected: bool = False
    restore_scheduled: bool = False
    warnings: list[str] = field(default_factory=list)
    completed: list[Step] = field(default_factory=list)

    def to_result(self) -> ConnectResult:
        return ConnectResult(
            alias=self.alias,
            login_host=self.login_host or "",
            overlay_path=self.session.overlay_path if self.session else "",
            remote_command=self.remote_command,
            selection=self.selection,
            connected=self.connected,
            restore_scheduled=self.restore_scheduled,
            warnings=list(self.warnings),
        )


async def wait_for_restores() -> None:
    """Wait until every scheduled pointer restore has run."""
    while _pending_restores:
        await asyncio.gather(*list(_pending_restores), return_exceptions=True)


class ConnectionOrchestrator:
    """Runs the connect flow against the given collaborators."""

    def __init__(
        self,
        config: ConnectConfig,
        slurm: SlurmCommands,
        connection: ConnectionLayer,
        cache: ClusterInfoCache,
        prompter: Optional[Prompter] = None,
    ):
        self.config = config
        self.slurm = slurm
        self.connection = connection
        self.cache = cache
        self.prompter = prompter
        self.resolver = HostResolver(slurm, config, prompter)
        self.negotiator = ResourceNegotiator(config, prompter)
        self.launch = LaunchCommandBuilder(config)
        self.writer = SSHConfigWriter(config)

    async def run(self, interactive: bool = True) -> ConnectResult:
        """Run every step and return the result.

        Raises:
            ConnectionAborted: If a hard-abort step failed.
            PromptCancelled: If the user dismissed a prompt.
        """
        if interactive and self.prompter is None:
            raise ValueError("Interactive connect requires a prompter")

        logger.info(f"Slurm connect started ({'interactive' if interactive else 'non-interactive'})")
        ctx = ConnectContext(interactive=interactive)

        step: Optional[Step] = FIRST_STEP
        while step is not None:
            transition = TRANSITIONS[step]
            if transition.interactive_only and not interactive:
                logger.debug(f"Skipping interactive step {step.value}")
            else:
                await self._run_step(step, transition, ctx)
            step = transition.next_step

        logger.info(f"Slurm connect finished: {ctx.alias}")
        return ctx.to_result()

    async def _run_step(self, step: Step, transition: Transition, ctx: ConnectContext) -> None:
        logger.info(f"Step: {step.value}")
        handler = getattr(self, transition.handler)
        try:
            await handler(ctx)
        except PromptCancelled:
            logger.info(f"Connect flow cancelled at {step.value}")
            raise
        except SlurmConnectError as e:
            if transition.policy is FailurePolicy.ABORT:
                logger.error(f"Connect flow aborted at {step.value}: {e}")
                raise ConnectionAborted(step.value, e) from e
            self._warn(ctx, f"{step.value} failed: {e}")
        ctx.completed.append(step)

    def _warn(self, ctx: ConnectContext, message: str) -> None:
        ctx.warnings.append(message)
        if self.prompter is not None:
            self.prompter.warn(message)
        else:
            logger.warning(message)

    def _info(self, message: str) -> None:
        if self.prompter is not None:
            self.prompter.info(message)
        else:
            logger.info(message)

    # =========================================================================
    # Host steps
    # =========================================================================

    async def _resolve_hosts(self, ctx: ConnectContext) -> None:
        resolver = self.resolver if ctx.interactive else HostResolver(self.slurm, self.config)
        ctx.hosts = await resolver.resolve()
        if not ctx.hosts:
            raise DiscoveryError(
                "No login hosts available. Configure login_hosts or login_hosts_command."
            )

    async def _select_host(self, ctx: ConnectContext) -> None:
        if len(ctx.hosts) == 1 or not ctx.interactive:
            ctx.login_host = ctx.hosts[0]
            logger.info(f"Using login host: {ctx.login_host}")
            return

        choices = [Choice(MANUAL_HOST_LABEL, None), *(Choice(h, h) for h in ctx.hosts)]
        picked = await self.prompter.pick("Select login host", choices)
        if picked.value is not None:
            ctx.login_host = picked.value
            return

        manual = (await self.prompter.ask("Login host", hint="enter a login host")).strip()
        if not manual:
            raise PromptCancelled("No login host entered")
        ctx.login_host = manual

    # =========================================================================
    # Resource steps
    # =========================================================================

    async def _query_resources(self, ctx: ConnectContext) -> None:
        host = ctx.login_host

        try:
            info = await self.slurm.fetch_cluster_info(host)
            self.cache.put(host, info)
        except RemoteQueryError as e:
            self._warn(ctx, f"Failed to query cluster info: {e}")
            cached = self.cache.get(host)
            info = cached.info if cached else None
            if cached:
                self._info(f"Using cached cluster info for {host} from {cached.fetched_at}")

        if info is not None:
            ctx.cluster_info = info
            ctx.partitions = info.partition_names
            ctx.cluster_default = info.default_partition

        if not ctx.partitions and self.config.partition_command:
            try:
                ctx.partitions, ctx.cluster_default = await self.slurm.query_partitions(host)
            except RemoteQueryError as e:
                self._warn(ctx, f"Failed to query partitions: {e}")

        try:
            ctx.qos_options = await self.slurm.query_qos(host)
        except RemoteQueryError as e:
            self._warn(ctx, f"Failed to query QoS: {e}")

        try:
            ctx.account_options = await self.slurm.query_accounts(host)
        except RemoteQueryError as e:
            self._warn(ctx, f"Failed to query accounts: {e}")

    async def _select_partition(self, ctx: ConnectContext) -> None:
        ctx.partition = await self.negotiator.select_partition(
            ctx.partitions,
            cluster_default=ctx.cluster_default,
            cluster_info=ctx.cluster_info,
            interactive=ctx.interactive,
        )
        logger.info(f"Partition: {ctx.partition or '(cluster default)'}")

    async def _select_qos(self, ctx: ConnectContext) -> None:
        ctx.qos = await self.negotiator.select_optional("Select QoS (optional)", ctx.qos_options)

    async def _select_account(self, ctx: ConnectContext) -> None:
        ctx.account = await self.negotiator.select_optional("Select account (optional)", ctx.account_options)

    async def _select_sizing(self, ctx: ConnectContext) -> None:
        ctx.sizing = await self.negotiator.select_sizing(interactive=ctx.interactive)

    async def _extra_args(self, ctx: ConnectContext) -> None:
        if self.config.prompt_for_extra_salloc_args:
            ctx.extra_args = await self.negotiator.prompt_extra_args()

    # =========================================================================
    # Overlay steps
    # =========================================================================

    async def _build_launch_command(self, ctx: ConnectContext) -> None:
        ctx.selection = self.negotiator.build_selection(
            ctx.sizing,
            partition=ctx.partition,
            qos=ctx.qos,
            account=ctx.account,
            extra_args=ctx.extra_args,
        )
        ctx.remote_command = self.launch.build(ctx.selection)
        if not ctx.remote_command:
            raise InputValidationError("proxy_command", "RemoteCommand is empty. Check proxy_command.")

    async def _build_alias(self, ctx: ConnectContext) -> None:
        alias = build_default_alias(
            self.config.ssh_host_prefix or DEFAULT_ALIAS_PREFIX,
            ctx.login_host,
            ctx.partition,
            ctx.selection.nodes,
            ctx.selection.cpus_per_task,
        )
        if ctx.interactive:
            answer = await self.prompter.ask(
                "SSH host alias",
                default=alias,
                hint="name shown in your SSH hosts list",
                validate=lambda value: None if value.strip() else "Alias is required.",
            )
            alias = sanitize_alias(answer.strip())
        if not alias:
            raise InputValidationError("alias", "Alias is required.")

        ctx.alias = alias
        ctx.remote_command = self.launch.build(ctx.selection, session_key=alias)

    async def _write_config(self, ctx: ConnectContext) -> None:
        entry = build_host_entry(ctx.alias, ctx.login_host, self.config, ctx.remote_command)
        logger.debug(f"Generated SSH host entry:\n{render_host_entry(entry)}")
        path = self.writer.write(entry)
        ctx.session = ConnectionSession(alias=ctx.alias, overlay_path=str(path))

    async def _ensure_remote_command(self, ctx: ConnectContext) -> None:
        if self.connection.remote_command_enabled():
            return
        if not ctx.interactive:
            self._warn(ctx, f"{REMOTE_COMMAND_DISABLED} Enable it or the generated host will not reach Slurm.")
            return
        picked = await self.prompter.pick(
            REMOTE_COMMAND_DISABLED,
            [Choice("Enable", "enable"), Choice("Ignore", "ignore")],
        )
        if picked.value == "enable":
            self.connection.enable_remote_command()

    async def _apply_and_connect(self, ctx: ConnectContext) -> None:
        await self._ensure_remote_command(ctx)
        previous = self.connection.capture_previous()
        ctx.session = ctx.session.model_copy(update={"previous_config_file": previous})
        self.connection.set_config_file(ctx.session.overlay_path)
        self.connection.refresh_hosts()

        if not self.config.connect_after_create:
            self._info(f'SSH host "{ctx.alias}" created.')
            return

        request = ConnectRequest(
            alias=ctx.alias,
            open_in_new_window=self.config.open_in_new_window,
            remote_workspace_path=self.config.remote_workspace_path or None,
        )
        try:
            ctx.connected = await self.connection.connect(request)
        except ConnectError as e:
            logger.warning(f"Connect failed: {e}")
            ctx.connected = False
        if not ctx.connected:
            self._warn(ctx, f'SSH host "{ctx.alias}" created, but auto-connect failed. Connect to it manually.')

    async def _schedule_restore(self, ctx: ConnectContext) -> None:
        if not self.config.restore_ssh_config_after_connect:
            return
        task = asyncio.create_task(self._delayed_restore(self.config.restore_delay_seconds))
        _pending_restores.add(task)
        task.add_done_callback(_pending_restores.discard)
        ctx.restore_scheduled = True
        logger.info(f"SSH config pointer restore scheduled in {self.config.restore_delay_seconds}s")

    async def _delayed_restore(self, delay: float) -> None:
        await asyncio.sleep(delay)
        try:
            self.connection.restore()
        except SettingsError as e:
            logger.error(f"Failed to restore SSH config pointer: {e}")
