"""Login host resolution."""

import logging
from typing import Optional

from slurm_connect.config import ConnectConfig
from slurm_connect.exceptions import RemoteQueryError
from slurm_connect.prompts import Prompter
from slurm_connect.slurm_commands import SlurmCommands

logger = logging.getLogger(__name__)


class HostResolver:
    """Determines the candidate login hosts.

    Order of precedence:
    - the static ``login_hosts`` list
    - hosts printed by ``login_hosts_command`` on the query host
    - a single host typed in by the user (interactive only)
    """

    def __init__(
        self,
        slurm: SlurmCommands,
        config: ConnectConfig,
        prompter: Optional[Prompter] = None,
    ):
        self.slurm = slurm
        self.config = config
        self.prompter = prompter

    async def _discover(self) -> list[str]:
        query_host = self.config.login_hosts_query_host
        if not query_host and self.prompter is not None:
            query_host = (await self.prompter.ask(
                "Login host for discovery",
                hint="host to run the login hosts command on",
            )).strip()
        if not query_host:
            logger.warning("No query host for login host discovery")
            return []

        try:
            hosts = await self.slurm.discover_login_hosts(query_host)
        except RemoteQueryError as e:
            message = f"Failed to query login hosts: {e}"
            if self.prompter is not None:
                self.prompter.warn(message)
            else:
                logger.warning(message)
            return []

        logger.info(f"Discovered {len(hosts)} login host(s) via {query_host}")
        return hosts

    async def resolve(self) -> list[str]:
        """Return unique login hosts, possibly empty."""
        hosts = list(dict.fromkeys(self.config.login_hosts))

        if not hosts and self.config.login_hosts_command:
            hosts = list(dict.fromkeys(await self._discover()))

        if not hosts and self.prompter is not None:
            manual = (await self.prompter.ask("Login host", hint="enter a login host")).strip()
            if manual:
                hosts = [manual]

        logger.info(f"Login hosts resolved: {', '.join(hosts) or '(none)'}")
        return hosts
