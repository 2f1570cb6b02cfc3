"""Interactive prompts used by the connect flow."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from slurm_connect.exceptions import PromptCancelled

logger = logging.getLogger(__name__)

# Returns an error message for invalid input, or None when valid
Validator = Callable[[str], Optional[str]]


@dataclass(frozen=True)
class Choice:
    """One entry of a pick list; ``value`` None marks a sentinel entry."""
    label: str
    value: Optional[str] = None
    description: str = ""


class Prompter:
    """Interface for asking the user questions.

    Implementations raise PromptCancelled when the user dismisses a prompt.
    """

    async def pick(self, title: str, choices: list[Choice]) -> Choice:
        """Ask the user to pick one of ``choices``."""
        raise NotImplementedError

    async def ask(
        self,
        title: str,
        default: str = "",
        hint: str = "",
        validate: Optional[Validator] = None,
    ) -> str:
        """Ask for free text, re-asking until ``validate`` accepts it."""
        raise NotImplementedError

    def info(self, message: str) -> None:
        logger.info(message)

    def warn(self, message: str) -> None:
        logger.warning(message)


class ConsolePrompter(Prompter):
    """Prompter reading answers from the terminal.

    Typing ``q`` or sending EOF cancels the current prompt.
    """

    def __init__(self, input_func: Callable[[str], str] = input, output_func: Callable[[str], None] = print):
        self._input = input_func
        self._output = output_func

    async def _read(self, prompt: str) -> str:
        try:
            answer = await asyncio.to_thread(self._input, prompt)
        except (EOFError, KeyboardInterrupt):
            raise PromptCancelled("Prompt cancelled")
        if answer.strip().lower() == "q":
            raise PromptCancelled("Prompt cancelled")
        return answer

    async def pick(self, title: str, choices: list[Choice]) -> Choice:
        if not choices:
            raise PromptCancelled(f"Nothing to choose for: {title}")
        self._output(title)
        for index, choice in enumerate(choices, start=1):
            suffix = f" ({choice.description})" if choice.description else ""
            self._output(f"  {index}) {choice.label}{suffix}")
        while True:
            answer = (await self._read(f"Select [1-{len(choices)}, q to cancel]: ")).strip()
            if answer.isdecimal() and 1 <= int(answer) <= len(choices):
                return choices[int(answer) - 1]
            for choice in choices:
                if answer and answer == choice.label:
                    return choice
            self._output("Invalid selection.")

    async def ask(
        self,
        title: str,
        default: str = "",
        hint: str = "",
        validate: Optional[Validator] = None,
    ) -> str:
        prompt = title
        if hint:
            prompt += f" ({hint})"
        if default:
            prompt += f" [{default}]"
        prompt += ": "
        while True:
            answer = (await self._read(prompt)).strip() or default
            error = validate(answer) if validate else None
            if error is None:
                return answer
            self._output(error)

    def info(self, message: str) -> None:
        super().info(message)
        self._output(message)

    def warn(self, message: str) -> None:
        super().warn(message)
        self._output(f"Warning: {message}")
