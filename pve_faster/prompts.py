"""Interactive confirmations and free-text input."""

from __future__ import annotations

import logging
from typing import Optional

from rich.console import Console
from rich.prompt import Confirm, Prompt

logger = logging.getLogger(__name__)


class Prompter:
    """Ask the operator; with ``assume_yes`` every question takes its default answer.

    Confirmations answer "yes" in that mode.  End of input (a closed stdin)
    counts as "no" for confirmations and as the default for text input.
    """

    def __init__(self, assume_yes: bool = False, console: Optional[Console] = None) -> None:
        self.assume_yes = assume_yes
        self.console = console or Console()

    def confirm(self, question: str, default: bool = False) -> bool:
        if self.assume_yes:
            logger.debug("Auto-confirmed: %s", question)
            return True
        try:
            return Confirm.ask(question, default=default, console=self.console)
        except EOFError:
            self.console.print()
            return False

    def ask(self, question: str, default: str = "") -> str:
        if self.assume_yes:
            return default
        try:
            answer = Prompt.ask(question, default=default, console=self.console)
        except EOFError:
            self.console.print()
            return default
        return answer if answer is not None else default

