"""Running a suggestion: refuse destructive commands, type the rest."""

import logging
import re
from typing import Optional

from linux_helper.models import Suggestion

logger = logging.getLogger(__name__)

DANGEROUS_PATTERNS = [
    re.compile(r"rm\s+-rf\s+/"),
    re.compile(r"rm\s+-rf\s+\*"),
    re.compile(r"rm\s+-rf\s+~/"),
    re.compile(r"chmod\s+777\s+/"),
    re.compile(r"chown\s+.*\s+/"),
    re.compile(r"dd\s+if=.*of=/dev"),
    re.compile(r"mkfs\."),
    re.compile(r"fdisk"),
    re.compile(r":\(\)\{\s*:\|:&\s*\};:"),  # fork bomb
]


def is_dangerous_command(command: str) -> bool:
    return any(p.search(command) for p in DANGEROUS_PATTERNS)


class SuggestionExecutor:
    """Types the chosen suggestion's command with a CommandTyper.

    The typer is created on first use so that importing this module,
    and building a popup that never executes anything, does not need an
    X display for pynput.
    """

    def __init__(self, auto_submit: bool = False, typing_delay: float = 0.005, typer=None):
        self.auto_submit = auto_submit
        self.typing_delay = typing_delay
        self._typer = typer

    def _get_typer(self):
        if self._typer is None:
            from linux_helper.keyboard import CommandTyper
            self._typer = CommandTyper(
                char_delay=self.typing_delay, press_enter=self.auto_submit,
            )
        return self._typer

    def refusal_reason(self, suggestion: Suggestion) -> Optional[str]:
        """Why this suggestion must not run, or None if it may."""
        command = suggestion.command.strip()
        if not command:
            return "Suggestion has no command"
        if is_dangerous_command(command):
            logger.warning("Refusing dangerous command: %s", command)
            return f"Refused potentially destructive command: {command}"
        return None

    def type_command(self, suggestion: Suggestion) -> None:
        logger.info("Executing suggestion: %s", suggestion.command.strip())
        self._get_typer().type_command(suggestion.command)

    def execute(self, suggestion: Suggestion) -> Optional[str]:
        """Type the suggestion's command. Returns an error message, or None on success."""
        reason = self.refusal_reason(suggestion)
        if reason:
            return reason
        self.type_command(suggestion)
        return None
