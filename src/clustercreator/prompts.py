"""Interactive confirmations."""

from rich.console import Console
from rich.prompt import Confirm, Prompt


class Prompter:
    """Asks the operator before anything destructive happens."""

    def __init__(self, console: Console = None) -> None:
        self.console = console or Console()

    def confirm(self, question: str) -> bool:
        """y/N question; anything but yes is a no."""
        return Confirm.ask(question, default=False, console=self.console)

    def ask(self, question: str) -> str:
        return Prompt.ask(question, default="", show_default=False, console=self.console)

    def phrase(self, question: str, expected: str) -> bool:
        """True only if the operator types ``expected`` exactly."""
        return self.ask(question) == expected
