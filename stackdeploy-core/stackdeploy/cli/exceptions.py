from typing import IO, Any, Optional

import click
from click import ClickException, echo
from click._compat import get_text_stderr


class CLIError(ClickException):
    """
    Ends a ``stackdeploy`` command with exit status 1 and a single red line on stderr. The stack the error
    belongs to is named in the line, unless the message already mentions it.
    """

    def __init__(self, message: str, stack_name: Optional[str] = None):
        super().__init__(message)
        self.stack_name = stack_name

    @classmethod
    def from_exception(cls, e: Exception) -> "CLIError":
        # stack operation errors carry the name of the failed stack
        return cls(str(e), stack_name=getattr(e, "stack_name", None))

    def format_message(self) -> str:
        if self.stack_name and self.stack_name not in self.message:
            return click.style(f"❌ Error ({self.stack_name}): {self.message}", fg="red")
        return click.style(f"❌ Error: {self.message}", fg="red")

    def show(self, file: Optional[IO[Any]] = None) -> None:
        echo(self.format_message(), file=file or get_text_stderr())
