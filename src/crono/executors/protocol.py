from datetime import timedelta
from typing import Mapping, Optional, Protocol

from pydantic import BaseModel, Field

from crono.domain.job import RunMode


class CommandResult(BaseModel):
    """
    Outcome of a command that ran to completion with a zero exit status.
    """
    returncode: int = 0
    stdout: str = ""
    stderr: str = ""
    duration: timedelta = Field(timedelta(0), description="Wall time spent running the command")


class CommandExecutor(Protocol):
    """
    Protocol class for command executors.

    Implementations signal failure by raising:

    - ``CommandFailed`` when the command exits with a non-zero status,
    - ``CommandSpawnError`` when the command cannot be started,
    - ``GuardTimeoutExpired`` when the safety ceiling kills the command.

    Cancelling the awaiting task terminates the underlying process and
    re-raises ``asyncio.CancelledError``.
    """

    async def run(self, command: str, env: Optional[Mapping[str, str]] = None) -> CommandResult:
        """
        Run the given command to completion.

        Args:
            command (str): The command text.
            env (Optional[Mapping[str, str]]): Variables applied over the inherited environment.
        """
        ...

    @staticmethod
    def supported_mode() -> RunMode:
        """
        Return the run mode this executor handles.
        """
        ...
