from .protocol import CommandExecutor, CommandResult
from .process import ExecExecutor, ShellExecutor, SubprocessExecutor

__all__ = ["CommandExecutor", "CommandResult", "ExecExecutor", "ShellExecutor", "SubprocessExecutor"]
