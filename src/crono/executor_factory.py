from typing import Dict, List, Type, Union

from crono.domain.job import RunMode
from crono.executors.process import ExecExecutor, ShellExecutor
from crono.executors.protocol import CommandExecutor


class ExecutorFactory:
    """
    Factory class mapping run modes to command executors.
    """
    def __init__(self):
        self._executors: Dict[RunMode, Type[CommandExecutor]] = {}
        self._instances: Dict[RunMode, CommandExecutor] = {}

    @classmethod
    def default(cls) -> "ExecutorFactory":
        """
        Create a factory with the built-in ``sh`` and ``exec`` executors registered.
        """
        factory = cls()
        factory.register(ShellExecutor)
        factory.register(ExecExecutor)
        return factory

    @property
    def supported_modes(self) -> List[RunMode]:
        return list(self._executors)

    def register(self, executor_class: Type[CommandExecutor]) -> None:
        """
        Register a new executor class with its supported run mode.

        Args:
            executor_class (Type[CommandExecutor]): The executor class to register.

        Raises:
            ValueError: If the run mode is unknown or already has an executor.
        """
        declared = executor_class.supported_mode()
        try:
            mode = RunMode(declared)
        except ValueError:
            raise ValueError(f"Run mode '{declared}' is not supported")
        if mode in self._executors:
            raise ValueError(f"An executor for run mode '{mode.value}' is already registered")
        self._executors[mode] = executor_class

    def get_executor(self, mode: Union[RunMode, str]) -> CommandExecutor:
        """
        Get the executor instance for a run mode.

        Executors are created on first use and shared afterwards.

        Raises:
            KeyError: If no executor is registered for the run mode.
        """
        try:
            mode = RunMode(mode)
        except ValueError:
            raise KeyError(f"No executor registered for run mode '{mode}'")
        if mode not in self._executors:
            raise KeyError(f"No executor registered for run mode '{mode.value}'")
        if mode not in self._instances:
            self._instances[mode] = self._executors[mode]()
        return self._instances[mode]
