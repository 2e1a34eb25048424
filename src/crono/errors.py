from typing import Optional


class CronoError(Exception):
    """Base class for all crono errors."""
    pass


class ParseError(CronoError):
    """Raised when a schedule file cannot be parsed."""

    def __init__(self, message: str, line: Optional[int] = None):
        self.line = line
        if line is not None:
            message = f"line {line}: {message}"
        super().__init__(message)


class ScheduleError(CronoError, ValueError):
    """Raised when a schedule expression is malformed or unsupported."""
    pass


class PlanningError(CronoError):
    """Raised when a job's first occurrence cannot be computed at startup."""

    def __init__(self, job_name: str, cause: Exception):
        self.job_name = job_name
        self.cause = cause
        super().__init__(f"job {job_name!r}: {cause}")


class ExecutionError(CronoError):
    """Raised when a command invocation does not succeed."""
    pass


class CommandFailed(ExecutionError):
    """The command ran and exited with a non-zero status."""

    def __init__(self, returncode: int, stderr: str = ""):
        self.returncode = returncode
        self.stderr = stderr
        message = f"exit status {returncode}"
        if stderr:
            message += f": {stderr}"
        super().__init__(message)


class CommandSpawnError(ExecutionError):
    """The command could not be started."""
    pass


class GuardTimeoutExpired(ExecutionError):
    """The command exceeded the executor's safety ceiling and was killed."""

    def __init__(self, seconds: float):
        self.seconds = seconds
        super().__init__(f"guard timeout after {seconds:g}s")


class CommandTimeout(ExecutionError):
    """A single attempt exceeded the job's timeout and was cancelled."""

    def __init__(self, seconds: float):
        self.seconds = seconds
        super().__init__(f"timed out after {seconds:g}s")
