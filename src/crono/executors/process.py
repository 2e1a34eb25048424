import asyncio
import logging
import os
import shlex
import signal
import time
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Dict, Mapping, Optional, Tuple

from crono.config import get_settings
from crono.domain.job import RunMode
from crono.errors import CommandFailed, CommandSpawnError, GuardTimeoutExpired
from crono.executors.protocol import CommandExecutor, CommandResult

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 64 * 1024


class SubprocessExecutor(CommandExecutor, ABC):
    """
    Base class for executors that run commands as child processes.

    Every run is bounded by a guard timeout that kills the process even when
    the caller never cancels it. Only the last ``output_limit`` bytes of
    stdout and stderr are kept.
    """

    def __init__(self, guard_timeout: Optional[timedelta] = None, output_limit: Optional[int] = None):
        settings = get_settings()
        if guard_timeout is None:
            guard_timeout = settings.guard_timeout
        if output_limit is None:
            output_limit = settings.output_limit
        self.guard_timeout: timedelta = guard_timeout
        self.output_limit: int = output_limit

    @abstractmethod
    async def _spawn(self, command: str, env: Dict[str, str]) -> asyncio.subprocess.Process:
        ...

    async def run(self, command: str, env: Optional[Mapping[str, str]] = None) -> CommandResult:
        child_env = dict(os.environ)
        child_env.update(env or {})

        started = time.monotonic()
        try:
            process = await self._spawn(command, child_env)
        except (OSError, ValueError) as e:
            raise CommandSpawnError(f"cannot start {command!r}: {e}") from e
        logger.debug(f"Started pid {process.pid}: {command}")

        guard = self.guard_timeout.total_seconds()
        try:
            stdout, stderr = await asyncio.wait_for(_collect(process, self.output_limit), timeout=guard)
        except asyncio.TimeoutError:
            logger.warning(f"Guard timeout after {guard:g}s, killing pid {process.pid}: {command}")
            await _kill(process)
            raise GuardTimeoutExpired(guard)
        except asyncio.CancelledError:
            logger.debug(f"Run cancelled, killing pid {process.pid}: {command}")
            await _kill(process)
            raise

        duration = timedelta(seconds=time.monotonic() - started)
        stdout_text = stdout.decode("utf-8", errors="replace").strip()
        stderr_text = stderr.decode("utf-8", errors="replace").strip()

        if process.returncode != 0:
            raise CommandFailed(process.returncode, stderr_text)

        return CommandResult(
            returncode=process.returncode,
            stdout=stdout_text,
            stderr=stderr_text,
            duration=duration,
        )


class ShellExecutor(SubprocessExecutor):
    """
    Runs command text through the platform shell (``/bin/sh -c`` or ``cmd /C``).
    """

    @staticmethod
    def supported_mode() -> RunMode:
        return RunMode.SHELL

    async def _spawn(self, command: str, env: Dict[str, str]) -> asyncio.subprocess.Process:
        return await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=env,
            start_new_session=os.name == "posix",
        )


class ExecExecutor(SubprocessExecutor):
    """
    Splits command text with shell-like quoting and runs the program directly.
    """

    @staticmethod
    def supported_mode() -> RunMode:
        return RunMode.EXEC

    async def _spawn(self, command: str, env: Dict[str, str]) -> asyncio.subprocess.Process:
        argv = shlex.split(command)
        if not argv:
            raise ValueError("empty command")
        return await asyncio.create_subprocess_exec(
            *argv,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=env,
            start_new_session=os.name == "posix",
        )


async def _kill(process: asyncio.subprocess.Process) -> None:
    if process.returncode is None:
        try:
            if os.name == "posix":
                # child leads its own process group
                os.killpg(process.pid, signal.SIGKILL)
            else:
                process.kill()
        except ProcessLookupError:
            pass
    await process.wait()


async def _read_tail(stream: Optional[asyncio.StreamReader], limit: int) -> bytes:
    if stream is None:
        return b""
    tail = bytearray()
    while True:
        chunk = await stream.read(_CHUNK_SIZE)
        if not chunk:
            return bytes(tail)
        tail += chunk
        if len(tail) > limit:
            del tail[:len(tail) - limit]


async def _collect(process: asyncio.subprocess.Process, limit: int) -> Tuple[bytes, bytes]:
    # pipes are drained as they fill, keeping only the tail of each
    stdout, stderr, _ = await asyncio.gather(
        _read_tail(process.stdout, limit),
        _read_tail(process.stderr, limit),
        process.wait(),
    )
    return stdout, stderr
