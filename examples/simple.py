import asyncio
from typing import Mapping, Optional

from crono import Engine, RunMode, parse
from crono.executor_factory import ExecutorFactory
from crono.executors import CommandExecutor, CommandResult, ExecExecutor

PROGRAM = '''
job "tick" {
  schedule: every 2s
  run: sh "echo tick"
}

job "slow" {
  schedule: every 3s
  run: exec "sleep 5"
  overlap: cancel-prev
}
'''


class PrintExecutor(CommandExecutor):
    @staticmethod
    def supported_mode() -> RunMode:
        return RunMode.SHELL

    async def run(self, command: str, env: Optional[Mapping[str, str]] = None) -> CommandResult:
        print(f"Would run: {command}")
        return CommandResult()


# Shell commands are printed, exec commands really run
executor_factory = ExecutorFactory()
executor_factory.register(PrintExecutor)
executor_factory.register(ExecExecutor)
engine = Engine(parse(PROGRAM), executor_factory)


async def main():
    await engine.start()
    print(f"Next runs: {engine.next_fire_times()}")
    await asyncio.sleep(10)
    await engine.stop()
    for name in ("tick", "slow"):
        for invocation in engine.list_recent_invocations(name, limit=3):
            print(f"{name}: {invocation.status.value} after {invocation.attempts} attempt(s)")

if __name__ == "__main__":
    asyncio.run(main())
