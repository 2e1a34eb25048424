from datetime import timedelta
from pathlib import Path

import pytest

from crono.domain.job import OverlapPolicy, RunMode
from crono.dsl import parse, parse_file
from crono.errors import ParseError

EXAMPLE = '''
# nightly backup
job "backup" {
  schedule: every day at 02:00 Europe/Paris
  run: sh "tar czf /backups/$(date +%F).tgz /srv"
  retry: 3 with backoff 5s..1m
  timeout: 30m
  jitter: ±10s
  overlap: queue
  env: { RETENTION: "7", TARGET: "s3://bucket/backups" }
}

job "heartbeat" {
  schedule: every 30s
  run: exec "curl -fsS https://example.org/ping"
}
'''


def test_parse_example() -> None:
    program = parse(EXAMPLE)
    assert len(program) == 2

    backup = program.get_job("backup")
    assert backup.schedule == "every day at 02:00 Europe/Paris"
    assert backup.run_mode == RunMode.SHELL
    assert backup.command == "tar czf /backups/$(date +%F).tgz /srv"
    assert backup.retry_count == 3
    assert backup.backoff_min == timedelta(seconds=5)
    assert backup.backoff_max == timedelta(minutes=1)
    assert backup.timeout == timedelta(minutes=30)
    assert backup.jitter == timedelta(seconds=10)
    assert backup.overlap == OverlapPolicy.QUEUE
    assert backup.env == {"RETENTION": "7", "TARGET": "s3://bucket/backups"}

    heartbeat = program.get_job("heartbeat")
    assert heartbeat.run_mode == RunMode.EXEC
    assert heartbeat.command == "curl -fsS https://example.org/ping"
    assert heartbeat.retry_count == 0
    assert heartbeat.timeout == timedelta(0)
    assert heartbeat.overlap == OverlapPolicy.SKIP
    assert heartbeat.env == {}


def test_jobs_keep_file_order() -> None:
    text = "\n".join(
        f'job "{name}" {{\n  schedule: every 1m\n  run: sh "true"\n}}' for name in ("c", "a", "b")
    )
    assert [job.name for job in parse(text).jobs] == ["c", "a", "b"]


def test_empty_file() -> None:
    assert len(parse("\n# nothing here\n\n")) == 0


def test_retry_without_backoff() -> None:
    program = parse('job "x" {\n schedule: every 1m\n run: sh "true"\n retry: 2\n}')
    job = program.get_job("x")
    assert job.retry_count == 2
    assert job.backoff_min == timedelta(0)
    assert job.backoff_max == timedelta(0)


def test_env_with_bare_and_quoted_values() -> None:
    program = parse('job "x" {\n schedule: every 1m\n run: sh "env"\n env: { A: 1, "B C": "x, y", D: "" }\n}')
    assert program.get_job("x").env == {"A": "1", "B C": "x, y", "D": ""}


def test_env_empty_block() -> None:
    program = parse('job "x" {\n schedule: every 1m\n run: sh "env"\n env: {}\n}')
    assert program.get_job("x").env == {}


def test_schedule_is_not_validated_by_parser() -> None:
    program = parse('job "x" {\n schedule: whenever\n run: sh "true"\n}')
    assert program.get_job("x").schedule == "whenever"


@pytest.mark.parametrize(
    "text, line, message",
    [
        ('jobs "x" {', 1, "expected 'job \"name\" {'"),
        ('job "x" {\n  colour: blue\n}', 2, "unknown key 'colour'"),
        ('job "x" {\n  this is not a key\n}', 2, "invalid key:value"),
        ('job "x" {\n  run: bash "true"\n}', 2, "unknown run"),
        ('job "x" {\n  run: sh true\n}', 2, 'run: sh "..."'),
        ('job "x" {\n  retry: many\n}', 2, "retry:"),
        ('job "x" {\n  retry: 3 with backoff 1m..5s\n}', 2, "backoff min > max"),
        ('job "x" {\n  timeout: soon\n}', 2, "timeout: invalid duration"),
        ('job "x" {\n  overlap: parallel\n}', 2, "overlap: 'skip' | 'queue' | 'cancel-prev'"),
        ('job "x" {\n  env: RETENTION=7\n}', 2, "env:"),
        ('job "x" {\n  run: sh "true"\n}', 3, "missing 'schedule'"),
        ('job "x" {\n  schedule: every 1m\n}', 3, "missing 'run'"),
    ],
)
def test_parse_errors(text: str, line: int, message: str) -> None:
    with pytest.raises(ParseError) as exc_info:
        parse(text)
    assert exc_info.value.line == line
    assert str(exc_info.value).startswith(f"line {line}: ")
    assert message in str(exc_info.value)


def test_duplicate_job_name() -> None:
    text = 'job "x" {\n schedule: every 1m\n run: sh "a"\n}\njob "x" {\n schedule: every 1m\n run: sh "b"\n}'
    with pytest.raises(ParseError, match=r"line 5: duplicate job name 'x' \(first declared on line 1\)"):
        parse(text)


def test_unterminated_block() -> None:
    with pytest.raises(ParseError, match="end of file inside job block 'x' opened on line 2") as exc_info:
        parse('\njob "x" {\n schedule: every 1m\n')
    assert exc_info.value.line is None


def test_parse_file(tmp_path: Path) -> None:
    path = tmp_path / "jobs.crn"
    path.write_text(EXAMPLE, encoding="utf-8")
    assert [job.name for job in parse_file(path).jobs] == ["backup", "heartbeat"]


def test_parse_file_missing(tmp_path: Path) -> None:
    with pytest.raises(OSError):
        parse_file(tmp_path / "missing.crn")


def test_parse_file_not_utf8(tmp_path: Path) -> None:
    path = tmp_path / "latin1.crn"
    path.write_bytes('job "caf\xe9" {\n}\n'.encode("latin-1"))
    with pytest.raises(ParseError, match="not a UTF-8 text file"):
        parse_file(path)
