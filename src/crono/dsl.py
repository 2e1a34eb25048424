"""
Parser for ``.crn`` schedule files.

A file is a sequence of job blocks::

    # nightly backup
    job "backup" {
      schedule: every day at 02:00 Europe/Paris
      run: sh "tar czf /backups/$(date +%F).tgz /srv"
      retry: 3 with backoff 5s..1m
      timeout: 30m
      jitter: ±10s
      overlap: skip
      env: { RETENTION: "7", TARGET: "s3://bucket/backups" }
    }

Blank lines and lines starting with ``#`` are ignored.
"""

import logging
import re
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import ValidationError

from crono.domain.job import Job, OverlapPolicy, Program, RunMode
from crono.errors import ParseError, ScheduleError
from crono.schedule import parse_duration

logger = logging.getLogger(__name__)

_JOB_START = re.compile(r'job\s+"([^"]+)"\s*\{')
_JOB_END = re.compile(r"\}")
_KEY_VALUE = re.compile(r"([a-zA-Z_]+)\s*:\s*(.+?)")
_QUOTED = re.compile(r'"(.*)"')
_RUN = re.compile(r"(sh|exec)\s+(.+)")
_RETRY = re.compile(r"(\d+)(?:\s+with\s+backoff\s+(\S+)\.\.(\S+))?")
_ENV_ENTRY = re.compile(r'\s*(?P<key>"[^"]*"|[^\s:,"]+)\s*:\s*(?P<value>"[^"]*"|[^,"]*?)\s*(?:,|$)')


def _duration(value: str, key: str, lineno: int) -> timedelta:
    try:
        return parse_duration(value)
    except ScheduleError as e:
        raise ParseError(f"{key}: {e}", lineno) from e


def _parse_run(value: str, lineno: int) -> Tuple[RunMode, str]:
    m = _RUN.fullmatch(value)
    if not m:
        raise ParseError("unknown run (use 'sh \"...\"' or 'exec \"...\"')", lineno)
    mode, rest = m.group(1), m.group(2).strip()
    quoted = _QUOTED.fullmatch(rest)
    if not quoted:
        raise ParseError(f'run: {mode} "..."', lineno)
    return RunMode(mode), quoted.group(1)


def _parse_retry(value: str, lineno: int) -> Dict[str, Any]:
    m = _RETRY.fullmatch(value)
    if not m:
        raise ParseError("retry: '<N>' or '<N> with backoff <min>..<max>'", lineno)
    fields: Dict[str, Any] = {"retry_count": int(m.group(1))}
    if m.group(2):
        low = _duration(m.group(2), "retry", lineno)
        high = _duration(m.group(3), "retry", lineno)
        if low > high:
            raise ParseError("retry: backoff min > max", lineno)
        fields["backoff_min"] = low
        fields["backoff_max"] = high
    return fields


def _parse_env(value: str, lineno: int) -> Dict[str, str]:
    if not (value.startswith("{") and value.endswith("}")):
        raise ParseError('env: { KEY: "VALUE" }', lineno)
    content = value[1:-1].strip()
    env: Dict[str, str] = {}
    pos = 0
    while pos < len(content):
        m = _ENV_ENTRY.match(content, pos)
        if not m or m.end() == pos:
            raise ParseError(f"env: invalid entry near {content[pos:]!r}", lineno)
        key = m.group("key").strip('"')
        if not key:
            raise ParseError("env: empty variable name", lineno)
        env[key] = m.group("value").strip('"')
        pos = m.end()
    return env


def _parse_overlap(value: str, lineno: int) -> OverlapPolicy:
    try:
        return OverlapPolicy(value)
    except ValueError:
        raise ParseError("overlap: 'skip' | 'queue' | 'cancel-prev'", lineno)


def _apply(fields: Dict[str, Any], key: str, value: str, lineno: int) -> None:
    if key == "schedule":
        fields["schedule"] = value
    elif key == "run":
        fields["run_mode"], fields["command"] = _parse_run(value, lineno)
    elif key == "retry":
        fields.update(_parse_retry(value, lineno))
    elif key == "timeout":
        fields["timeout"] = _duration(value, key, lineno)
    elif key == "jitter":
        fields["jitter"] = _duration(value.lstrip("±"), key, lineno)
    elif key == "overlap":
        fields["overlap"] = _parse_overlap(value, lineno)
    elif key == "env":
        fields["env"] = _parse_env(value, lineno)
    else:
        raise ParseError(f"unknown key '{key}'", lineno)


def _build_job(fields: Dict[str, Any], lineno: int) -> Job:
    for required in ("schedule", "command"):
        if required not in fields:
            missing = "run" if required == "command" else required
            raise ParseError(f"job '{fields['name']}': missing '{missing}'", lineno)
    try:
        return Job(**fields)
    except ValidationError as e:
        raise ParseError(f"job '{fields['name']}': {e.errors()[0]['msg']}", lineno) from e


def parse(text: str) -> Program:
    """
    Parse the text of a schedule file.

    Args:
        text (str): File contents.

    Returns:
        Program: The declared jobs, in file order.

    Raises:
        ParseError: On the first syntax or validation error, with its line number.
    """
    jobs: List[Job] = []
    names: Dict[str, int] = {}
    current: Optional[Dict[str, Any]] = None
    start_line = 0

    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue

        if current is None:
            m = _JOB_START.fullmatch(line)
            if not m:
                raise ParseError("expected 'job \"name\" {'", lineno)
            name = m.group(1)
            if name in names:
                raise ParseError(f"duplicate job name '{name}' (first declared on line {names[name]})", lineno)
            names[name] = lineno
            current = {"name": name}
            start_line = lineno
            continue

        if _JOB_END.fullmatch(line):
            jobs.append(_build_job(current, lineno))
            current = None
            continue

        kv = _KEY_VALUE.fullmatch(line)
        if not kv:
            raise ParseError("invalid key:value", lineno)
        _apply(current, kv.group(1), kv.group(2).strip(), lineno)

    if current is not None:
        raise ParseError(f"end of file inside job block '{current['name']}' opened on line {start_line}")

    logger.debug(f"Parsed {len(jobs)} job(s)")
    return Program(jobs=jobs)


def parse_file(path: Union[str, Path]) -> Program:
    """
    Read and parse a schedule file.

    Raises:
        OSError: If the file cannot be read.
        ParseError: If its contents are invalid or not UTF-8 text.
    """
    try:
        text = Path(path).read_text(encoding="utf-8")
    except UnicodeDecodeError as e:
        raise ParseError(f"not a UTF-8 text file: {e}") from e
    return parse(text)
