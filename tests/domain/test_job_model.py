from datetime import timedelta

import pytest
from pydantic import ValidationError

from crono.domain.invocation import Invocation, InvocationStatus
from crono.domain.job import Job, OverlapPolicy, Program, RunMode


def test_job_defaults() -> None:
    job = Job(name="x", schedule="every 1m", command="true")
    assert job.run_mode == RunMode.SHELL
    assert job.retry_count == 0
    assert job.overlap == OverlapPolicy.SKIP
    assert job.env == {}
    assert not job.has_timeout


def test_job_is_immutable() -> None:
    job = Job(name="x", schedule="every 1m", command="true")
    with pytest.raises(ValidationError):
        job.command = "false"


@pytest.mark.parametrize(
    "fields",
    [
        {"name": ""},
        {"retry_count": -1},
        {"timeout": timedelta(seconds=-1)},
        {"backoff_min": timedelta(seconds=10), "backoff_max": timedelta(seconds=5)},
        {"overlap": "parallel"},
    ],
)
def test_job_validation(fields) -> None:
    base = {"name": "x", "schedule": "every 1m", "command": "true"}
    base.update(fields)
    with pytest.raises(ValidationError):
        Job(**base)


def test_program_rejects_duplicate_names() -> None:
    job = Job(name="x", schedule="every 1m", command="true")
    with pytest.raises(ValidationError, match="duplicate job name 'x'"):
        Program(jobs=[job, job])


def test_program_get_job() -> None:
    program = Program(jobs=[Job(name="x", schedule="every 1m", command="true")])
    assert program.get_job("x").name == "x"
    with pytest.raises(KeyError):
        program.get_job("y")


def test_invocation_lifecycle() -> None:
    invocation = Invocation(job_name="x")
    assert invocation.id.startswith("inv_")
    assert invocation.status == InvocationStatus.PENDING
    assert invocation.elapsed is None

    invocation.set_status(InvocationStatus.RUNNING)
    assert invocation.start_time is not None
    assert not invocation.finished

    invocation.set_status(InvocationStatus.COMPLETED)
    assert invocation.finished
    assert invocation.elapsed >= timedelta(0)


def test_invocation_set_error() -> None:
    invocation = Invocation(job_name="x")
    invocation.set_status(InvocationStatus.RUNNING)
    invocation.set_error(RuntimeError("boom"))
    assert invocation.status == InvocationStatus.FAILED
    assert invocation.error == "boom"

    with pytest.raises(ValueError, match="Status must be either FAILED or CANCELLED"):
        invocation.set_error(RuntimeError("boom"), InvocationStatus.COMPLETED)
