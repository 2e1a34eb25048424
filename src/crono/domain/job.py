from datetime import timedelta
from enum import Enum
from typing import Dict, List

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class OverlapPolicy(str, Enum):
    SKIP = "skip"
    QUEUE = "queue"
    CANCEL_PREV = "cancel-prev"


class RunMode(str, Enum):
    SHELL = "sh"
    EXEC = "exec"


class Job(BaseModel):
    """
    A declared job: what to run, when, and under which retry and overlap policy.
    """
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, description="Job name, unique within a program")
    schedule: str = Field(..., description="Recurrence rule text, e.g. 'every weekday at 08:30 Europe/Paris'")
    command: str = Field(..., description="Command text to execute")
    run_mode: RunMode = Field(RunMode.SHELL, description="How the command text is executed")
    retry_count: int = Field(0, ge=0, description="Maximum retry attempts after the first failure")
    backoff_min: timedelta = Field(timedelta(0), description="Lower bound of the retry backoff")
    backoff_max: timedelta = Field(timedelta(0), description="Upper bound of the retry backoff")
    timeout: timedelta = Field(timedelta(0), description="Per-attempt timeout, zero disables it")
    jitter: timedelta = Field(timedelta(0), description="Extra random delay added to each retry backoff")
    overlap: OverlapPolicy = Field(OverlapPolicy.SKIP, description="Behavior when an occurrence fires while the job is running")
    env: Dict[str, str] = Field(default_factory=dict, description="Variables injected into the command environment")

    @field_validator("backoff_min", "backoff_max", "timeout", "jitter")
    def check_non_negative(cls, v: timedelta) -> timedelta:
        if v < timedelta(0):
            raise ValueError("duration must not be negative")
        return v

    @model_validator(mode="after")
    def check_backoff_bounds(self) -> "Job":
        if self.backoff_min > self.backoff_max:
            raise ValueError("backoff_min must not exceed backoff_max")
        return self

    @property
    def has_timeout(self) -> bool:
        return self.timeout > timedelta(0)


class Program(BaseModel):
    """
    An ordered collection of jobs read from one schedule file.
    """
    jobs: List[Job] = Field(default_factory=list)

    @field_validator("jobs")
    def check_unique_names(cls, v: List[Job]) -> List[Job]:
        seen = set()
        for job in v:
            if job.name in seen:
                raise ValueError(f"duplicate job name '{job.name}'")
            seen.add(job.name)
        return v

    def get_job(self, name: str) -> Job:
        for job in self.jobs:
            if job.name == name:
                return job
        raise KeyError(name)

    def __len__(self) -> int:
        return len(self.jobs)
