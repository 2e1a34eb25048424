"""
crono - a single-node job scheduler

This module defines the core concepts and components of the scheduler.

Core Concepts:

Job:
    A Job is a declared unit of work: a command, a recurrence rule, and the
    retry, timeout and overlap policies applied when it runs. Jobs are read
    from a .crn schedule file and never change while the scheduler runs.

Invocation:
    An Invocation represents a single dispatched occurrence of a Job,
    including every retry attempt made for that occurrence.

Engine:
    The Engine plans the next occurrence of every Job, waits for the
    soonest one, and dispatches it while keeping at most one Invocation
    per Job in flight.

Relationships:
    - A Job can have many Invocations over time, but only one at a time.
"""

from crono.domain import Invocation, InvocationStatus, Job, OverlapPolicy, Program, RunMode
from crono.dsl import parse, parse_file
from crono.engine import Engine
from crono.schedule import explain, next_run, upcoming

__version__ = "0.1.0"
__all__ = [
    "Engine",
    "Invocation",
    "InvocationStatus",
    "Job",
    "OverlapPolicy",
    "Program",
    "RunMode",
    "explain",
    "next_run",
    "parse",
    "parse_file",
    "upcoming",
]
