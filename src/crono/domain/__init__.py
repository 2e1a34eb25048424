from .job import Job, Program, OverlapPolicy, RunMode
from .invocation import Invocation, InvocationStatus

__all__ = ["Job", "Program", "OverlapPolicy", "RunMode", "Invocation", "InvocationStatus"]
