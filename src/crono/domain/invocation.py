import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class InvocationStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class Invocation(BaseModel):
    """
    Represents one dispatched occurrence of a job, including all of its retries.
    """
    id: str = Field(default_factory=lambda: f"inv_{uuid.uuid4().hex[:8]}", description="Unique invocation identifier")
    job_name: str = Field(..., description="Name of the job this invocation belongs to")
    status: InvocationStatus = InvocationStatus.PENDING
    attempts: int = 0
    error: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None

    @property
    def elapsed(self) -> Optional[timedelta]:
        if self.start_time is None or self.end_time is None:
            return None
        return self.end_time - self.start_time

    @property
    def finished(self) -> bool:
        return self.status in (InvocationStatus.COMPLETED, InvocationStatus.FAILED, InvocationStatus.CANCELLED)

    def set_status(self, status: InvocationStatus):
        """
        Update the status of the invocation.
        """
        self.status = status
        if status == InvocationStatus.RUNNING:
            self.start_time = datetime.now(timezone.utc)
        elif status in [InvocationStatus.COMPLETED, InvocationStatus.FAILED, InvocationStatus.CANCELLED]:
            self.end_time = datetime.now(timezone.utc)

    def set_error(self, error: BaseException, status: InvocationStatus = InvocationStatus.FAILED):
        """
        Record the last error and close the invocation.
        """
        if status not in [InvocationStatus.FAILED, InvocationStatus.CANCELLED]:
            raise ValueError("Status must be either FAILED or CANCELLED")
        self.error = str(error) or type(error).__name__
        self.set_status(status)
