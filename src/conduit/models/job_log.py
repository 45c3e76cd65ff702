"""
Models for execution traces and the job logs they are persisted as.

A run builds its trace with a ``TraceRecorder`` (append-only) and finishes it
exactly once into an immutable ``RunTrace``. ``JobLog`` is the persisted
record of a finished trace.
"""

import logging
import uuid
from datetime import datetime, timedelta
from enum import Enum
from typing import Dict, List, Any, Optional, Tuple
from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

LOG_RETENTION = timedelta(days=7)


class LogLevel(str, Enum):
    """Terminal severity of a run."""
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


class ObjectFailure(BaseModel):
    """A single source object that could not be synchronized."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    origin_id: str = Field(..., alias="originId")
    error: str
    error_type: str = Field(..., alias="errorType")


class RunTrace(BaseModel):
    """The immutable outcome of one run of a unit of work."""
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    level: LogLevel
    message: str
    stack_trace: Tuple[str, ...] = Field(..., alias="stackTrace")
    arguments: Dict[str, Any] = Field(default_factory=dict)
    started_at: datetime = Field(..., alias="startedAt")
    finished_at: datetime = Field(..., alias="finishedAt")
    execution_time: int = Field(0, alias="executionTime", description="Whole seconds")
    objects_synchronized: int = Field(0, alias="objectsSynchronized")
    targets_deleted: int = Field(0, alias="targetsDeleted")
    failures: Tuple[ObjectFailure, ...] = Field(default_factory=tuple)

    def to_response(self) -> Dict[str, Any]:
        """JSON body returned to API callers."""
        return self.model_dump(mode="json", by_alias=True)


class TraceRecorder:
    """Collects the ordered steps of a run until it is finished."""

    def __init__(self, arguments: Optional[Dict[str, Any]] = None):
        self.arguments: Dict[str, Any] = dict(arguments or {})
        self.started_at = datetime.utcnow()
        self.objects_synchronized = 0
        self.targets_deleted = 0
        self._steps: List[str] = []
        self._failures: List[ObjectFailure] = []
        self._trace: Optional[RunTrace] = None

    def step(self, message: str) -> None:
        """Append a step to the trace."""
        if self._trace is not None:
            raise RuntimeError("Trace already finished")
        self._steps.append(message)
        logger.debug(f"Trace step: {message}")

    def failure(self, origin_id: str, error: Exception) -> None:
        """Record a per-object failure and append it to the trace."""
        self._failures.append(ObjectFailure(
            origin_id=origin_id,
            error=str(error),
            error_type=type(error).__name__
        ))
        self.step(f"Failed to synchronize object {origin_id}: {error}")

    def finish(self, level: LogLevel, message: str) -> RunTrace:
        """Append the terminal message and freeze the trace."""
        self.step(message)
        finished_at = datetime.utcnow()
        self._trace = RunTrace(
            level=level,
            message=message,
            stack_trace=tuple(self._steps),
            arguments=self.arguments,
            started_at=self.started_at,
            finished_at=finished_at,
            execution_time=int((finished_at - self.started_at).total_seconds()),
            objects_synchronized=self.objects_synchronized,
            targets_deleted=self.targets_deleted,
            failures=tuple(self._failures)
        )
        return self._trace


class JobLog(BaseModel):
    """Persisted record of one finished run."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: Optional[int] = Field(None)
    uuid: str = Field(default_factory=lambda: str(uuid.uuid4()))
    level: LogLevel = Field(LogLevel.INFO)
    message: str = Field("success")
    job_id: Optional[str] = Field(None, alias="jobId")
    job_list_id: Optional[str] = Field(None, alias="jobListId")
    job_class: Optional[str] = Field(None, alias="jobClass")
    arguments: Optional[Dict[str, Any]] = Field(None)
    execution_time: Optional[int] = Field(None, alias="executionTime")
    user_id: Optional[str] = Field(None, alias="userId")
    session_id: Optional[str] = Field(None, alias="sessionId")
    stack_trace: List[str] = Field(default_factory=list, alias="stackTrace")
    synchronization_id: Optional[int] = Field(None, alias="synchronizationId")
    expires: Optional[datetime] = Field(None)
    last_run: Optional[datetime] = Field(None, alias="lastRun")
    next_run: Optional[datetime] = Field(None, alias="nextRun")
    created: datetime = Field(default_factory=datetime.utcnow)

    @classmethod
    def from_trace(
        cls,
        trace: RunTrace,
        job_class: str,
        synchronization_id: Optional[int] = None,
        job_id: Optional[str] = None,
        job_list_id: Optional[str] = None,
        user_id: Optional[str] = None,
        session_id: Optional[str] = None,
        next_run: Optional[datetime] = None
    ) -> "JobLog":
        """Build the persisted record of a finished trace."""
        created = datetime.utcnow()
        return cls(
            level=trace.level,
            message=trace.message,
            job_id=job_id,
            job_list_id=job_list_id,
            job_class=job_class,
            arguments=dict(trace.arguments),
            execution_time=trace.execution_time,
            user_id=user_id,
            session_id=session_id,
            stack_trace=list(trace.stack_trace),
            synchronization_id=synchronization_id,
            expires=created + LOG_RETENTION,
            last_run=trace.started_at,
            next_run=next_run,
            created=created
        )

    def to_firestore(self) -> Dict[str, Any]:
        """Convert to Firestore document format."""
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_firestore(cls, doc_id: str, data: Dict[str, Any]) -> "JobLog":
        """Create instance from Firestore document."""
        data = dict(data)
        data["id"] = int(doc_id)
        return cls.model_validate(data)
