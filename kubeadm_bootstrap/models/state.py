"""Persisted progress of a bootstrap procedure."""

from datetime import datetime

from pydantic import BaseModel, Field


class StepRecord(BaseModel):
    """Outcome of a single executed step."""

    name: str
    success: bool
    started_at: datetime
    finished_at: datetime
    error: str | None = None

    @property
    def duration(self) -> float:
        """Step duration in seconds."""
        return (self.finished_at - self.started_at).total_seconds()


class ProcedureState(BaseModel):
    """Progress of a procedure, written after every step."""

    procedure: str
    state: str = "pending"
    completed: list[str] = Field(default_factory=list)
    failed_step: str | None = None
    error: str | None = None
    steps: list[StepRecord] = Field(default_factory=list)
    updated_at: datetime = Field(default_factory=datetime.now)

    @property
    def finished(self) -> bool:
        """Whether the procedure reached terminal success."""
        return self.state == "completed"

    def record(self, record: StepRecord) -> None:
        """Record a step outcome and advance the state."""
        self.steps.append(record)
        self.updated_at = record.finished_at
        if record.success:
            if record.name not in self.completed:
                self.completed.append(record.name)
            self.state = record.name
            self.failed_step = None
            self.error = None
        else:
            self.state = "failed"
            self.failed_step = record.name
            self.error = record.error
