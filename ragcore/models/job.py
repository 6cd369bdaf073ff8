"""Job queue models."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class JobOptions(BaseModel):
    """Job-level retry policy, independent of the embedding client's per-call retry."""

    model_config = ConfigDict(frozen=True)

    attempts: int = Field(default=5, ge=1, description="Total attempts including the first.")
    backoff_ms: int = Field(default=2000, ge=0, description="Base delay, doubled per attempt.")

    def delay_seconds(self, attempts_made: int) -> float:
        """Exponential backoff before the next attempt, after *attempts_made* failures."""
        return self.backoff_ms * (2 ** max(attempts_made - 1, 0)) / 1000.0


class IngestJob(BaseModel):
    """A reserved job: one document to ingest."""

    model_config = ConfigDict(frozen=True)

    job_id: str
    payload: dict[str, Any]
    options: JobOptions = Field(default_factory=JobOptions)
    attempts_made: int = Field(
        default=1,
        ge=1,
        description="Attempts including the one currently reserved.",
    )
    redelivered: bool = Field(
        default=False,
        description="Handed out again because the previous reservation stalled.",
    )

    @property
    def document_id(self) -> int:
        return int(self.payload["document_id"])

    @property
    def attempts_remaining(self) -> int:
        return max(self.options.attempts - self.attempts_made, 0)
