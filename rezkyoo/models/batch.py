"""Batch and do-not-call data models."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

from rezkyoo.models.call import CallRecord
from rezkyoo.models.restaurant import Candidate
from rezkyoo.models.search import SearchQuery


class BatchStatus(str, Enum):
    """Aggregate status of a batch of calls."""

    CALLING = "calling"
    COMPLETED = "completed"


class Batch(BaseModel):
    """The calls launched for one search, including later pages."""

    id: str = Field(..., description="Batch identifier")
    query: SearchQuery = Field(..., description="Search the batch was created for")
    status: BatchStatus = Field(default=BatchStatus.CALLING)
    candidates: list[Candidate] = Field(
        default_factory=list, description="Ranked eligible candidates, append-only"
    )
    called_count: int = Field(
        default=0, ge=0, description="Candidates consumed by dialed pages"
    )
    map_url: str | None = Field(None, description="Static map of the first page")
    created_at: datetime = Field(default_factory=datetime.now)

    @property
    def has_more(self) -> bool:
        return self.called_count < len(self.candidates)


class DoNotCallEntry(BaseModel):
    """A phone number that must not be called again."""

    phone_number: str = Field(..., description="Normalized phone number")
    restaurant_name: str | None = Field(None, description="Who opted out")
    added_at: datetime = Field(default_factory=datetime.now)


class BatchPage(BaseModel):
    """A batch together with the candidates dialed for one page."""

    batch: Batch
    dialed: list[Candidate] = Field(default_factory=list)

    def to_response(self) -> dict[str, Any]:
        """Client-facing search response."""
        return {
            "batchId": self.batch.id,
            "restaurants": [c.summary() for c in self.dialed],
            "mapUrl": self.batch.map_url,
            "query": self.batch.query.model_dump(mode="json"),
            "hasMore": self.batch.has_more,
        }


class BatchProgress(BaseModel):
    """Aggregate status of a batch and all of its calls."""

    batch: Batch
    calls: list[CallRecord] = Field(default_factory=list)

    def to_response(self) -> dict[str, Any]:
        """Client-facing status response."""
        return {
            "ok": True,
            "batchId": self.batch.id,
            "status": self.batch.status.value,
            "items": [call.status_item() for call in self.calls],
            "hasMore": self.batch.has_more,
        }
