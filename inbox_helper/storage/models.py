"""
Domain models for Inbox Helper.

Field names are snake_case in Python and camelCase on the wire
(model_dump(by_alias=True)), matching what the dashboard consumes.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

BucketType = Literal["default", "custom"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class BucketDefinition(CamelModel):
    """A category threads are sorted into."""

    id: str
    name: str
    type: BucketType = "custom"
    description: str | None = None


class ThreadSummary(CamelModel):
    """Minimal projection of a Gmail message used for classification and display."""

    id: str
    subject: str
    snippet: str
    sender: str | None = None
    received_at: int | None = Field(default=None, description="Epoch milliseconds")


class ThreadClassification(CamelModel):
    thread_id: str
    bucket_id: str
    confidence: float = Field(ge=0.0, le=1.0)
    reason: str | None = None


class BucketedThread(ThreadSummary):
    confidence: float = 0.0


class BucketedThreads(CamelModel):
    bucket: BucketDefinition
    threads: list[BucketedThread] = Field(default_factory=list)


class InboxView(CamelModel):
    """Buckets in display order plus the threads grouped under each."""

    buckets: list[BucketDefinition]
    grouped: list[BucketedThreads]


class GoogleOAuthToken(CamelModel):
    access_token: str
    refresh_token: str | None = None
    expires_at: int | None = Field(default=None, description="Epoch milliseconds")
    scope: str | None = None
    token_type: str | None = None


class MessageDetail(CamelModel):
    """A single message rendered for the viewer (sanitized HTML)."""

    id: str
    subject: str
    from_address: str = Field(default="", alias="from")
    to: str = ""
    date: str = ""
    html: str


def recency_key(thread: ThreadSummary) -> tuple[int, str]:
    """Sort key: newest first, then id ascending."""
    return (-(thread.received_at or 0), thread.id)


def sort_by_recency(threads: list[ThreadSummary]) -> list[ThreadSummary]:
    return sorted(threads, key=recency_key)
