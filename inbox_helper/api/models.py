"""Request bodies for the dashboard API."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from inbox_helper.config import (
    BUCKET_DESCRIPTION_MAX,
    BUCKET_NAME_MAX,
    BUCKET_NAME_MIN,
    CHAT_LIMIT_MAX,
    CHAT_QUERY_MAX,
    CHAT_QUERY_MIN,
    MAX_KNOWN_IDS,
)


class BucketCreateRequest(BaseModel):
    name: str = Field(..., min_length=BUCKET_NAME_MIN, max_length=BUCKET_NAME_MAX)
    description: str | None = Field(default=None, max_length=BUCKET_DESCRIPTION_MAX)


class BucketUpdateRequest(BucketCreateRequest):
    id: str = Field(..., min_length=1)


class BucketDeleteRequest(BaseModel):
    id: str = Field(..., min_length=1)


class CheckNewRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    known_ids: list[str] = Field(..., alias="knownIds", max_length=MAX_KNOWN_IDS)


class ChatSearchRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    query: str = Field(..., min_length=CHAT_QUERY_MIN, max_length=CHAT_QUERY_MAX)
    limit: int | None = Field(default=None, ge=1, le=CHAT_LIMIT_MAX)


class MessageDetailRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(..., min_length=1)
