from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ThreadCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    title: str = Field(min_length=1, max_length=255)
    content: str = Field(min_length=1)
    user_id: int = Field(alias="userId", gt=0, strict=True)
    category_id: int = Field(alias="categoryId", gt=0, strict=True)

    @field_validator("title", "content")
    @classmethod
    def not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value


class ThreadCreatedResponse(BaseModel):
    message: str
    threadId: int


class CategoryRef(BaseModel):
    name: str


class AuthorRef(BaseModel):
    username: str


class ThreadSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    created_at: Optional[datetime] = None
    categories: Optional[CategoryRef] = None
    users: Optional[AuthorRef] = None

    @field_validator("created_at")
    @classmethod
    def as_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        # SQLite hands timestamps back without an offset; they are stored in UTC.
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
