"""Remote bucket wire schemas."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class RemoteObject(BaseModel):
    """One object entry returned by the LIST endpoint."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(alias="object_id")
    md5: str = ""
    size: int = 0
    last_modified: int = 0


class ListObjectsResponse(BaseModel):
    """Body of ``GET .../objects``."""

    continuation_token: str = ""
    objects: list[RemoteObject] = Field(default_factory=list)

    @field_validator("continuation_token", mode="before")
    @classmethod
    def null_token_is_empty(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("objects", mode="before")
    @classmethod
    def null_objects_is_empty(cls, v: Any) -> Any:
        return [] if v is None else v
