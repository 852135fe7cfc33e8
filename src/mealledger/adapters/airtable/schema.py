"""Pydantic models describing the Airtable REST payloads."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from typing import cast

from pydantic import BaseModel, ConfigDict, Field, model_validator


class AirtableBaseModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class RecordPayload(AirtableBaseModel):
    id: str
    created_time: datetime = Field(alias="createdTime")
    fields: dict[str, object] = Field(default_factory=dict["str", "object"])


class ListRecordsPayload(AirtableBaseModel):
    records: list[RecordPayload] = Field(default_factory=list["RecordPayload"])
    offset: str | None = None


class DeletedRecordPayload(AirtableBaseModel):
    id: str
    deleted: bool


class ErrorPayload(AirtableBaseModel):
    type: str = "UNKNOWN_ERROR"
    message: str = ""

    @model_validator(mode="before")
    @classmethod
    def _unwrap_error(cls, value: object) -> object:
        # Airtable nests the error object, or sends a bare string like "NOT_FOUND"
        if not isinstance(value, Mapping):
            return value
        mapping_value = cast(Mapping[str, object], value)
        error = mapping_value.get("error")
        if isinstance(error, Mapping):
            return error
        if isinstance(error, str):
            return {"type": error, "message": error}
        return mapping_value


class WriteRecordPayload(AirtableBaseModel):
    fields: dict[str, object]
    typecast: bool = False
