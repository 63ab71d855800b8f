from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class BulkDeleteRequest(BaseModel):
    record_type: Literal["contacts", "applications"] = Field(..., alias="recordType")
    record_ids: list[str] = Field(..., alias="recordIds", min_length=1)

    model_config = {"populate_by_name": True}
