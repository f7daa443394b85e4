# app/models/table_models.py
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Any, List, Optional

class TableData(BaseModel):
    # cells are kept exactly as the model produced them (normally strings)
    headers: List[Any]
    # normally lists of cells; a row that is not an array is passed through untouched
    rows: List[Any]


class NamedTable(TableData):
    # keys the model adds beyond these are kept
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    title: Optional[str] = None
    header_position: Optional[str] = Field(default=None, alias="headerPosition")

    @field_validator("title", "header_position", mode="before")
    @classmethod
    def _as_text(cls, v: Any) -> Optional[str]:
        # "title": 2023 is still a usable title
        return v if v is None or isinstance(v, str) else str(v)


class ExtractionData(TableData):
    tables: Optional[List[NamedTable]] = None


class ExtractionResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool
    data: Optional[ExtractionData] = None
    error: Optional[str] = None
    # set when a recovery step had to drop truncated rows or tables
    truncated: bool = False
    raw_response: Optional[Any] = None

    @classmethod
    def ok(cls, data: ExtractionData, *, truncated: bool = False, raw: Any = None) -> "ExtractionResult":
        return cls(success=True, data=data, truncated=truncated, raw_response=raw)

    @classmethod
    def fail(cls, error: str) -> "ExtractionResult":
        return cls(success=False, error=error)
