# app/models/api_models.py
from pydantic import BaseModel
from typing import Any, List, Optional

from .account_models import ExtractionRecord, SubscriptionDetails, UsageStatistics
from .table_models import ExtractionResult


# === Base64 JSON upload bodies (no multipart) ===
class FileIn(BaseModel):
    filename: str
    mime_type: str
    b64: str


class ExtractOptions(BaseModel):
    hints: Optional[str] = None
    model_version: Optional[str] = None
    save: bool = True
    debug: bool = False


class ExtractFileIn(FileIn, ExtractOptions):
    pass


class ExtractTextIn(ExtractOptions):
    text: str


class ExtractClipboardIn(ExtractOptions):
    text: Optional[str] = None
    files: List[FileIn] = []


class ExtractResponse(BaseModel):
    result: ExtractionResult
    extraction_id: Optional[str] = None


# --- history ---
class HistoryResponse(BaseModel):
    extractions: List[ExtractionRecord]


class VisibilityIn(BaseModel):
    ids: List[str]
    visible: bool


# --- export ---
class SheetIn(BaseModel):
    data: List[List[Any]]
    sheet_name: Optional[str] = None


class ExportIn(BaseModel):
    # left untyped so a non-list body can be answered with a plain 400
    data: Any = None
    title: Optional[str] = None
    multiple_tables: Optional[List[SheetIn]] = None


# --- account ---
class SubscriptionUpdateIn(BaseModel):
    tier: Optional[str] = None
    end_date: Optional[str] = None


class SubscriptionResponse(BaseModel):
    success: bool = True
    subscription: Optional[SubscriptionDetails] = None


class UsageResponse(BaseModel):
    success: bool = True
    usage: Optional[UsageStatistics] = None
