# app/models/account_models.py
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, Field

from .table_models import ExtractionData


class SubscriptionTier(str, Enum):
    free     = "free"
    monthly  = "monthly"
    yearly   = "yearly"
    lifetime = "lifetime"


class TierFeatures(BaseModel):
    extractions_per_day: int
    max_file_size: int              # bytes
    advanced_export: bool
    multiple_tables_support: bool
    priority: bool


class SubscriptionDetails(BaseModel):
    tier: SubscriptionTier
    start_date: datetime
    end_date: Optional[datetime] = None
    is_active: bool
    features: TierFeatures


class HistoryEntry(BaseModel):
    date: str                       # YYYY-MM-DD
    count: int


class UsageData(BaseModel):
    extractions_today: int = 0
    last_extraction_date: str
    total_extractions: int = 0
    extraction_history: List[HistoryEntry] = []


class UsageStatistics(BaseModel):
    today: int
    this_week: int
    this_month: int
    total: int
    daily_average: float
    history: List[HistoryEntry]


class UserRecord(BaseModel):
    id: str
    email: str = ""
    created_at: datetime
    subscription_tier: SubscriptionTier = SubscriptionTier.free
    subscription_start: datetime
    subscription_end: Optional[datetime] = None
    usage_data: Optional[Dict[str, Any]] = None


class ExtractionMetadata(BaseModel):
    file_name: Optional[str] = None
    file_type: Optional[str] = None
    file_size: Optional[int] = None
    page_count: Optional[int] = None
    extraction_method: Literal["file", "clipboard"]
    extraction_hints: Optional[str] = None


class ExtractionRecord(BaseModel):
    id: str
    user_id: str
    extraction_data: ExtractionData
    metadata: ExtractionMetadata
    visible: bool = True
    created_at: datetime
    updated_at: datetime


class AuthUser(BaseModel):
    id: str
    email: str = ""
    raw: Dict[str, Any] = Field(default_factory=dict, exclude=True)
