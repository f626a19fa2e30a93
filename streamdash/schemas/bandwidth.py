"""Bandwidth schemas"""
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional
from pydantic import BaseModel, Field


class Granularity(str, Enum):
    """Window aggregation size"""
    RAW = "raw"
    ONE_MINUTE = "1min"
    FIVE_MINUTES = "5min"
    ONE_HOUR = "1hour"
    ONE_DAY = "1day"

    @property
    def window(self) -> Optional[str]:
        """Flux duration literal, or None for unaggregated samples"""
        return GRANULARITY_WINDOWS[self]


GRANULARITY_WINDOWS = {
    Granularity.RAW: None,
    Granularity.ONE_MINUTE: "1m",
    Granularity.FIVE_MINUTES: "5m",
    Granularity.ONE_HOUR: "1h",
    Granularity.ONE_DAY: "1d",
}


class Dimension(str, Enum):
    """Tag columns a bandwidth sample can be filtered or sorted on"""
    PROJECT = "project"
    DOMAIN = "domain"
    REGION = "region"
    TAG = "tag"


class SortField(str, Enum):
    TIME = "time"
    UPLOAD = "upload"
    DOWNLOAD = "download"
    TOTAL = "total"
    PROJECT = "project"
    DOMAIN = "domain"
    REGION = "region"
    TAG = "tag"


ALL_SENTINEL = "all"


class SortSpec(BaseModel):
    """Requested ordering; any order other than 'descend' sorts ascending"""
    field: str = SortField.TIME.value
    order: str = "descend"

    @property
    def descending(self) -> bool:
        return self.order == "descend"


class QueryRequest(BaseModel):
    """One paged bandwidth query.

    Field values are plain strings; the engine validates them and
    raises typed InvalidQuery errors so the HTTP layer can render a 400.
    """
    start_time: str
    end_time: str
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1)
    filters: Dict[str, Optional[str]] = Field(default_factory=dict)
    sort: SortSpec = Field(default_factory=SortSpec)
    granularity: str = Granularity.FIVE_MINUTES.value


class BandwidthRecord(BaseModel):
    """One (possibly window-aggregated) bandwidth row"""
    time: datetime
    upload: float = 0.0
    download: float = 0.0
    project: Optional[str] = None
    domain: Optional[str] = None
    region: Optional[str] = None
    tag: Optional[str] = None

    @property
    def total(self) -> float:
        return self.upload + self.download


class BandwidthPage(BaseModel):
    """A page of records plus the total row count.

    total is None (and total_known False) when the count query failed.
    """
    data: List[BandwidthRecord]
    total: Optional[int]
    total_known: bool = True


class BandwidthStats(BaseModel):
    """Peak and mean throughput over a time range"""
    max_upload: float = 0.0
    max_download: float = 0.0
    avg_upload: float = 0.0
    avg_download: float = 0.0
    count: int = 0


class FilterOption(BaseModel):
    label: str
    value: str


class BandwidthPoint(BaseModel):
    """Schema for writing one bandwidth sample"""
    time: datetime
    upload: float = Field(..., ge=0)
    download: float = Field(..., ge=0)
    project: str = Field(default="unknown", min_length=1, max_length=255)
    domain: str = Field(default="unknown", min_length=1, max_length=255)
    region: str = Field(default="unknown", min_length=1, max_length=255)
    tag: str = Field(default="unknown", min_length=1, max_length=255)
