"""Live stream session and storage usage schemas"""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel


class StreamSession(BaseModel):
    """Latest state of one stream, keyed by id"""
    id: str
    stream_name: str = ""
    type: str = "push"
    domain: str = ""
    region: str = ""
    bandwidth: float = 0.0
    duration: float = 0.0
    viewers: int = 0
    status: str = "active"
    start_time: str = ""
    updated_at: Optional[datetime] = None


class StorageUsage(BaseModel):
    """Most recent storage size reported for a project and domain"""
    id: str
    project: str = ""
    domain: str = ""
    size: float = 0.0
    update_time: datetime
