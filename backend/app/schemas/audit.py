"""
Audit API Schema Definitions.
"""

from pydantic import BaseModel, ConfigDict
from datetime import datetime
from typing import Optional, List


class AuditLogResponse(BaseModel):
    """Schema for audit log entry."""
    id: int
    action: str
    result: str
    user_id: Optional[int]
    ip_address: Optional[str]
    user_agent: Optional[str]
    meta_data: Optional[dict]
    timestamp: datetime

    model_config = ConfigDict(from_attributes=True)


class AuditTrailResponse(BaseModel):
    """Schema for audit trail list."""
    logs: List[AuditLogResponse]
    total: int
