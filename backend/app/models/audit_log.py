"""
Audit Log Database Model.

Records every state-changing trip, payment and payout operation with its
outcome, for dispute handling and abuse detection.
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.sql import func
from backend.app.db.session import Base


class AuditLog(Base):
    """Audit log entry."""
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # What happened and how it ended
    action = Column(String(100), nullable=False, index=True)
    result = Column(String(20), nullable=False, index=True)

    # Who did it (None for system sweeps)
    user_id = Column(Integer, index=True, nullable=True)

    ip_address = Column(String(50), nullable=True)
    user_agent = Column(String(255), nullable=True)

    # Additional context (JSON for flexibility)
    meta_data = Column(JSON, nullable=True)

    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', result='{self.result}', user={self.user_id})>"
