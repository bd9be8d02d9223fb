import enum
from sqlalchemy import Column, Integer, String, DateTime, Text, ForeignKey
from datetime import datetime
from civic_reports.utils.db import Base


class ActivityType(str, enum.Enum):
    CREATED = "CREATED"
    COMMENT_ADDED = "COMMENT_ADDED"
    AUTHORITY_COMMENTED = "AUTHORITY_COMMENTED"
    STATUS_UPDATED = "STATUS_UPDATED"
    ADDED_DUPLICATE = "ADDED_DUPLICATE"
    MARKED_RESOLVED = "MARKED_RESOLVED"
    MARKED_AS_DUPLICATE = "MARKED_AS_DUPLICATE"


class Activity(Base):
    """Report timeline entry (append-only)"""
    __tablename__ = "activities"

    id = Column(Integer, primary_key=True, index=True)
    report_id = Column(String(32), ForeignKey("reports.id"), nullable=False, index=True)  # owning report
    type = Column(String(30), nullable=False)  # ActivityType value
    content = Column(Text, nullable=False)
    actor_id = Column(String(32), nullable=True)  # null for system entries
    created_at = Column(DateTime, nullable=False, default=datetime.now)
