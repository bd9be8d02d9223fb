from sqlalchemy import Column, Integer, String, DateTime, Text, ForeignKey
from datetime import datetime
from civic_reports.utils.db import Base


class Comment(Base):
    __tablename__ = "comments"

    id = Column(Integer, primary_key=True, index=True)
    report_id = Column(String(32), ForeignKey("reports.id"), nullable=False, index=True)
    user_id = Column(String(32), nullable=False, index=True)
    text = Column(Text, nullable=False)
    created_at = Column(DateTime, default=datetime.now)
