from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, UniqueConstraint
from datetime import datetime
from civic_reports.utils.db import Base


class Upvote(Base):
    __tablename__ = "upvotes"

    id = Column(Integer, primary_key=True, index=True)
    report_id = Column(String(32), ForeignKey("reports.id"), nullable=False, index=True)  # upvoted report
    user_id = Column(String(32), nullable=False, index=True)  # voter
    created_at = Column(DateTime, default=datetime.now)

    # One vote per user per report
    __table_args__ = (
        UniqueConstraint("report_id", "user_id", name="unique_report_user_upvote"),
    )
