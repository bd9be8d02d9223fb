from sqlalchemy import Column, Integer, String, DateTime, Text, Boolean, ForeignKey
from datetime import datetime
from civic_reports.utils.db import Base


class ModelAnalysis(Base):
    """Detection model output for a report image (diagnostics only)"""
    __tablename__ = "model_analyses"

    id = Column(Integer, primary_key=True, index=True)
    report_id = Column(String(32), ForeignKey("reports.id"), nullable=False, index=True, comment="Analysed report")
    outcome = Column(String(20), nullable=False, comment="success/failure")
    detections = Column(Text, nullable=False, default="[]", comment="Detections (JSON string)")
    detection_count = Column(Integer, nullable=False, default=0)
    is_confirmed_issue = Column(Boolean, nullable=False, default=False, comment="Model confirms the reported issue")
    failure_reason = Column(Text, nullable=True)
    annotated_image = Column(Text, nullable=True, comment="Annotated image (base64 data URL)")
    original_filename = Column(String(255), nullable=True)
    processed_at = Column(DateTime, nullable=False, default=datetime.now)
