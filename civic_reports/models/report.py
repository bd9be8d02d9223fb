import enum
import json
from uuid import uuid4
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Text, Float, Integer, Boolean, ForeignKey, Index
from civic_reports.utils.db import Base


class ReportCategory(str, enum.Enum):
    ROAD_ISSUE = "ROAD_ISSUE"
    GARBAGE = "GARBAGE"
    STREET_LIGHT = "STREET_LIGHT"
    WATER_LEAK = "WATER_LEAK"
    NOISE_COMPLAINT = "NOISE_COMPLAINT"
    OTHER = "OTHER"


class ReportStatus(str, enum.Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    RESOLVED = "RESOLVED"
    ARCHIVED = "ARCHIVED"


def new_report_id() -> str:
    return uuid4().hex


class Report(Base):
    """Citizen issue report"""
    __tablename__ = "reports"

    id = Column(String(32), primary_key=True, default=new_report_id, comment="Report ID (UUID hex)")
    title = Column(String(200), nullable=False, comment="Title")
    description = Column(Text, nullable=True, comment="Description")
    latitude = Column(Float, nullable=False, comment="WGS84 latitude")
    longitude = Column(Float, nullable=False, comment="WGS84 longitude")
    category = Column(String(30), nullable=False, default=ReportCategory.OTHER.value, comment="Category")
    status = Column(String(20), nullable=False, default=ReportStatus.PENDING.value,
                    comment="Status: PENDING/IN_PROGRESS/RESOLVED/ARCHIVED")
    image_urls_json = Column("image_urls", Text, nullable=False, default="[]", comment="Image URLs (JSON string)")
    image_hashes_json = Column("image_hashes", Text, nullable=False, default="[]",
                               comment="Perceptual image hashes aligned with image_urls (JSON string)")
    creator_id = Column(String(32), nullable=False, index=True, comment="Creator")
    is_duplicate = Column(Boolean, nullable=False, default=False, comment="Archived as a duplicate")
    original_report_id = Column(String(32), ForeignKey("reports.id"), nullable=True, index=True,
                                comment="Canonical report this one was merged into")
    duplicate_count = Column(Integer, nullable=False, default=0, comment="Number of duplicates merged in")
    merged_at = Column(DateTime, nullable=True, comment="Merge time")
    created_at = Column(DateTime, nullable=False, default=datetime.now, comment="Creation time")
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now, comment="Update time")

    __table_args__ = (
        Index("ix_reports_lat_lon", "latitude", "longitude"),
    )

    @property
    def image_urls(self) -> list:
        return json.loads(self.image_urls_json) if self.image_urls_json else []

    @image_urls.setter
    def image_urls(self, value: list):
        self.image_urls_json = json.dumps(list(value))

    @property
    def image_hashes(self) -> list:
        return json.loads(self.image_hashes_json) if self.image_hashes_json else []

    @image_hashes.setter
    def image_hashes(self, value: list):
        self.image_hashes_json = json.dumps(list(value))

    @property
    def is_open(self) -> bool:
        return self.status in (ReportStatus.PENDING, ReportStatus.IN_PROGRESS) and not self.is_duplicate

    def __repr__(self):
        return f"<Report {self.id} {self.category} {self.status}>"
