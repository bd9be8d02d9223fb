from civic_reports.models.user import User
from civic_reports.models.report import Report, ReportCategory, ReportStatus
from civic_reports.models.activity import Activity, ActivityType
from civic_reports.models.upvote import Upvote
from civic_reports.models.comment import Comment
from civic_reports.models.analysis import ModelAnalysis

__all__ = [
    "User",
    "Report",
    "ReportCategory",
    "ReportStatus",
    "Activity",
    "ActivityType",
    "Upvote",
    "Comment",
    "ModelAnalysis",
]
