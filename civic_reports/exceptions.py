"""
Domain errors raised by the service layer.

Routers translate them into HTTP responses; services never build HTTP
responses themselves.
"""


class CivicReportError(Exception):
    """Base class for all service-layer errors"""


class ReportNotFoundError(CivicReportError):
    def __init__(self, report_id: str):
        super().__init__(f"Report not found: {report_id}")
        self.report_id = report_id


class ReportValidationError(CivicReportError):
    """Malformed input rejected before it reaches dedup or merge"""


class AlreadyMergedError(CivicReportError):
    def __init__(self, report_id: str, original_report_id: str | None):
        super().__init__(f"Report {report_id} was already merged into {original_report_id}")
        self.report_id = report_id
        self.original_report_id = original_report_id


class MergeInvariantError(CivicReportError):
    """A merge would break the duplicate/original invariants (a defect, not user error)"""


class InvalidStatusTransitionError(CivicReportError):
    def __init__(self, current: str, requested: str):
        super().__init__(f"Cannot move report from {current} to {requested}")
        self.current = current
        self.requested = requested


class PermissionDeniedError(CivicReportError):
    pass


class TransientStoreError(CivicReportError):
    """Database connectivity failure; the caller decides whether to retry"""


class ExternalServiceError(CivicReportError):
    """Detection model or storage backend call failed"""
