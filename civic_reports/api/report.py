from datetime import datetime
from typing import List, Optional, Tuple
from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field
from civic_reports.config import settings
from civic_reports.models.report import Report, ReportCategory, ReportStatus
from civic_reports.services import analysis_service
from civic_reports.services.proximity import find_nearby_reports
from civic_reports.services.report_service import ReportService
from civic_reports.utils.image_hash import parse_base64_image
from civic_reports.utils.token import get_current_user
from civic_reports.api.deps import get_report_service

router = APIRouter()


# Request models
class ReportCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200, description="Title")
    description: Optional[str] = Field(None, max_length=5000, description="Description")
    image: str = Field(..., min_length=1, description="Photo as a data URL or bare base64")
    location: Tuple[float, float] = Field(..., description="[latitude, longitude]; [0, 0] is a valid point")
    category: ReportCategory


class ReportUpdateRequest(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=5000)


class StatusUpdateRequest(BaseModel):
    status: ReportStatus


class CommentCreateRequest(BaseModel):
    text: str = Field(..., min_length=1, max_length=2000)


# Response models
class ReportResponse(BaseModel):
    id: str
    title: str
    description: Optional[str] = None
    latitude: float
    longitude: float
    category: str
    status: str
    image_urls: List[str] = []
    creator_id: str
    is_duplicate: bool
    original_report_id: Optional[str] = None
    duplicate_count: int
    merged_at: Optional[datetime] = None
    created_at: datetime
    upvotes: int = 0

    class Config:
        from_attributes = True


class DeduplicationInfo(BaseModel):
    is_duplicate: bool
    merged: bool
    original_report: Optional[ReportResponse] = None


class ReportCreateResponse(BaseModel):
    message: str
    report: ReportResponse
    deduplication: DeduplicationInfo

    class Config:
        json_schema_extra = {
            "example": {
                "message": "Report created and merged with existing duplicate",
                "report": {"id": "9f1c...", "status": "ARCHIVED", "is_duplicate": True},
                "deduplication": {"is_duplicate": True, "merged": True, "original_report": {"id": "3a7b..."}}
            }
        }


class NearbyReportResponse(ReportResponse):
    distance_km: float


class NearbyResponse(BaseModel):
    reports: List[NearbyReportResponse]
    latitude: float
    longitude: float
    radius_km: float
    count: int


class ActivityResponse(BaseModel):
    id: int
    report_id: str
    type: str
    content: str
    actor_id: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class CommentResponse(BaseModel):
    id: int
    report_id: str
    user_id: str
    text: str
    created_at: datetime

    class Config:
        from_attributes = True


class UpvoteResponse(BaseModel):
    report_id: str
    upvoted: bool  # False when the user had already voted
    upvotes: int


def to_response(service: ReportService, report: Report) -> ReportResponse:
    data = ReportResponse.model_validate(report)
    data.upvotes = service.get_upvote_count(report.id)
    return data


def _ensure_debug_enabled():
    if settings.ENV == "production":
        raise HTTPException(status_code=404, detail="Endpoint not available in production")


@router.get("/", response_model=List[ReportResponse], summary="List visible reports")
def list_reports(
    include_archived: bool = Query(False, description="Include archived duplicates"),
    service: ReportService = Depends(get_report_service)
):
    return [to_response(service, r) for r in service.list_reports(include_archived=include_archived)]


@router.post("/", response_model=ReportCreateResponse, status_code=status.HTTP_201_CREATED, summary="Submit a report")
def create_report(
    request: ReportCreateRequest,
    user_id: str = Depends(get_current_user),
    service: ReportService = Depends(get_report_service)
):
    """
    Submit a new report:
    - requires a bearer token
    - a report of the same issue nearby is merged instead of creating a second live report
    """
    image = parse_base64_image(request.image)
    result = service.create_report(
        creator_id=user_id,
        title=request.title,
        description=request.description,
        image_data=image["data"],
        content_type=image["content_type"],
        location=request.location,
        category=request.category
    )

    if result.is_duplicate:
        return {
            "message": "Report created and merged with existing duplicate",
            "report": to_response(service, result.report),
            "deduplication": {
                "is_duplicate": True,
                "merged": result.merged,
                "original_report": to_response(service, result.original)
            }
        }

    return {
        "message": "Report created successfully",
        "report": to_response(service, result.report),
        "deduplication": {"is_duplicate": False, "merged": False}
    }


@router.get("/unresolved", response_model=List[ReportResponse], summary="Pending reports")
def get_unresolved_reports(service: ReportService = Depends(get_report_service)):
    return [to_response(service, r) for r in service.get_unresolved_reports()]


@router.get("/nearby", response_model=NearbyResponse, summary="Reports near a point")
def get_nearby_reports(
    lat: float = Query(..., ge=-90, le=90),
    lng: float = Query(..., ge=-180, le=180),
    radius: float = Query(5, ge=0.1, le=100, description="Radius in km"),
    service: ReportService = Depends(get_report_service)
):
    reports = []
    for report, distance_km in find_nearby_reports(service.db, lat, lng, radius):
        item = NearbyReportResponse(**to_response(service, report).model_dump(), distance_km=distance_km)
        reports.append(item)

    return {"reports": reports, "latitude": lat, "longitude": lng, "radius_km": radius, "count": len(reports)}


@router.get("/user", response_model=List[ReportResponse], summary="Current user's reports")
def get_user_reports(user_id: str = Depends(get_current_user), service: ReportService = Depends(get_report_service)):
    return [to_response(service, r) for r in service.get_user_reports(user_id)]


@router.get("/user/resolved", response_model=List[ReportResponse], summary="Current user's resolved reports")
def get_user_resolved_reports(
    user_id: str = Depends(get_current_user),
    service: ReportService = Depends(get_report_service)
):
    return [to_response(service, r) for r in service.get_user_reports(user_id, resolved=True)]


@router.get("/user/unresolved", response_model=List[ReportResponse], summary="Current user's open reports")
def get_user_unresolved_reports(
    user_id: str = Depends(get_current_user),
    service: ReportService = Depends(get_report_service)
):
    return [to_response(service, r) for r in service.get_user_reports(user_id, resolved=False)]


# Debug routes (development only)
@router.get("/debug/model/health", summary="Detection model health")
def get_model_health():
    _ensure_debug_enabled()
    healthy = analysis_service.check_model_health()
    return {"healthy": healthy, "message": "Model API is healthy" if healthy else "Model API is not responding"}


@router.get("/debug/{report_id}/analysis", summary="Stored detection model output")
def get_model_analysis(report_id: str, service: ReportService = Depends(get_report_service)):
    _ensure_debug_enabled()
    analysis = analysis_service.get_latest_analysis(service.db, report_id)
    if analysis is None:
        raise HTTPException(status_code=404, detail="Model analysis not found for this report")

    return {
        "report_id": analysis.report_id,
        "outcome": analysis.outcome,
        "detections": analysis.detections,
        "detection_count": analysis.detection_count,
        "is_confirmed_issue": analysis.is_confirmed_issue,
        "failure_reason": analysis.failure_reason,
        "processed_at": analysis.processed_at,
        "original_filename": analysis.original_filename,
        "annotated_image": analysis.annotated_image
    }


@router.get("/{report_id}", response_model=ReportResponse, summary="Report detail")
def get_report(report_id: str, service: ReportService = Depends(get_report_service)):
    return to_response(service, service.get_report(report_id))


@router.patch("/{report_id}", response_model=ReportResponse, summary="Edit a report")
def update_report(
    report_id: str,
    request: ReportUpdateRequest,
    user_id: str = Depends(get_current_user),
    service: ReportService = Depends(get_report_service)
):
    report = service.update_report(report_id, user_id, request.title, request.description)
    return to_response(service, report)


@router.patch("/{report_id}/status", response_model=ReportResponse, summary="Change report status")
def update_status(
    report_id: str,
    request: StatusUpdateRequest,
    user_id: str = Depends(get_current_user),
    service: ReportService = Depends(get_report_service)
):
    return to_response(service, service.update_status(report_id, request.status, actor_id=user_id))


@router.patch("/{report_id}/resolve", response_model=ReportResponse, summary="Mark a report resolved")
def mark_resolved(
    report_id: str,
    user_id: str = Depends(get_current_user),
    service: ReportService = Depends(get_report_service)
):
    return to_response(service, service.mark_resolved(report_id, actor_id=user_id))


@router.get("/{report_id}/activities", response_model=List[ActivityResponse], summary="Report timeline")
def get_report_activities(report_id: str, service: ReportService = Depends(get_report_service)):
    return service.get_report_activities(report_id)


@router.get("/{report_id}/comments", response_model=List[CommentResponse], summary="Report comments")
def get_comments(report_id: str, service: ReportService = Depends(get_report_service)):
    return service.get_comments(report_id)


@router.post("/{report_id}/comments", response_model=CommentResponse, status_code=status.HTTP_201_CREATED,
             summary="Comment on a report")
def add_comment(
    report_id: str,
    request: CommentCreateRequest,
    user_id: str = Depends(get_current_user),
    service: ReportService = Depends(get_report_service)
):
    return service.add_comment(report_id, user_id, request.text)


@router.post("/{report_id}/upvote", response_model=UpvoteResponse, summary="Upvote a report")
def upvote_report(
    report_id: str,
    user_id: str = Depends(get_current_user),
    service: ReportService = Depends(get_report_service)
):
    upvote = service.upvote_report(report_id, user_id)
    target_id = upvote.report_id if upvote else (service.get_report(report_id).original_report_id or report_id)
    return {"report_id": target_id, "upvoted": upvote is not None, "upvotes": service.get_upvote_count(target_id)}
