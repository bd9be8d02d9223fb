from typing import Optional
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from civic_reports.services.dedup_service import DuplicateResolver, ReportDraft
from civic_reports.services.merge_service import merge_reports
from civic_reports.services.report_service import ReportService
from civic_reports.api.deps import get_duplicate_resolver, get_report_service
from civic_reports.api.report import ReportResponse, to_response

router = APIRouter()


class DedupeCheckRequest(BaseModel):
    report_id: str = Field(..., min_length=1)


class DedupeCheckResponse(BaseModel):
    is_duplicate: bool
    original_report_id: Optional[str] = None
    similarity: Optional[float] = None


class DedupeMergeRequest(BaseModel):
    source_id: str = Field(..., min_length=1, description="Duplicate report")
    target_id: str = Field(..., min_length=1, description="Original report")
    actor_id: Optional[str] = None


@router.post("/check", response_model=DedupeCheckResponse, summary="Check a stored report for duplicates")
def check_duplicate(
    request: DedupeCheckRequest,
    service: ReportService = Depends(get_report_service),
    resolver: DuplicateResolver = Depends(get_duplicate_resolver)
):
    report = service.get_report(request.report_id)
    hashes = report.image_hashes
    draft = ReportDraft(
        title=report.title,
        description=report.description,
        latitude=report.latitude,
        longitude=report.longitude,
        category=report.category,
        image_hash=hashes[0] if hashes else None
    )
    verdict = resolver.resolve(service.db, draft, exclude_id=report.id)
    return {
        "is_duplicate": verdict.is_duplicate,
        "original_report_id": verdict.original.id if verdict.original else None,
        "similarity": verdict.similarity
    }


@router.post("/merge", response_model=ReportResponse, summary="Merge a duplicate into its original")
def merge(request: DedupeMergeRequest, service: ReportService = Depends(get_report_service)):
    original = merge_reports(service.db, request.source_id, request.target_id, actor_id=request.actor_id)
    return to_response(service, original)
