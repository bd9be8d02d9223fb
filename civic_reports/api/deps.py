from fastapi import Depends
from sqlalchemy.orm import Session
from civic_reports.utils.db import get_db
from civic_reports.utils.storage import get_storage
from civic_reports.services.dedup_service import DuplicateResolver, build_policy
from civic_reports.services.report_service import ReportService


def get_image_storage():
    return get_storage()


def get_analysis_dispatcher():
    # Imported here so the API does not need a broker connection just to start
    from civic_reports.tasks.analyze_image import dispatch_image_analysis
    return dispatch_image_analysis


def get_duplicate_resolver() -> DuplicateResolver:
    return DuplicateResolver(build_policy())


def get_report_service(
    db: Session = Depends(get_db),
    storage=Depends(get_image_storage),
    resolver: DuplicateResolver = Depends(get_duplicate_resolver),
    dispatch_analysis=Depends(get_analysis_dispatcher)
) -> ReportService:
    return ReportService(db, storage=storage, resolver=resolver, dispatch_analysis=dispatch_analysis)
