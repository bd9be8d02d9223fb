import base64
import logging
from civic_reports.tasks.celery_app import celery_app
from civic_reports.utils.db import SessionLocal
from civic_reports.services.analysis_service import analyze_report_image

logger = logging.getLogger(__name__)


@celery_app.task(name="civic_reports.analyze_report_image")
def analyze_report_image_task(report_id: str, image_b64: str, filename: str, content_type: str):
    """Background detection-model run for a newly created report"""
    db = SessionLocal()
    try:
        analysis = analyze_report_image(
            db,
            report_id=report_id,
            image_data=base64.b64decode(image_b64),
            filename=filename,
            content_type=content_type
        )
        return analysis.id
    except Exception:
        logger.exception("Image analysis task failed for report %s", report_id)
        db.rollback()
        return None
    finally:
        db.close()


def dispatch_image_analysis(report_id: str, image_data: bytes, filename: str, content_type: str) -> None:
    """Queue the analysis without waiting for it"""
    analyze_report_image_task.delay(
        report_id=report_id,
        image_b64=base64.b64encode(image_data).decode("ascii"),
        filename=filename,
        content_type=content_type
    )
