import json
import logging
from typing import Optional
from sqlalchemy.orm import Session
from civic_reports.exceptions import ExternalServiceError
from civic_reports.models.analysis import ModelAnalysis
from civic_reports.models.report import Report, ReportCategory
from civic_reports.utils.model_client import ModelApiClient, Prediction, PredictionFailure, PredictionSuccess

logger = logging.getLogger(__name__)

MIN_DETECTION_CONFIDENCE = 0.5

# Detection labels that count as evidence for each category
CATEGORY_LABELS = {
    ReportCategory.ROAD_ISSUE.value: {"pothole", "crack", "road_damage"},
    ReportCategory.GARBAGE.value: {"garbage", "trash", "litter", "waste"},
    ReportCategory.STREET_LIGHT.value: {"streetlight", "street_light", "lamp"},
    ReportCategory.WATER_LEAK.value: {"water_leak", "leak", "puddle"},
}


def evaluate_prediction(prediction: Prediction, category: str) -> bool:
    """
    Does the model output confirm the reported issue?

    - failure: never
    - detections present: any label for the category above MIN_DETECTION_CONFIDENCE
    - no detection list but a positive count: single-class model, confirmed
    """
    if isinstance(prediction, PredictionFailure):
        return False
    if isinstance(prediction, PredictionSuccess):
        if prediction.detections:
            labels = CATEGORY_LABELS.get(category, set())
            return any(
                d.label.lower() in labels and d.confidence > MIN_DETECTION_CONFIDENCE
                for d in prediction.detections
            )
        return prediction.count > 0
    raise TypeError(f"Unexpected prediction type: {type(prediction).__name__}")


def analyze_report_image(
    db: Session,
    report_id: str,
    image_data: bytes,
    filename: str,
    content_type: str,
    client: Optional[ModelApiClient] = None
) -> ModelAnalysis:
    """
    Run the detection model on a report image and store the outcome.

    Model failures are stored as failure rows and logged; they are never raised.
    """
    client = client or ModelApiClient()
    report = db.query(Report).filter(Report.id == report_id).first()
    category = report.category if report else ReportCategory.OTHER.value

    try:
        prediction = client.predict(image_data, filename, content_type)
    except ExternalServiceError as e:
        logger.error("Failed to analyze image for report %s: %s", report_id, e)
        prediction = PredictionFailure(reason=str(e))

    analysis = ModelAnalysis(report_id=report_id, original_filename=filename)
    if isinstance(prediction, PredictionSuccess):
        analysis.outcome = "success"
        analysis.detections = json.dumps([
            {"class": d.label, "confidence": d.confidence, "bbox": list(d.bbox)} for d in prediction.detections
        ])
        analysis.detection_count = prediction.count
        analysis.annotated_image = prediction.annotated_image
    else:
        analysis.outcome = "failure"
        analysis.failure_reason = prediction.reason
    analysis.is_confirmed_issue = evaluate_prediction(prediction, category)

    db.add(analysis)
    db.commit()
    db.refresh(analysis)
    logger.info(
        "Model analysis stored for report %s: outcome=%s confirmed=%s",
        report_id, analysis.outcome, analysis.is_confirmed_issue
    )
    return analysis


def get_latest_analysis(db: Session, report_id: str) -> Optional[ModelAnalysis]:
    return db.query(ModelAnalysis).filter(
        ModelAnalysis.report_id == report_id
    ).order_by(ModelAnalysis.processed_at.desc(), ModelAnalysis.id.desc()).first()


def check_model_health(client: Optional[ModelApiClient] = None) -> bool:
    client = client or ModelApiClient()
    try:
        client.health()
        return True
    except ExternalServiceError as e:
        logger.warning("Model API health check failed: %s", e)
        return False
