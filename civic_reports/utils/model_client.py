import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple, Union
import requests
from civic_reports.config import settings
from civic_reports.exceptions import ExternalServiceError

logger = logging.getLogger(__name__)


@dataclass
class Detection:
    label: str
    confidence: float
    bbox: Tuple[float, float, float, float]  # x1, y1, x2, y2


@dataclass
class PredictionSuccess:
    detections: List[Detection] = field(default_factory=list)
    count: int = 0
    annotated_image: Optional[str] = None


@dataclass
class PredictionFailure:
    reason: str


Prediction = Union[PredictionSuccess, PredictionFailure]


def parse_prediction(payload: dict) -> Prediction:
    """Turn the model's JSON body into a PredictionSuccess / PredictionFailure"""
    if not isinstance(payload, dict):
        return PredictionFailure(reason="Model returned a non-object body")
    if not payload.get("success", False):
        return PredictionFailure(reason=str(payload.get("message") or payload.get("error") or "Model reported failure"))

    detections = []
    for item in payload.get("detections") or []:
        try:
            box = item.get("bbox") or {}
            detections.append(Detection(
                label=str(item["class"]),
                confidence=float(item["confidence"]),
                bbox=(float(box.get("x1", 0)), float(box.get("y1", 0)), float(box.get("x2", 0)), float(box.get("y2", 0)))
            ))
        except (KeyError, TypeError, ValueError):
            logger.warning("Skipping malformed detection: %r", item)

    count = payload.get("count")
    return PredictionSuccess(
        detections=detections,
        count=int(count) if isinstance(count, (int, float)) else len(detections),
        annotated_image=payload.get("annotated_image")
    )


class ModelApiClient:
    """HTTP client for the issue-detection model"""

    def __init__(self, base_url: str = None, timeout: int = None):
        self.base_url = (base_url or settings.MODEL_API_URL).rstrip("/")
        self.timeout = timeout or settings.MODEL_TIMEOUT_SECONDS

    def health(self) -> dict:
        try:
            response = requests.get(f"{self.base_url}/health", timeout=10)
            response.raise_for_status()
            return response.json()
        except requests.exceptions.RequestException as e:
            raise ExternalServiceError(f"Model health check failed: {e}") from e
        except ValueError as e:
            raise ExternalServiceError("Model health check returned invalid JSON") from e

    def predict(
        self,
        image_data: bytes,
        filename: str,
        content_type: str,
        conf_threshold: float = None
    ) -> Prediction:
        """
        Run the detection model on an image.

        Parameters:
            image_data: image bytes
            filename: file name sent with the multipart upload
            content_type: MIME type
            conf_threshold: minimum detection confidence

        Returns:
            Prediction: PredictionSuccess or PredictionFailure (model answered but could not predict)

        Raises:
            ExternalServiceError: timeout, connection failure, HTTP error or invalid JSON
        """
        conf_threshold = settings.MODEL_CONF_THRESHOLD if conf_threshold is None else conf_threshold
        try:
            response = requests.post(
                url=f"{self.base_url}/predict",
                files={"file": (filename, image_data, content_type)},
                params={"conf_threshold": conf_threshold},
                timeout=self.timeout
            )
            if response.status_code == 422:
                return PredictionFailure(reason=f"Validation error: {response.text}")
            response.raise_for_status()
            return parse_prediction(response.json())

        except requests.exceptions.Timeout as e:
            raise ExternalServiceError("Model API timed out") from e
        except requests.exceptions.ConnectionError as e:
            raise ExternalServiceError("Model API is unreachable") from e
        except requests.exceptions.HTTPError as e:
            raise ExternalServiceError(f"Prediction failed: {e}") from e
        except ValueError as e:
            raise ExternalServiceError("Model API returned invalid JSON") from e
