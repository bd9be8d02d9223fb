import math
import logging
from typing import List, Optional, Tuple
from sqlalchemy.orm import Session
from civic_reports.config import settings
from civic_reports.exceptions import ReportValidationError
from civic_reports.models.report import Report, ReportStatus

logger = logging.getLogger(__name__)

EARTH_RADIUS_M = 6371008.8  # mean Earth radius
CLOSED_STATUSES = (ReportStatus.RESOLVED.value, ReportStatus.ARCHIVED.value)


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in meters"""
    p1, p2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dl = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2) ** 2 + math.cos(p1) * math.cos(p2) * math.sin(dl / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(a)))


def validate_coordinates(latitude, longitude) -> None:
    """Raise ReportValidationError for anything that is not a valid WGS84 point. (0, 0) is valid."""
    try:
        lat = float(latitude)
        lon = float(longitude)
    except (TypeError, ValueError):
        raise ReportValidationError("Latitude and longitude must be numbers")

    if not (math.isfinite(lat) and math.isfinite(lon)):
        raise ReportValidationError("Latitude and longitude must be finite")
    if lat < -90 or lat > 90:
        raise ReportValidationError("Latitude must be between -90 and 90")
    if lon < -180 or lon > 180:
        raise ReportValidationError("Longitude must be between -180 and 180")


def _bounding_box(query, latitude: float, longitude: float, radius_m: float):
    """Narrow the query to a lat/lon box around the point; exact distance is checked afterwards"""
    # 1. Latitude band (slightly padded)
    dlat = math.degrees(radius_m / EARTH_RADIUS_M) * 1.01
    min_lat, max_lat = latitude - dlat, latitude + dlat
    query = query.filter(Report.latitude >= min_lat, Report.latitude <= max_lat)

    # 2. Longitude band, dropped near the poles and across the antimeridian
    if min_lat <= -90 or max_lat >= 90:
        return query
    dlon = math.degrees(radius_m / (EARTH_RADIUS_M * math.cos(math.radians(latitude)))) * 1.01
    min_lon, max_lon = longitude - dlon, longitude + dlon
    if min_lon < -180 or max_lon > 180:
        return query
    return query.filter(Report.longitude >= min_lon, Report.longitude <= max_lon)


def find_candidates(
    db: Session,
    latitude: float,
    longitude: float,
    category: Optional[str] = None,
    radius_m: Optional[float] = None
) -> List[Report]:
    """
    Open, non-duplicate reports within the dedup radius of a point.

    Parameters:
        db: database session
        latitude / longitude: query point (WGS84 degrees)
        category: only return reports of this category (optional)
        radius_m: search radius in meters, defaults to settings.DEDUP_RADIUS_METERS

    Returns:
        List[Report]: ordered by creation time ascending (ties by id)
    """
    validate_coordinates(latitude, longitude)
    latitude, longitude = float(latitude), float(longitude)
    radius_m = settings.DEDUP_RADIUS_METERS if radius_m is None else radius_m
    if radius_m <= 0:
        raise ValueError(f"Dedup radius must be positive, got {radius_m}")

    query = db.query(Report).filter(
        Report.status.notin_(CLOSED_STATUSES),
        Report.is_duplicate.is_(False)
    )
    if category is not None:
        query = query.filter(Report.category == getattr(category, "value", category))
    query = _bounding_box(query, latitude, longitude, radius_m)

    candidates = [
        report for report in query.order_by(Report.created_at.asc(), Report.id.asc()).all()
        if haversine_m(latitude, longitude, report.latitude, report.longitude) <= radius_m
    ]
    logger.debug("Found %d dedup candidates within %.1fm of (%s, %s)", len(candidates), radius_m, latitude, longitude)
    return candidates


def find_nearby_reports(
    db: Session,
    latitude: float,
    longitude: float,
    radius_km: float = 5
) -> List[Tuple[Report, float]]:
    """
    Public "reports near me" listing.

    Returns:
        List[Tuple[Report, float]]: (report, distance in km rounded to 2 places), nearest first.
        Resolved reports and archived duplicates are excluded.
    """
    validate_coordinates(latitude, longitude)
    latitude, longitude = float(latitude), float(longitude)
    if radius_km < 0.1 or radius_km > 100:
        raise ReportValidationError("Radius must be between 0.1 and 100 kilometers")

    radius_m = radius_km * 1000
    query = db.query(Report).filter(
        Report.status != ReportStatus.RESOLVED.value,
        Report.is_duplicate.is_(False)
    )
    query = _bounding_box(query, latitude, longitude, radius_m)

    results = []
    for report in query.all():
        distance = haversine_m(latitude, longitude, report.latitude, report.longitude)
        if distance <= radius_m:
            results.append((report, round(distance / 1000, 2)))

    results.sort(key=lambda item: item[1])
    return results
