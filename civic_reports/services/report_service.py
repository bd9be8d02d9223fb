import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session
from civic_reports.exceptions import (
    InvalidStatusTransitionError,
    MergeInvariantError,
    PermissionDeniedError,
    ReportNotFoundError,
    ReportValidationError,
    TransientStoreError,
)
from civic_reports.models.activity import Activity, ActivityType
from civic_reports.models.comment import Comment
from civic_reports.models.report import Report, ReportCategory, ReportStatus
from civic_reports.models.upvote import Upvote
from civic_reports.models.user import User, ROLE_AUTHORITY
from civic_reports.services.dedup_service import DuplicateResolver, ReportDraft
from civic_reports.services.merge_service import merge_reports
from civic_reports.services.proximity import validate_coordinates
from civic_reports.utils.image_hash import compute_image_hash

logger = logging.getLogger(__name__)

# Allowed manual status changes; ARCHIVED is only reachable through a merge
STATUS_TRANSITIONS = {
    ReportStatus.PENDING.value: {ReportStatus.IN_PROGRESS.value, ReportStatus.RESOLVED.value},
    ReportStatus.IN_PROGRESS.value: {ReportStatus.RESOLVED.value},
    ReportStatus.RESOLVED.value: set(),
    ReportStatus.ARCHIVED.value: set(),
}


@dataclass
class CreateReportResult:
    report: Report
    is_duplicate: bool
    original: Optional[Report] = None
    merged: bool = False


def _validate_category(category) -> str:
    value = getattr(category, "value", category)
    if value not in {c.value for c in ReportCategory}:
        raise ReportValidationError(f"Unknown category: {category}")
    return value


class ReportService:
    """
    Report lifecycle: creation with duplicate detection, status changes,
    comments, upvotes and the activity timeline.

    Collaborators are passed in; nothing is looked up from module state.
    """

    def __init__(
        self,
        db: Session,
        storage=None,
        resolver: Optional[DuplicateResolver] = None,
        dispatch_analysis: Optional[Callable[[str, bytes, str, str], None]] = None
    ):
        self.db = db
        self.storage = storage
        self.resolver = resolver or DuplicateResolver()
        self.dispatch_analysis = dispatch_analysis

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_report(
        self,
        creator_id: str,
        title: str,
        description: Optional[str],
        image_data: bytes,
        content_type: str,
        location: Sequence[float],
        category
    ) -> CreateReportResult:
        """
        Create a report, folding it into an existing one when it is a duplicate.

        Parameters:
            creator_id: verified user id
            title / description: report text
            image_data: photo bytes
            content_type: photo MIME type
            location: (latitude, longitude)
            category: ReportCategory value

        Returns:
            CreateReportResult: the stored submission, whether it was a duplicate,
                                and the (updated) original it was merged into

        Raises:
            ReportValidationError: bad coordinates, category, title or image
            ExternalServiceError: the image upload failed
            TransientStoreError: the database failed; nothing was committed
        """
        # 1. Validate before touching storage
        if not title or not title.strip():
            raise ReportValidationError("Title is required")
        if location is None or len(location) != 2:
            raise ReportValidationError("Location must be [latitude, longitude]")
        validate_coordinates(location[0], location[1])
        latitude, longitude = float(location[0]), float(location[1])
        category = _validate_category(category)
        image_hash = compute_image_hash(image_data)

        # 2. Upload the photo
        image_url = self.storage.upload(image_data, content_type, folder="reports")

        # 3. Duplicate check
        draft = ReportDraft(
            title=title,
            description=description,
            latitude=latitude,
            longitude=longitude,
            category=category,
            image_hash=image_hash
        )
        verdict = self.resolver.resolve(self.db, draft)

        if verdict.is_duplicate:
            stale_id = verdict.original.id
            try:
                return self._create_as_duplicate(creator_id, draft, image_url, verdict.original)
            except MergeInvariantError:
                # The chosen original was merged away after resolve(); the merge rolled back
                logger.warning("Report %s is no longer an original, resolving again", stale_id)
                verdict = self.resolver.resolve(self.db, draft)
                if verdict.is_duplicate:
                    return self._create_as_duplicate(creator_id, draft, image_url, verdict.original)
        return self._create_original(creator_id, draft, image_url, image_data, content_type)

    def _create_as_duplicate(self, creator_id: str, draft: ReportDraft, image_url: str, original: Report):
        """Store the submission already archived, then merge it in the same transaction"""
        try:
            duplicate = Report(
                title=draft.title,
                description=draft.description,
                latitude=draft.latitude,
                longitude=draft.longitude,
                category=draft.category,
                status=ReportStatus.ARCHIVED.value,
                is_duplicate=True,
                original_report_id=original.id,
                creator_id=creator_id
            )
            duplicate.image_urls = [image_url]
            duplicate.image_hashes = [draft.image_hash]
            self.db.add(duplicate)
            self.db.flush()

            self.db.add(Activity(
                report_id=duplicate.id,
                type=ActivityType.CREATED.value,
                content=f'Report "{draft.title}" was created and identified as a duplicate',
                actor_id=creator_id
            ))
            self.db.flush()
        except OperationalError as e:
            self.db.rollback()
            raise TransientStoreError(f"Could not store report: {e}") from e

        duplicate_id = duplicate.id
        updated_original = merge_reports(self.db, duplicate_id, original.id, actor_id=creator_id)
        stored = self.db.query(Report).filter(Report.id == duplicate_id).first()

        return CreateReportResult(report=stored, is_duplicate=True, original=updated_original, merged=True)

    def _create_original(self, creator_id: str, draft: ReportDraft, image_url: str, image_data: bytes, content_type: str):
        try:
            report = Report(
                title=draft.title,
                description=draft.description,
                latitude=draft.latitude,
                longitude=draft.longitude,
                category=draft.category,
                status=ReportStatus.PENDING.value,
                creator_id=creator_id
            )
            report.image_urls = [image_url]
            report.image_hashes = [draft.image_hash]
            self.db.add(report)
            self.db.flush()

            # Creator's own vote
            self.db.add(Upvote(report_id=report.id, user_id=creator_id))
            self.db.add(Activity(
                report_id=report.id,
                type=ActivityType.CREATED.value,
                content=f'Report "{draft.title}" was created',
                actor_id=creator_id
            ))
            self.db.commit()
        except OperationalError as e:
            self.db.rollback()
            raise TransientStoreError(f"Could not store report: {e}") from e
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(report)
        logger.info("Created report %s (%s) at (%s, %s)", report.id, report.category, report.latitude, report.longitude)

        # Fire-and-forget detection model run; never affects the response
        if self.dispatch_analysis is not None:
            filename = f"report-{report.id}.{content_type.split('/')[-1]}"
            try:
                self.dispatch_analysis(report.id, image_data, filename, content_type)
            except Exception:
                logger.exception("Failed to dispatch image analysis for report %s", report.id)

        return CreateReportResult(report=report, is_duplicate=False, merged=False)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_report(self, report_id: str) -> Report:
        report = self.db.query(Report).filter(Report.id == report_id).first()
        if report is None:
            raise ReportNotFoundError(report_id)
        return report

    def list_reports(self, include_archived: bool = False) -> List[Report]:
        query = self.db.query(Report)
        if not include_archived:
            query = query.filter(Report.is_duplicate.is_(False))
        return query.order_by(Report.created_at.desc()).all()

    def get_unresolved_reports(self) -> List[Report]:
        return self.db.query(Report).filter(
            Report.status == ReportStatus.PENDING.value
        ).order_by(Report.created_at.desc()).all()

    def get_user_reports(self, user_id: str, resolved: Optional[bool] = None) -> List[Report]:
        """All of a user's reports, or only resolved / only unresolved ones"""
        query = self.db.query(Report).filter(Report.creator_id == user_id)
        if resolved is True:
            query = query.filter(Report.status == ReportStatus.RESOLVED.value)
        elif resolved is False:
            query = query.filter(Report.status.in_([ReportStatus.PENDING.value, ReportStatus.IN_PROGRESS.value]))
        return query.order_by(Report.created_at.desc()).all()

    def get_upvote_count(self, report_id: str) -> int:
        return self.db.query(func.count(Upvote.id)).filter(Upvote.report_id == report_id).scalar() or 0

    def get_report_activities(self, report_id: str) -> List[Activity]:
        self.get_report(report_id)
        return self.db.query(Activity).filter(
            Activity.report_id == report_id
        ).order_by(Activity.created_at.desc(), Activity.id.desc()).all()

    def get_comments(self, report_id: str) -> List[Comment]:
        self.get_report(report_id)
        return self.db.query(Comment).filter(
            Comment.report_id == report_id
        ).order_by(Comment.created_at.asc(), Comment.id.asc()).all()

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def update_report(self, report_id: str, actor_id: str, title: Optional[str], description: Optional[str]) -> Report:
        """Edit title/description; only the creator may do this"""
        report = self.get_report(report_id)
        if report.creator_id != actor_id:
            raise PermissionDeniedError("Only the creator can edit this report")
        if title is not None:
            if not title.strip():
                raise ReportValidationError("Title cannot be empty")
            report.title = title
        if description is not None:
            report.description = description
        self.db.commit()
        self.db.refresh(report)
        return report

    def update_status(self, report_id: str, new_status, actor_id: Optional[str] = None) -> Report:
        """
        Move a report along PENDING -> IN_PROGRESS -> RESOLVED.

        Raises:
            InvalidStatusTransitionError: the move is not allowed (including anything to ARCHIVED)
        """
        new_status = getattr(new_status, "value", new_status)
        report = self.get_report(report_id)
        allowed = STATUS_TRANSITIONS.get(report.status, set())
        if new_status not in allowed:
            raise InvalidStatusTransitionError(report.status, new_status)

        previous = report.status
        report.status = new_status
        if new_status == ReportStatus.RESOLVED.value:
            activity_type = ActivityType.MARKED_RESOLVED.value
            content = "Report has been marked as resolved"
        else:
            activity_type = ActivityType.STATUS_UPDATED.value
            content = f"Status changed from {previous} to {new_status}"
        self.db.add(Activity(report_id=report.id, type=activity_type, content=content, actor_id=actor_id))
        self.db.commit()
        self.db.refresh(report)
        logger.info("Report %s status %s -> %s", report.id, previous, new_status)
        return report

    def mark_resolved(self, report_id: str, actor_id: Optional[str] = None) -> Report:
        return self.update_status(report_id, ReportStatus.RESOLVED, actor_id)

    def add_comment(self, report_id: str, user_id: str, text: str) -> Comment:
        if not text or not text.strip():
            raise ReportValidationError("Comment text is required")
        report = self.get_report(report_id)

        user = self.db.query(User).filter(User.id == user_id).first()
        is_authority = user is not None and user.role == ROLE_AUTHORITY

        comment = Comment(report_id=report.id, user_id=user_id, text=text)
        self.db.add(comment)
        self.db.add(Activity(
            report_id=report.id,
            type=(ActivityType.AUTHORITY_COMMENTED if is_authority else ActivityType.COMMENT_ADDED).value,
            content=("An authority commented: " if is_authority else "New comment: ") + text[:200],
            actor_id=user_id
        ))
        self.db.commit()
        self.db.refresh(comment)
        return comment

    def upvote_report(self, report_id: str, user_id: str) -> Optional[Upvote]:
        """
        Register a user's vote.

        Returns:
            Upvote: the new vote; None when the user had already voted (safe no-op)
        """
        report = self.get_report(report_id)
        # Votes for a merged duplicate count for its original
        if report.is_duplicate and report.original_report_id:
            report = self.get_report(report.original_report_id)

        already = self.db.query(Upvote).filter(
            Upvote.report_id == report.id,
            Upvote.user_id == user_id
        ).first()
        if already:
            return None

        upvote = Upvote(report_id=report.id, user_id=user_id)
        self.db.add(upvote)
        try:
            self.db.commit()
        except IntegrityError:
            # Lost a race with a concurrent vote from the same user
            self.db.rollback()
            return None
        self.db.refresh(upvote)
        return upvote
