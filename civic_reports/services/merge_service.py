import logging
from datetime import datetime
from typing import Optional
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session
from civic_reports.exceptions import (
    AlreadyMergedError,
    InvalidStatusTransitionError,
    MergeInvariantError,
    ReportNotFoundError,
    ReportValidationError,
    TransientStoreError,
)
from civic_reports.models.activity import Activity, ActivityType
from civic_reports.models.report import Report, ReportStatus
from civic_reports.models.upvote import Upvote

logger = logging.getLogger(__name__)


def _lock_reports(db: Session, *report_ids: str) -> dict:
    """SELECT ... FOR UPDATE on the given reports, always in id order"""
    rows = db.query(Report).filter(
        Report.id.in_(report_ids)
    ).order_by(Report.id).with_for_update().populate_existing().all()
    return {row.id: row for row in rows}


def _repoint_upvotes(db: Session, duplicate_id: str, original_id: str) -> int:
    """Move the duplicate's votes onto the original, dropping votes the original already has"""
    # 1. Users who voted on both keep their single vote on the original
    voters_on_original = [
        user_id for (user_id,) in db.query(Upvote.user_id).filter(Upvote.report_id == original_id).all()
    ]
    if voters_on_original:
        db.query(Upvote).filter(
            Upvote.report_id == duplicate_id,
            Upvote.user_id.in_(voters_on_original)
        ).delete(synchronize_session=False)

    # 2. Everything left is re-pointed
    return db.query(Upvote).filter(
        Upvote.report_id == duplicate_id
    ).update({Upvote.report_id: original_id}, synchronize_session=False)


def _repoint_absorbed_duplicates(db: Session, duplicate_id: str, original_id: str) -> int:
    """Duplicates previously folded into duplicate_id now point at original_id (no chains)"""
    return db.query(Report).filter(
        Report.original_report_id == duplicate_id,
        Report.id != duplicate_id
    ).update({Report.original_report_id: original_id}, synchronize_session=False)


def merge_reports(db: Session, duplicate_id: str, original_id: str, actor_id: Optional[str] = None) -> Report:
    """
    Fold a duplicate report into its original in a single transaction.

    Parameters:
        db: database session (any pending work in it commits together with the merge)
        duplicate_id: report being archived
        original_id: canonical report absorbing the duplicate
        actor_id: user performing the merge, None for a system merge

    Returns:
        Report: the updated original

    Raises:
        ReportValidationError: both ids are the same
        ReportNotFoundError: either report does not exist
        AlreadyMergedError: the duplicate has already been merged
        MergeInvariantError: the original is itself an archived duplicate
        InvalidStatusTransitionError: the duplicate is RESOLVED (terminal)
        TransientStoreError: the database failed mid-transaction (nothing is committed)
    """
    if duplicate_id == original_id:
        raise ReportValidationError("A report cannot be merged into itself")

    try:
        # 1. Lock both rows and check preconditions
        locked = _lock_reports(db, duplicate_id, original_id)
        duplicate = locked.get(duplicate_id)
        original = locked.get(original_id)
        if duplicate is None:
            raise ReportNotFoundError(duplicate_id)
        if original is None:
            raise ReportNotFoundError(original_id)
        if duplicate.merged_at is not None:
            raise AlreadyMergedError(duplicate_id, duplicate.original_report_id)
        if original.is_duplicate or original.status == ReportStatus.ARCHIVED:
            raise MergeInvariantError(f"Report {original_id} is archived and cannot absorb duplicates")
        if duplicate.status == ReportStatus.RESOLVED:
            raise InvalidStatusTransitionError(duplicate.status, ReportStatus.ARCHIVED.value)

        # 2. Archive the duplicate
        now = datetime.now()
        duplicate.status = ReportStatus.ARCHIVED.value
        duplicate.is_duplicate = True
        duplicate.original_report_id = original_id
        duplicate.merged_at = now

        # 3. Its own duplicates move along with it
        absorbed = _repoint_absorbed_duplicates(db, duplicate_id, original_id)
        duplicate.duplicate_count = 0

        # 4. Fold images into the original, original's first
        original.image_urls = original.image_urls + duplicate.image_urls
        original.image_hashes = original.image_hashes + duplicate.image_hashes
        original.duplicate_count = Report.duplicate_count + 1 + absorbed

        # 5. Upvotes follow the issue
        moved = _repoint_upvotes(db, duplicate_id, original_id)

        # 6. Timeline entries on both reports
        db.add_all([
            Activity(
                report_id=original_id,
                type=ActivityType.ADDED_DUPLICATE.value,
                content=f"Duplicate report {duplicate_id} was merged into this report",
                actor_id=actor_id,
                created_at=now
            ),
            Activity(
                report_id=duplicate_id,
                type=ActivityType.MARKED_AS_DUPLICATE.value,
                content=f"Report marked as duplicate of {original_id}",
                actor_id=actor_id,
                created_at=now
            ),
        ])

        db.commit()
    except OperationalError as e:
        db.rollback()
        logger.error("Merge of %s into %s failed: %s", duplicate_id, original_id, e)
        raise TransientStoreError(f"Merge failed, nothing was committed: {e}") from e
    except Exception:
        db.rollback()
        raise

    db.refresh(original)
    logger.info(
        "Merged report %s into %s (upvotes moved: %d, duplicate_count=%d, actor=%s)",
        duplicate_id, original_id, moved, original.duplicate_count, actor_id or "system"
    )
    return original
