"""
Duplicate resolution for new submissions.

A resolver looks up open reports near the submission (proximity finder) and
hands them to a policy that decides which one, if any, is the same issue:

- CategoryRadiusPolicy: same category inside the radius; the earliest report wins.
- SimilarityThresholdPolicy: weighted image/text similarity above a threshold.

One policy is chosen per deployment (settings.DEDUP_POLICY).
"""
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence
from sqlalchemy.orm import Session
from civic_reports.config import settings
from civic_reports.models.report import Report
from civic_reports.services import similarity
from civic_reports.services.proximity import find_candidates

logger = logging.getLogger(__name__)

POLICY_CATEGORY_RADIUS = "category_radius"
POLICY_SIMILARITY = "similarity"


@dataclass
class ReportDraft:
    """A submission that has not been persisted yet"""
    title: str
    latitude: float
    longitude: float
    category: str
    description: Optional[str] = None
    image_hash: Optional[str] = None


@dataclass
class Verdict:
    is_duplicate: bool
    original: Optional[Report] = None
    similarity: Optional[float] = None


NO_DUPLICATE = Verdict(is_duplicate=False)


class CategoryRadiusPolicy:
    """Any open report of the same category inside the radius is the same issue"""
    name = POLICY_CATEGORY_RADIUS
    filters_by_category = True

    def decide(self, candidates: Sequence[Report], draft: ReportDraft) -> Verdict:
        category = getattr(draft.category, "value", draft.category)
        matches = [c for c in candidates if c.category == category]
        if not matches:
            return NO_DUPLICATE

        original = min(matches, key=lambda c: (c.created_at, c.id))
        return Verdict(is_duplicate=True, original=original)


class SimilarityThresholdPolicy:
    """The most similar nearby report is the same issue if its score reaches the threshold"""
    name = POLICY_SIMILARITY
    filters_by_category = False

    def __init__(self, threshold: float = 0.85):
        if not 0 < threshold <= 1:
            raise ValueError(f"Similarity threshold must be within (0, 1], got {threshold}")
        self.threshold = threshold

    def decide(self, candidates: Sequence[Report], draft: ReportDraft) -> Verdict:
        best, best_score = None, -1.0
        for candidate in candidates:
            candidate_score = similarity.score(draft.image_hash, draft.title, draft.description, candidate)
            if candidate_score > best_score:
                best, best_score = candidate, candidate_score

        if best is None or best_score < self.threshold:
            return Verdict(is_duplicate=False, similarity=max(best_score, 0.0))
        return Verdict(is_duplicate=True, original=best, similarity=best_score)


def build_policy(name: Optional[str] = None, threshold: Optional[float] = None):
    """Policy for the configured deployment; unknown names fail at startup"""
    name = name or settings.DEDUP_POLICY
    if name == POLICY_CATEGORY_RADIUS:
        return CategoryRadiusPolicy()
    if name == POLICY_SIMILARITY:
        return SimilarityThresholdPolicy(settings.SIMILARITY_THRESHOLD if threshold is None else threshold)
    raise ValueError(f"Unknown dedup policy: {name}")


class DuplicateResolver:
    def __init__(self, policy=None, radius_m: Optional[float] = None):
        self.policy = policy or build_policy()
        self.radius_m = settings.DEDUP_RADIUS_METERS if radius_m is None else radius_m

    def find_candidates(self, db: Session, draft: ReportDraft) -> List[Report]:
        category = draft.category if self.policy.filters_by_category else None
        return find_candidates(db, draft.latitude, draft.longitude, category=category, radius_m=self.radius_m)

    def resolve(self, db: Session, draft: ReportDraft, exclude_id: Optional[str] = None) -> Verdict:
        """
        Decide whether a submission duplicates an existing open report.

        Parameters:
            db: database session
            draft: the submission
            exclude_id: report to leave out of the candidates (re-checking a stored report)

        Returns:
            Verdict: is_duplicate plus the canonical original when it is one
        """
        candidates = self.find_candidates(db, draft)
        if exclude_id is not None:
            candidates = [c for c in candidates if c.id != exclude_id]

        # Common case: nothing nearby
        if not candidates:
            return NO_DUPLICATE

        verdict = self.policy.decide(candidates, draft)
        if verdict.is_duplicate:
            assert not verdict.original.is_duplicate, "duplicate selected as original"
            logger.info(
                "Submission at (%s, %s) duplicates report %s (policy=%s, similarity=%s)",
                draft.latitude, draft.longitude, verdict.original.id, self.policy.name, verdict.similarity
            )
        return verdict
