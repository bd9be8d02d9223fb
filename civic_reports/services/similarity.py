"""
Similarity scoring between a new submission and an existing report.

Pure functions, no database or network access.
"""
from typing import Iterable, Optional, Set
from civic_reports.exceptions import ReportValidationError

IMAGE_WEIGHT = 0.7
TEXT_WEIGHT = 0.3


def compare_hashes(hash1: str, hash2: str) -> float:
    """
    Position-by-position comparison of two fixed-length perceptual hashes.

    Returns:
        float: matching characters / hash length; 0.0 when the lengths differ
               (different hash schemes) or either hash is empty
    """
    if not hash1 or not hash2 or len(hash1) != len(hash2):
        return 0.0

    matches = sum(1 for a, b in zip(hash1, hash2) if a == b)
    return matches / len(hash1)


def image_similarity(new_hash: str, existing_hashes: Iterable[str]) -> float:
    """Best match against every hash the candidate has accumulated through merges"""
    best = 0.0
    for existing in existing_hashes or []:
        best = max(best, compare_hashes(new_hash, existing))
    return best


def tokenize(text: str) -> Set[str]:
    if not text:
        return set()
    return set(text.lower().split())


def jaccard_similarity(set1: Set[str], set2: Set[str]) -> float:
    union = set1 | set2
    if not union:
        return 0.0
    return len(set1 & set2) / len(union)


def text_similarity(title1: str, description1: Optional[str], title2: str, description2: Optional[str]) -> float:
    text1 = f"{title1 or ''} {description1 or ''}"
    text2 = f"{title2 or ''} {description2 or ''}"
    return jaccard_similarity(tokenize(text1), tokenize(text2))


def score(new_hash: str, new_title: str, new_description: Optional[str], candidate) -> float:
    """
    Weighted similarity between a submission and a candidate report.

    Parameters:
        new_hash: perceptual hash of the submitted image
        new_title: submitted title
        new_description: submitted description (optional)
        candidate: existing Report (image_hashes, title, description)

    Returns:
        float: 0.7 * image similarity + 0.3 * text similarity, within [0, 1]

    Raises:
        ReportValidationError: when the submission carries no image hash
    """
    if not new_hash:
        raise ReportValidationError("Image hash is required for similarity scoring")

    image_sim = image_similarity(new_hash, candidate.image_hashes)
    text_sim = text_similarity(new_title, new_description, candidate.title, candidate.description)
    return IMAGE_WEIGHT * image_sim + TEXT_WEIGHT * text_sim
