from types import SimpleNamespace

import pytest

from civic_reports.exceptions import ReportValidationError
from civic_reports.services import similarity


def _candidate(title="Pothole on main road", description="Deep pothole", hashes=("ffff0000ffff0000",)):
    return SimpleNamespace(title=title, description=description, image_hashes=list(hashes))


class TestCompareHashes:

    def test_identical_hashes_are_fully_similar(self):
        assert similarity.compare_hashes("a1b2c3d4e5f60718", "a1b2c3d4e5f60718") == 1.0

    def test_counts_matching_positions(self):
        assert similarity.compare_hashes("aaaa", "aabb") == 0.5

    def test_length_mismatch_is_zero(self):
        assert similarity.compare_hashes("aaaa", "aaaaaaaa") == 0.0
        assert similarity.compare_hashes("aaaaaaaa", "aaaa") == 0.0

    def test_empty_hash_is_zero(self):
        assert similarity.compare_hashes("", "") == 0.0


class TestImageSimilarity:

    def test_uses_best_historical_hash(self):
        hashes = ["00000000", "ffff0000", "ffffffff"]
        assert similarity.image_similarity("ffffffff", hashes) == 1.0

    def test_no_hashes_is_zero(self):
        assert similarity.image_similarity("ffffffff", []) == 0.0


class TestTextSimilarity:

    def test_disjoint_tokens_are_zero(self):
        assert similarity.text_similarity("broken light", "dark street", "garbage pile", "smells bad") == 0.0

    def test_case_insensitive_jaccard(self):
        # {pothole, here} vs {pothole, there} -> 1 / 3
        assert similarity.text_similarity("Pothole", "here", "pothole", "THERE") == pytest.approx(1 / 3)

    def test_empty_text_is_zero_not_division_error(self):
        assert similarity.text_similarity("", None, "", None) == 0.0

    def test_missing_description_is_tolerated(self):
        assert similarity.text_similarity("pothole", None, "pothole", None) == 1.0


class TestScore:

    def test_weighted_combination(self):
        candidate = _candidate(title="pothole", description=None, hashes=["ffff0000"])
        # image 1.0, text 1.0
        assert similarity.score("ffff0000", "pothole", None, candidate) == pytest.approx(1.0)
        # image 0.5, text 0.0
        assert similarity.score("ffffffff", "garbage", None, candidate) == pytest.approx(0.35)

    def test_score_is_bounded(self):
        candidate = _candidate()
        value = similarity.score("1234", "anything at all", "really", candidate)
        assert 0.0 <= value <= 1.0

    def test_hash_scheme_mismatch_only_uses_text(self):
        candidate = _candidate(title="pothole", description=None, hashes=["ffff0000ffff0000"])
        assert similarity.score("ffff", "pothole", None, candidate) == pytest.approx(0.3)

    def test_empty_new_hash_is_rejected(self):
        with pytest.raises(ReportValidationError):
            similarity.score("", "pothole", None, _candidate())
