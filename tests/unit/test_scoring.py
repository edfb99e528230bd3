"""Unit tests for score totals and double-blind review comparison."""

from datetime import datetime, timezone

from journaldesk.models import (
    DiscrepancySeverity,
    Review,
    ReviewDecision,
    ReviewScores,
    ReviewStatus,
    ReviewType,
)
from journaldesk.scoring import (
    classify_severity,
    compare_reviews,
    completed_human_reviews,
    criteria_discrepancies,
    total_score,
)

HIGH = ReviewScores(
    originality=17, methodology=17, clarity=9, relevance=9, literature=8, results=13, contribution=12,
)
LOW = ReviewScores(
    originality=10, methodology=10, clarity=5, relevance=5, literature=5, results=9, contribution=8,
)


def _review(
    scores: ReviewScores,
    decision: ReviewDecision,
    review_type: ReviewType = ReviewType.HUMAN,
    status: ReviewStatus = ReviewStatus.COMPLETED,
) -> Review:
    return Review(
        manuscript_id="MS-2026-00001",
        reviewer_id="reviewer",
        review_type=review_type,
        scores=scores,
        total_score=total_score(scores),
        review_decision=decision,
        status=status,
        due_date=datetime(2026, 1, 1, tzinfo=timezone.utc),
    )


class TestTotals:
    def test_total_score_sums_criteria(self):
        assert total_score(HIGH) == 85
        assert total_score(LOW) == 52

    def test_full_marks_total_100(self):
        full = ReviewScores(
            originality=20, methodology=20, clarity=10, relevance=10,
            literature=10, results=15, contribution=15,
        )
        assert total_score(full) == 100


class TestSeverity:
    def test_thresholds(self):
        assert classify_severity(0) == DiscrepancySeverity.LOW
        assert classify_severity(14) == DiscrepancySeverity.LOW
        assert classify_severity(15) == DiscrepancySeverity.MEDIUM
        assert classify_severity(29) == DiscrepancySeverity.MEDIUM
        assert classify_severity(30) == DiscrepancySeverity.HIGH
        assert classify_severity(100) == DiscrepancySeverity.HIGH


class TestCompareReviews:
    def test_diverging_decisions_with_large_gap_is_high(self):
        report = compare_reviews([
            _review(HIGH, ReviewDecision.PUBLISHABLE),
            _review(LOW, ReviewDecision.NOT_PUBLISHABLE),
        ])
        assert report.has_discrepancy is True
        assert report.severity == DiscrepancySeverity.HIGH
        assert report.total_scores == [85, 52]
        assert report.score_difference == 33
        assert report.percent_difference == 33.0
        assert report.min_score == 52
        assert report.max_score == 85
        assert report.average_score == 68.5

    def test_agreeing_decisions_are_not_a_discrepancy(self):
        seventy = ReviewScores(
            originality=14, methodology=14, clarity=7, relevance=7, literature=7, results=11, contribution=10,
        )
        seventy_five = ReviewScores(
            originality=15, methodology=15, clarity=8, relevance=8, literature=8, results=11, contribution=10,
        )
        assert total_score(seventy) == 70
        assert total_score(seventy_five) == 75

        report = compare_reviews([
            _review(seventy, ReviewDecision.PUBLISHABLE_WITH_MINOR_REVISION),
            _review(seventy_five, ReviewDecision.PUBLISHABLE_WITH_MINOR_REVISION),
        ])
        assert report.has_discrepancy is False
        assert report.severity is None
        assert report.score_difference == 5

    def test_same_scores_different_decisions_is_low(self):
        report = compare_reviews([
            _review(HIGH, ReviewDecision.PUBLISHABLE),
            _review(HIGH, ReviewDecision.PUBLISHABLE_WITH_MINOR_REVISION),
        ])
        assert report.has_discrepancy is True
        assert report.severity == DiscrepancySeverity.LOW
        assert report.criteria_discrepancies == []

    def test_only_completed_human_reviews_count(self):
        reviews = [
            _review(HIGH, ReviewDecision.PUBLISHABLE),
            _review(LOW, ReviewDecision.NOT_PUBLISHABLE, status=ReviewStatus.IN_PROGRESS),
            _review(LOW, ReviewDecision.NOT_PUBLISHABLE, review_type=ReviewType.RECONCILIATION),
        ]
        assert len(completed_human_reviews(reviews)) == 1
        report = compare_reviews(reviews)
        assert report.has_discrepancy is False
        assert report.compared_review_ids == []

    def test_three_reviews_are_not_compared(self):
        report = compare_reviews([
            _review(HIGH, ReviewDecision.PUBLISHABLE),
            _review(LOW, ReviewDecision.NOT_PUBLISHABLE),
            _review(LOW, ReviewDecision.NOT_PUBLISHABLE),
        ])
        assert report.has_discrepancy is False
        assert report.compared_review_ids == []


class TestCriteriaDiscrepancies:
    def test_flags_criteria_beyond_spread_ratio(self):
        flagged = criteria_discrepancies(HIGH, LOW)
        names = [c.criterion for c in flagged]
        assert set(names) == {"originality", "methodology", "clarity", "relevance"}
        # Ordered by percentage difference, largest first
        assert names[:2] == ["clarity", "relevance"]
        clarity = flagged[0]
        assert clarity.scores == [9, 5]
        assert clarity.max_score == 10
        assert clarity.spread == 4
        assert clarity.average_score == 7.0
        assert clarity.percentage_difference == 40.0

    def test_spread_exactly_at_threshold_is_not_flagged(self):
        # literature spread 3 of 10 equals the 30% threshold
        flagged = criteria_discrepancies(HIGH, LOW)
        assert "literature" not in {c.criterion for c in flagged}
