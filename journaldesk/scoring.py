"""Score aggregation and double-blind review comparison.

Pure functions: no database access, so the decision engine and the API can
both call them on already-loaded reviews.
"""

from __future__ import annotations

from collections.abc import Iterable

from journaldesk.config import settings
from journaldesk.models import (
    CRITERION_MAXIMA,
    MAX_TOTAL_SCORE,
    CriterionDiscrepancy,
    DiscrepancyReport,
    DiscrepancySeverity,
    Review,
    ReviewScores,
    ReviewStatus,
    ReviewType,
)


def total_score(scores: ReviewScores) -> int:
    """Sum of the seven criterion scores."""
    return sum(getattr(scores, name) for name in CRITERION_MAXIMA)


def classify_severity(score_difference: int) -> DiscrepancySeverity:
    wf = settings.workflow
    if score_difference >= wf.high_severity_difference:
        return DiscrepancySeverity.HIGH
    if score_difference >= wf.medium_severity_difference:
        return DiscrepancySeverity.MEDIUM
    return DiscrepancySeverity.LOW


def completed_human_reviews(reviews: Iterable[Review]) -> list[Review]:
    return [
        r for r in reviews
        if r.review_type == ReviewType.HUMAN and r.status == ReviewStatus.COMPLETED
    ]


def criteria_discrepancies(first: ReviewScores, second: ReviewScores) -> list[CriterionDiscrepancy]:
    """Criteria on which two reviewers' scores spread beyond the configured share of the maximum."""
    ratio = settings.workflow.criterion_spread_ratio
    flagged: list[CriterionDiscrepancy] = []
    for name, maximum in CRITERION_MAXIMA.items():
        a = getattr(first, name)
        b = getattr(second, name)
        spread = abs(a - b)
        if spread > maximum * ratio:
            flagged.append(CriterionDiscrepancy(
                criterion=name,
                scores=[a, b],
                max_score=maximum,
                spread=spread,
                average_score=round((a + b) / 2, 1),
                percentage_difference=round(spread / maximum * 100, 1),
            ))
    flagged.sort(key=lambda c: c.percentage_difference, reverse=True)
    return flagged


def compare_reviews(reviews: Iterable[Review], manuscript_id: str = "") -> DiscrepancyReport:
    """
    Compare the completed human reviews of one manuscript.

    A discrepancy is flagged only when exactly two completed human reviews
    exist and their decisions differ. Severity is derived from the gap
    between their total scores.
    """
    pair = completed_human_reviews(reviews)
    report = DiscrepancyReport(manuscript_id=manuscript_id)
    if len(pair) != 2:
        return report

    first, second = pair
    totals = [first.total_score, second.total_score]
    difference = abs(totals[0] - totals[1])

    report.compared_review_ids = [first.review_id, second.review_id]
    report.decisions = [d for d in (first.review_decision, second.review_decision) if d is not None]
    report.total_scores = totals
    report.score_difference = difference
    report.percent_difference = round(difference / MAX_TOTAL_SCORE * 100, 1)
    report.min_score = min(totals)
    report.max_score = max(totals)
    report.average_score = round(sum(totals) / 2, 1)
    report.criteria_discrepancies = criteria_discrepancies(first.scores, second.scores)

    report.has_discrepancy = first.review_decision != second.review_decision
    if report.has_discrepancy:
        report.severity = classify_severity(difference)
    return report
