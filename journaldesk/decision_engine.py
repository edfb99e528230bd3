"""Decision engine — deterministic, auditable outcomes of the double-blind review.

Two completed human reviews either agree, and their shared decision is
applied, or disagree, and the manuscript goes to reconciliation where a
third reviewer's decision settles it. Every applied outcome produces a
DecisionRecord that can be replayed and explained.
"""

from __future__ import annotations

import logging
from typing import Any

import aiosqlite

from journaldesk.audit_service import log_event
from journaldesk.config import settings
from journaldesk.database import from_json, to_json
from journaldesk.manuscript_service import (
    get_manuscript,
    record_review_outcome,
    transition_manuscript,
)
from journaldesk.models import (
    AuditAction,
    DecisionRecord,
    DiscrepancyReport,
    EditorialDecision,
    Manuscript,
    ManuscriptStatus,
    Review,
    ReviewComments,
    ReviewDecision,
    ReviewStatus,
    ReviewType,
    RuleEvaluation,
)
from journaldesk.review_service import get_reviews_for_manuscript
from journaldesk.scoring import compare_reviews, completed_human_reviews
from journaldesk.workflow import DECIDABLE_STATUSES, decision_to_status

logger = logging.getLogger("journaldesk.decisions")

ENGINE_ACTOR = "decision_engine"

INSUFFICIENT_REVIEWS = "insufficient_reviews"
RECONCILIATION_REQUIRED = "reconciliation_required"
AWAITING_RECONCILIATION = "awaiting_reconciliation"
EDITOR_DECISION_REQUIRED = "editor_decision_required"

_EDITORIAL_STATUSES = {
    ManuscriptStatus.APPROVED: ReviewDecision.PUBLISHABLE,
    ManuscriptStatus.REJECTED: ReviewDecision.NOT_PUBLISHABLE,
    ManuscriptStatus.MINOR_REVISION: ReviewDecision.PUBLISHABLE_WITH_MINOR_REVISION,
    ManuscriptStatus.MAJOR_REVISION: ReviewDecision.PUBLISHABLE_WITH_MAJOR_REVISION,
}


# ---------------------------------------------------------------------------
# Rules (each is a pure function returning a RuleEvaluation)
# ---------------------------------------------------------------------------

def _rule_two_human_reviews(completed: int) -> RuleEvaluation:
    passed = completed >= 2
    return RuleEvaluation(
        rule_name="two_human_reviews",
        input_data={"completed_human_reviews": completed, "required": 2},
        result=passed,
        explanation=f"{'Met' if passed else 'Not met'}: {completed}/2 human reviews completed",
    )


def _rule_decisions_agree(report: DiscrepancyReport) -> RuleEvaluation:
    decisions = [d.value for d in report.decisions]
    agree = bool(report.compared_review_ids) and not report.has_discrepancy
    return RuleEvaluation(
        rule_name="decisions_agree",
        input_data={"decisions": decisions},
        result=agree,
        explanation="Reviewers agree" if agree else f"Reviewers disagree: {' vs '.join(decisions)}",
    )


def _rule_score_gap(report: DiscrepancyReport) -> RuleEvaluation:
    """Informational: how far apart the two totals are."""
    severity = report.severity.value if report.severity else None
    return RuleEvaluation(
        rule_name="score_gap",
        input_data={
            "total_scores": report.total_scores,
            "score_difference": report.score_difference,
            "percent_difference": report.percent_difference,
            "severity": severity,
        },
        result=report.score_difference < settings.workflow.medium_severity_difference,
        explanation=(
            f"Totals {report.total_scores} differ by {report.score_difference} "
            f"({report.percent_difference}%)"
            + (f", severity {severity}" if severity else "")
        ),
    )


def _rule_reconciliation_complete(review: Review | None) -> RuleEvaluation:
    done = review is not None and review.status == ReviewStatus.COMPLETED
    return RuleEvaluation(
        rule_name="reconciliation_complete",
        input_data={
            "review_id": review.review_id if review else None,
            "status": review.status.value if review else None,
        },
        result=done,
        explanation="Reconciliation review completed" if done else "Waiting for the reconciliation review",
    )


# ---------------------------------------------------------------------------
# Persistence helpers
# ---------------------------------------------------------------------------

async def _persist_record(db: aiosqlite.Connection, record: DecisionRecord) -> None:
    await db.execute(
        """
        INSERT INTO decision_records (
            decision_id, manuscript_id, decision, decided_by, resulting_status,
            rule_evaluations, review_summary, explanation, decided_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            record.decision_id,
            record.manuscript_id,
            record.decision,
            record.decided_by,
            record.resulting_status.value if record.resulting_status else None,
            to_json(record.rule_evaluations),
            to_json(record.review_summary),
            record.explanation,
            record.decided_at.isoformat(),
        ),
    )
    await db.commit()


def _row_to_record(row: aiosqlite.Row | dict[str, Any]) -> DecisionRecord:
    d = dict(row)
    d["rule_evaluations"] = from_json(d.get("rule_evaluations", "[]")) or []
    d["review_summary"] = from_json(d.get("review_summary", "{}")) or {}
    return DecisionRecord(**d)


def _summarise(reviews: list[Review], report: DiscrepancyReport | None = None) -> dict[str, Any]:
    summary: dict[str, Any] = {
        "reviews": [
            {
                "review_id": r.review_id,
                "review_type": r.review_type.value,
                "status": r.status.value,
                "decision": r.review_decision.value if r.review_decision else None,
                "total_score": r.total_score,
            }
            for r in reviews
        ],
    }
    if report is not None and report.compared_review_ids:
        summary["min_score"] = report.min_score
        summary["max_score"] = report.max_score
        summary["average_score"] = report.average_score
    return summary


async def _get_record(db: aiosqlite.Connection, decision_id: str) -> DecisionRecord | None:
    async with db.execute(
        "SELECT * FROM decision_records WHERE decision_id = ?", (decision_id,)
    ) as cursor:
        row = await cursor.fetchone()
    return _row_to_record(row) if row else None


async def _apply_review_decision(
    db: aiosqlite.Connection,
    manuscript: Manuscript,
    decision: ReviewDecision,
    evals: list[RuleEvaluation],
    summary: dict[str, Any],
    explanation: str,
) -> DecisionRecord:
    """Record the reviewers' decision and, if configured, move the manuscript on."""
    # One record per round: resubmission clears review_decision.
    if manuscript.review_decision is not None and manuscript.decision_record_id:
        existing = await _get_record(db, manuscript.decision_record_id)
        if existing is not None:
            return existing

    target = decision_to_status(decision)
    auto_apply = settings.workflow.auto_apply_decisions
    record = DecisionRecord(
        manuscript_id=manuscript.manuscript_id,
        decision=decision.value,
        rule_evaluations=evals,
        review_summary=summary,
        explanation=explanation if auto_apply else f"{explanation}; awaiting editor confirmation",
    )

    applied = False
    if auto_apply:
        _, errors = await transition_manuscript(
            db,
            manuscript.manuscript_id,
            target,
            actor_id=ENGINE_ACTOR,
            details={"decision_id": record.decision_id},
        )
        if errors:
            logger.error("Decision %s not applied to %s: %s", record.decision_id, manuscript.manuscript_id, errors)
            record.explanation = f"{explanation}; not applied: {', '.join(errors)}"
        else:
            applied = True
            record.resulting_status = target

    await _persist_record(db, record)
    await record_review_outcome(db, manuscript.manuscript_id, decision.value, record.decision_id)

    await log_event(
        db,
        AuditAction.DECISION_MADE,
        actor_id=ENGINE_ACTOR,
        target_id=manuscript.manuscript_id,
        target_type="manuscript",
        details={
            "decision": record.decision,
            "decision_id": record.decision_id,
            "applied": applied,
            "explanation": record.explanation,
        },
    )
    return record


# ---------------------------------------------------------------------------
# Decision engine
# ---------------------------------------------------------------------------

async def evaluate_manuscript(
    db: aiosqlite.Connection,
    manuscript_id: str,
) -> DecisionRecord | None:
    """
    Evaluate the current review round of a manuscript.

    Possible outcomes: insufficient_reviews and awaiting_reconciliation (not
    persisted), reconciliation_required, or one of the review decisions.
    Returns None when the manuscript is missing or not awaiting a decision.
    """
    manuscript = await get_manuscript(db, manuscript_id)
    if manuscript is None or manuscript.status not in DECIDABLE_STATUSES:
        return None

    reviews = await get_reviews_for_manuscript(db, manuscript_id, review_round=manuscript.version)

    if manuscript.status == ManuscriptStatus.IN_RECONCILIATION:
        return await _evaluate_reconciliation(db, manuscript, reviews)

    humans = completed_human_reviews(reviews)
    report = compare_reviews(reviews, manuscript_id)
    evals = [_rule_two_human_reviews(len(humans))]
    summary = _summarise(reviews, report)

    if len(humans) < 2:
        return DecisionRecord(
            manuscript_id=manuscript_id,
            decision=INSUFFICIENT_REVIEWS,
            rule_evaluations=evals,
            review_summary=summary,
            explanation=f"Waiting for more reviews: {evals[0].explanation}",
        )

    if not report.compared_review_ids:
        # More than two completed human reviews: the pair comparison does not apply.
        return DecisionRecord(
            manuscript_id=manuscript_id,
            decision=EDITOR_DECISION_REQUIRED,
            rule_evaluations=evals,
            review_summary=summary,
            explanation=f"{len(humans)} human reviews completed; an editor must decide",
        )

    agree = _rule_decisions_agree(report)
    evals.extend([agree, _rule_score_gap(report)])

    if report.has_discrepancy:
        summary["severity"] = report.severity.value if report.severity else None
        record = DecisionRecord(
            manuscript_id=manuscript_id,
            decision=RECONCILIATION_REQUIRED,
            rule_evaluations=evals,
            review_summary=summary,
            explanation=f"{agree.explanation}; a reconciliation review is required",
        )
        _, errors = await transition_manuscript(
            db,
            manuscript_id,
            ManuscriptStatus.IN_RECONCILIATION,
            actor_id=ENGINE_ACTOR,
            details={"decision_id": record.decision_id},
        )
        if errors:
            logger.error("Could not move %s to reconciliation: %s", manuscript_id, errors)
        else:
            record.resulting_status = ManuscriptStatus.IN_RECONCILIATION
        await _persist_record(db, record)
        await log_event(
            db,
            AuditAction.DISCREPANCY_DETECTED,
            actor_id=ENGINE_ACTOR,
            target_id=manuscript_id,
            target_type="manuscript",
            details={
                "decision_id": record.decision_id,
                "severity": summary["severity"],
                "score_difference": report.score_difference,
                "decisions": [d.value for d in report.decisions],
            },
        )
        logger.info("Discrepancy on %s (%s)", manuscript_id, summary["severity"])
        return record

    decision = report.decisions[0]
    return await _apply_review_decision(
        db, manuscript, decision, evals, summary,
        f"Both reviewers recommend {decision.value}",
    )


async def _evaluate_reconciliation(
    db: aiosqlite.Connection,
    manuscript: Manuscript,
    reviews: list[Review],
) -> DecisionRecord:
    reconciliation = next(
        (r for r in reviews if r.review_type == ReviewType.RECONCILIATION), None
    )
    check = _rule_reconciliation_complete(reconciliation)
    summary = _summarise(reviews, compare_reviews(reviews, manuscript.manuscript_id))

    if not check.result or reconciliation.review_decision is None:
        return DecisionRecord(
            manuscript_id=manuscript.manuscript_id,
            decision=AWAITING_RECONCILIATION,
            rule_evaluations=[check],
            review_summary=summary,
            explanation=check.explanation,
        )

    decision = reconciliation.review_decision
    return await _apply_review_decision(
        db, manuscript, decision, [check], summary,
        f"Reconciliation reviewer recommends {decision.value}",
    )


async def record_editorial_decision(
    db: aiosqlite.Connection,
    manuscript_id: str,
    decision: EditorialDecision,
    actor_id: str,
) -> tuple[DecisionRecord | None, list[str]]:
    """An editor's manual decision with feedback for the author."""
    if decision.status not in _EDITORIAL_STATUSES:
        return None, [f"invalid_editorial_decision_{decision.status.value}"]

    manuscript = await get_manuscript(db, manuscript_id)
    if manuscript is None:
        return None, ["manuscript_not_found"]

    comments = ReviewComments(
        comments_for_author=decision.comments_for_author,
        confidential_comments_to_editor=decision.confidential_comments_to_editor,
    )
    review_decision = _EDITORIAL_STATUSES[decision.status]
    record = DecisionRecord(
        manuscript_id=manuscript_id,
        decision=review_decision.value,
        decided_by=actor_id,
        resulting_status=decision.status,
        review_summary={"previous_status": manuscript.status.value},
        explanation=f"Editorial decision: {decision.status.value}",
    )

    _, errors = await transition_manuscript(
        db,
        manuscript_id,
        decision.status,
        actor_id=actor_id,
        details={"decision_id": record.decision_id, "editorial": True},
    )
    if errors:
        return None, errors

    await _persist_record(db, record)
    await record_review_outcome(
        db, manuscript_id, review_decision.value, record.decision_id, comments.model_dump()
    )
    await log_event(
        db,
        AuditAction.DECISION_MADE,
        actor_id=actor_id,
        target_id=manuscript_id,
        target_type="manuscript",
        details={"decision": record.decision, "decision_id": record.decision_id, "editorial": True},
    )
    return record, []


async def get_decision_trace(
    db: aiosqlite.Connection,
    manuscript_id: str,
) -> list[DecisionRecord]:
    """Get all decision records for a manuscript (full audit trail)."""
    async with db.execute(
        "SELECT * FROM decision_records WHERE manuscript_id = ? ORDER BY decided_at",
        (manuscript_id,),
    ) as cursor:
        rows = await cursor.fetchall()
    return [_row_to_record(row) for row in rows]


async def get_discrepancy_report(
    db: aiosqlite.Connection,
    manuscript_id: str,
) -> DiscrepancyReport | None:
    """Compare the human reviews of the manuscript's current round."""
    manuscript = await get_manuscript(db, manuscript_id)
    if manuscript is None:
        return None
    reviews = await get_reviews_for_manuscript(db, manuscript_id, review_round=manuscript.version)
    return compare_reviews(reviews, manuscript_id)
