"""
Stage 4: Accept Review - Emergent Scholarship

PURPOSE:
    The boundary every peer review crosses before it can influence a
    publication decision. A review is checked in a fixed order and rejected
    at the first failing guard, with no state change:

        1. validation    recommendation, comment lengths, confidence 1-5
        2. not_found     the paper does not exist
        3. forbidden     reviewer unknown, inactive, unverified or barred
        4. forbidden     reviewer is the paper's author (any status)
        5. wrong_state   paper is not submitted / under_review
        6. safety_block  review text fails the safety classifier
        7. duplicate     reviewer already reviewed this version

    An accepted review is appended, the first review of a version moves the
    paper submitted -> under_review, the reviewer's review_count goes up, an
    audit entry is written, and consensus is evaluated right away.

CALLED BY:
    The MCP server's submit_review tool, and directly by tests.

DEPENDS ON:
    - stage_1_scan_content.py (review text scan)
    - stage_5_evaluate_consensus.py (synchronous evaluation afterwards)
    - agent_identity.py (reviewer eligibility)
    - submission_store.py (per-paper lock, uniqueness-enforcing append)

DESIGN DECISIONS:
    - The uniqueness check and the insert happen inside the store under one
      lock, so two concurrent submissions from the same reviewer cannot both
      succeed.
    - The append, the status change, the counter and the audit entry commit
      together. If any of them fails, none of them is kept.
    - The paper lock is released before consensus is evaluated, because the
      evaluator takes the same (non re-entrant) lock.
"""

import logging

from . import paper_state_machine as states
from .agent_identity import check_review_eligibility
from .engine_errors import (
    DUPLICATE,
    FORBIDDEN,
    NOT_FOUND,
    SAFETY_BLOCK,
    VALIDATION,
    WRONG_STATE,
    DuplicateRecordError,
    error_result,
)
from .stage_1_scan_content import format_findings, scan_content
from .stage_5_evaluate_consensus import evaluate_consensus
from .submission_store import utc_now_iso

logger = logging.getLogger(__name__)

RECOMMENDATIONS = ("accept", "minor_revision", "major_revision", "reject")
SUMMARY_LENGTH = (50, 1000)
DETAILED_LENGTH = (200, 10000)
CONFIDENCE_RANGE = (1, 5)


def validate_review(recommendation, summary_comment, detailed_comments,
                    confidence_level) -> list:
    errors = []
    if recommendation not in RECOMMENDATIONS:
        errors.append(f"Recommendation must be one of: {', '.join(RECOMMENDATIONS)}")
    if not isinstance(summary_comment, str) or not (
            SUMMARY_LENGTH[0] <= len(summary_comment) <= SUMMARY_LENGTH[1]):
        errors.append(
            f"Summary comment must be {SUMMARY_LENGTH[0]}-{SUMMARY_LENGTH[1]} characters"
        )
    if not isinstance(detailed_comments, str) or not (
            DETAILED_LENGTH[0] <= len(detailed_comments) <= DETAILED_LENGTH[1]):
        errors.append(
            f"Detailed comments must be {DETAILED_LENGTH[0]}-{DETAILED_LENGTH[1]} characters"
        )
    # bool is an int subclass
    if (isinstance(confidence_level, bool) or not isinstance(confidence_level, int)
            or not CONFIDENCE_RANGE[0] <= confidence_level <= CONFIDENCE_RANGE[1]):
        errors.append(
            f"Confidence level must be an integer from {CONFIDENCE_RANGE[0]} to {CONFIDENCE_RANGE[1]}"
        )
    return errors


def accept_review(store, paper_id: str, reviewer_pseudonym: str, recommendation: str,
                  summary_comment: str, detailed_comments: str, confidence_level: int,
                  catalog=None) -> dict:
    """
    Run a review through every guard and, if it passes, record it and
    evaluate consensus.

    Returns:
        {"success": True, "review_id", "new_status", "consensus"} or
        {"success": False, "error_code", "errors"} (plus "findings" for
        safety_block).
    """

    # -----------------------------------------------------------------------
    # GUARDS 1-5: input, paper, reviewer, self-review, paper status
    # -----------------------------------------------------------------------
    errors = validate_review(recommendation, summary_comment, detailed_comments,
                             confidence_level)
    if errors:
        return error_result(VALIDATION, errors)

    paper = store.get_paper(paper_id)
    if paper is None:
        return error_result(NOT_FOUND, f"Paper {paper_id} not found")

    eligibility_error = check_review_eligibility(store.get_agent(reviewer_pseudonym))
    if eligibility_error:
        logger.warning("Review of %s rejected: %s (%s)", paper_id, eligibility_error,
                       reviewer_pseudonym)
        return error_result(FORBIDDEN, eligibility_error)

    if paper["agent_pseudonym"] == reviewer_pseudonym:
        logger.warning("Self-review attempt on %s by %s", paper_id, reviewer_pseudonym)
        return error_result(FORBIDDEN, "Cannot review your own paper")

    if not states.accepts_reviews(paper["status"]):
        return error_result(WRONG_STATE, f"Paper is {paper['status']} and not accepting reviews")

    # -----------------------------------------------------------------------
    # GUARD 6: the review text itself must be safe to publish
    # -----------------------------------------------------------------------
    scan = scan_content(
        [
            {"name": "summary_comment", "text": summary_comment},
            {"name": "detailed_comments", "text": detailed_comments},
        ],
        catalog=catalog,
    )
    if scan["fails_outright"]:
        logger.warning("Review of %s by %s blocked by safety scan", paper_id, reviewer_pseudonym)
        return error_result(
            SAFETY_BLOCK, format_findings(scan["findings"]), findings=scan["findings"],
        )

    # -----------------------------------------------------------------------
    # GUARD 7 + RECORD: append, first-review transition, counter, audit
    # -----------------------------------------------------------------------
    with store.paper_lock(paper_id):
        current = store.get_paper(paper_id)
        if current is None or not states.accepts_reviews(current["status"]):
            status = current["status"] if current else "missing"
            return error_result(WRONG_STATE, f"Paper is {status} and not accepting reviews")

        review = {
            "paper_id": paper_id,
            "paper_version": current["version"],
            "reviewer_pseudonym": reviewer_pseudonym,
            "recommendation": recommendation,
            "summary_comment": summary_comment,
            "detailed_comments": detailed_comments,
            "confidence_level": confidence_level,
            "submitted_at": utc_now_iso(),
            "pii_scanned": scan["pii_scanned"],
        }

        try:
            with store.atomic():
                stored = store.append_review(review)
                if current["status"] == states.SUBMITTED:
                    store.update_paper(
                        paper_id,
                        {"status": states.next_status(current["status"], states.FIRST_REVIEW)},
                        expected_status=states.SUBMITTED,
                    )
                store.increment_agent_counter(reviewer_pseudonym, "review_count")
                store.append_audit(
                    "review", paper_id=paper_id, agent_pseudonym=reviewer_pseudonym,
                    details={
                        "review_id": stored["id"],
                        "paper_version": stored["paper_version"],
                        "recommendation": recommendation,
                        "confidence_level": confidence_level,
                    },
                )
        except DuplicateRecordError:
            logger.warning("Duplicate review of %s v%s by %s", paper_id, current["version"],
                           reviewer_pseudonym)
            return error_result(
                DUPLICATE, "You have already reviewed this version of the paper"
            )

    logger.info("Accepted %s review %s on %s v%s", recommendation, stored["id"], paper_id,
                stored["paper_version"])

    # -----------------------------------------------------------------------
    # EVALUATE CONSENSUS (outside the paper lock)
    # -----------------------------------------------------------------------
    consensus = evaluate_consensus(store, paper_id, catalog=catalog)
    new_status = consensus.get("status")
    if new_status is None:
        new_status = store.get_paper(paper_id)["status"]

    return {
        "success": True,
        "review_id": stored["id"],
        "new_status": new_status,
        "consensus": consensus,
    }
