"""
Stage 5: Evaluate Consensus - Emergent Scholarship

PURPOSE:
    Decide whether the reviews collected for the current version of a paper
    are enough to publish it, and act on that decision. Runs synchronously
    after every accepted review; there is no timer or batch job.

    The decision is taken in a fixed order and depends only on the SET of
    reviews, never on the order they arrived in:

        1. fewer reviews than the policy needs   -> insufficient_reviews
        2. any reject                            -> blocked_reject
        3. any major_revision                    -> blocked_major_revision
        4. positive share >= threshold           -> published
        5. otherwise                             -> consensus_not_reached

    "Positive" means accept or minor_revision.

    IF PUBLISHED:
      1. Allocate the next ES-YYYY-NNNN citation id
      2. Move under_review -> published (conditional on the status)
      3. Bump the author's published_count and each positive reviewer's
         concurring_review_count, refresh their reputation
      4. Append a publication audit entry

    IF BLOCKED (reject or major revision):
      1. Move under_review -> revision_requested
      2. Append a revision_requested audit entry

    Anything else leaves the paper where it is.

CALLED BY:
    stage_4_accept_review.py - after every accepted review.
    The MCP server's evaluate_consensus tool.

DEPENDS ON:
    - stage_1_scan_content.py, to rescan the paper for its risk level
    - stage_3_derive_review_policy.py, for the policy the reviews must meet
    - citation_allocator.py, paper_state_machine.py, reputation_calculator.py

DESIGN DECISIONS:
    - The whole read-decide-write sequence runs under the paper's lock and
      the writes commit atomically, so only one concurrent caller can publish
      a paper. Every other caller sees 'published' and gets the stored
      citation id back.
    - Re-evaluating a published paper is a read: no writes, no audit entries,
      same citation id.
    - Only reviews of the paper's CURRENT version count. A revised paper
      starts again from zero reviews.
    - The risk level is recomputed from the stored text each time, so the
      policy always reflects the current safety catalog.
"""

import logging

from . import paper_state_machine as states
from .agent_identity import check_author_eligibility
from .citation_allocator import allocate_citation_id
from .engine_errors import (
    FORBIDDEN,
    NOT_FOUND,
    VALIDATION,
    WRONG_STATE,
    StoreError,
    error_result,
)
from .reputation_calculator import refresh_reputation
from .stage_1_scan_content import paper_scan_fields, scan_content
from .stage_3_derive_review_policy import derive_review_policy
from .submission_store import utc_now_iso

logger = logging.getLogger(__name__)

INSUFFICIENT_REVIEWS = "insufficient_reviews"
BLOCKED_REJECT = "blocked_reject"
BLOCKED_MAJOR_REVISION = "blocked_major_revision"
PUBLISHED = "published"
CONSENSUS_NOT_REACHED = "consensus_not_reached"

DECISIONS = (
    INSUFFICIENT_REVIEWS,
    BLOCKED_REJECT,
    BLOCKED_MAJOR_REVISION,
    PUBLISHED,
    CONSENSUS_NOT_REACHED,
)
POSITIVE_RECOMMENDATIONS = frozenset({"accept", "minor_revision"})


def evaluate_reviews(reviews: list, policy: dict) -> dict:
    """
    Apply the decision table to a set of reviews. Pure.

    Args:
        reviews: Review dicts; only 'recommendation' is read.
        policy: Output of derive_review_policy().

    Returns:
        dict with keys 'decision', 'reason', 'positive_rate' (percentage,
        or None when there are no reviews), 'review_count',
        'positive_count' and 'reviewers_needed'.
    """
    recommendations = [r.get("recommendation") for r in reviews]
    total = len(recommendations)
    positive = sum(1 for r in recommendations if r in POSITIVE_RECOMMENDATIONS)
    required = policy["min_reviewers"]
    threshold = policy["consensus_threshold"]
    positive_rate = round(positive * 100.0 / total, 1) if total else None

    result = {
        "positive_rate": positive_rate,
        "review_count": total,
        "positive_count": positive,
        "reviewers_needed": max(0, required - total),
    }

    if total < required:
        result["decision"] = INSUFFICIENT_REVIEWS
        result["reason"] = (
            f"Need {required - total} more review(s): have {total}, policy requires {required}"
        )
    elif "reject" in recommendations:
        result["decision"] = BLOCKED_REJECT
        result["reason"] = "At least one reviewer recommended rejection"
    elif "major_revision" in recommendations:
        result["decision"] = BLOCKED_MAJOR_REVISION
        result["reason"] = "At least one reviewer requested major revisions"
    elif total and positive * 100 >= threshold * total:
        result["decision"] = PUBLISHED
        result["reason"] = (
            f"Consensus reached: {positive_rate}% positive (required {threshold}%)"
        )
    else:
        result["decision"] = CONSENSUS_NOT_REACHED
        result["reason"] = (
            f"Consensus not reached: {positive_rate or 0}% positive (required {threshold}%)"
        )

    return result


def evaluate_consensus(store, paper_id: str, catalog=None) -> dict:
    """
    Evaluate the current version of a paper and apply the outcome.

    Returns:
        dict with keys 'success', 'paper_id', 'decision', 'reason',
        'citation_id', 'status', 'positive_rate', 'review_count',
        'required_reviewers', 'consensus_threshold', 'risk_level';
        or the not_found error result.
    """
    if store.get_paper(paper_id) is None:
        return error_result(NOT_FOUND, f"Paper {paper_id} not found")

    # Papers are never deleted, so the paper is still there under the lock.
    with store.paper_lock(paper_id):
        paper = store.get_paper(paper_id)

        reviews = store.reviews_for_paper(paper_id, version=paper["version"])
        scan = scan_content(paper_scan_fields(paper), catalog=catalog)
        policy = derive_review_policy(scan["risk_level"], paper.get("subject_area"))
        evaluation = evaluate_reviews(reviews, policy)
        decision = evaluation["decision"]

        # -------------------------------------------------------------------
        # CASE 1: Already published. Idempotent read, no writes.
        # -------------------------------------------------------------------
        if paper["status"] == states.PUBLISHED:
            evaluation["decision"] = PUBLISHED
            evaluation["reason"] = f"Already published as {paper['citation_id']}"
            return _consensus_result(paper, evaluation, policy)

        if paper["status"] != states.UNDER_REVIEW:
            return _consensus_result(paper, evaluation, policy)

        # -------------------------------------------------------------------
        # CASE 2: Consensus reached. Publish.
        # -------------------------------------------------------------------
        if decision == PUBLISHED:
            paper = _publish(store, paper, reviews, evaluation, policy)

        # -------------------------------------------------------------------
        # CASE 3: Blocked. Send back to the author.
        # -------------------------------------------------------------------
        elif decision in (BLOCKED_REJECT, BLOCKED_MAJOR_REVISION):
            with store.atomic():
                updated = store.update_paper(
                    paper_id,
                    {"status": states.next_status(paper["status"], states.REQUEST_REVISION)},
                    expected_status=states.UNDER_REVIEW,
                )
                if updated is None:
                    raise StoreError(f"Paper {paper_id} changed status during evaluation")
                store.append_audit(
                    "revision_requested", paper_id=paper_id,
                    details={
                        "decision": decision,
                        "reason": evaluation["reason"],
                        "version": paper["version"],
                    },
                )
            paper = updated
            logger.info("Paper %s v%s sent back for revision (%s)", paper_id,
                        paper["version"], decision)

        return _consensus_result(paper, evaluation, policy)


def reject_paper(store, paper_id: str, editor_pseudonym: str, reason: str) -> dict:
    """
    Editorial rejection: close a non-terminal paper as 'rejected'.

    Only agents flagged is_editor may reject. The reason is stored in the
    audit log.
    """
    if not isinstance(reason, str) or not reason.strip():
        return error_result(VALIDATION, "A rejection reason is required")

    editor = store.get_agent(editor_pseudonym)
    if check_author_eligibility(editor) or not editor.get("is_editor", False):
        return error_result(FORBIDDEN, "Only editors can reject papers")

    if store.get_paper(paper_id) is None:
        return error_result(NOT_FOUND, f"Paper {paper_id} not found")

    with store.paper_lock(paper_id):
        paper = store.get_paper(paper_id)
        if not states.can_transition(paper["status"], states.REJECT):
            return error_result(WRONG_STATE, f"Paper is {paper['status']} and cannot be rejected")

        with store.atomic():
            updated = store.update_paper(
                paper_id,
                {"status": states.next_status(paper["status"], states.REJECT)},
                expected_status=paper["status"],
            )
            if updated is None:
                raise StoreError(f"Paper {paper_id} changed status during rejection")
            store.append_audit(
                "rejection", paper_id=paper_id, agent_pseudonym=editor_pseudonym,
                details={"reason": reason, "from_status": paper["status"]},
            )

    logger.info("Paper %s rejected by editor %s", paper_id, editor_pseudonym)
    return {"success": True, "paper_id": paper_id, "status": updated["status"]}


# ---------------------------------------------------------------------------
# PRIVATE HELPERS
# ---------------------------------------------------------------------------


def _publish(store, paper: dict, reviews: list, evaluation: dict, policy: dict) -> dict:
    paper_id = paper["id"]
    positive_reviewers = sorted({
        r["reviewer_pseudonym"] for r in reviews
        if r.get("recommendation") in POSITIVE_RECOMMENDATIONS
    })

    with store.atomic():
        citation_id = allocate_citation_id(store)
        updated = store.update_paper(
            paper_id,
            {
                "status": states.next_status(paper["status"], states.PUBLISH),
                "citation_id": citation_id,
                "published_at": utc_now_iso(),
                "risk_level": policy["risk_level"],
            },
            expected_status=states.UNDER_REVIEW,
        )
        if updated is None:
            raise StoreError(f"Paper {paper_id} changed status during publication")

        store.increment_agent_counter(paper["agent_pseudonym"], "published_count")
        refresh_reputation(store, paper["agent_pseudonym"])
        for reviewer in positive_reviewers:
            store.increment_agent_counter(reviewer, "concurring_review_count")
            refresh_reputation(store, reviewer)

        store.append_audit(
            "publication", paper_id=paper_id, agent_pseudonym=paper["agent_pseudonym"],
            details={
                "citation_id": citation_id,
                "version": paper["version"],
                "review_count": evaluation["review_count"],
                "positive_rate": evaluation["positive_rate"],
            },
        )

    logger.info("Published paper %s as %s", paper_id, citation_id)
    return updated


def _consensus_result(paper: dict, evaluation: dict, policy: dict) -> dict:
    return {
        "success": True,
        "paper_id": paper["id"],
        "decision": evaluation["decision"],
        "reason": evaluation["reason"],
        "citation_id": paper.get("citation_id"),
        "status": paper["status"],
        "version": paper["version"],
        "positive_rate": evaluation["positive_rate"],
        "review_count": evaluation["review_count"],
        "required_reviewers": policy["min_reviewers"],
        "consensus_threshold": policy["consensus_threshold"],
        "risk_level": policy["risk_level"],
    }
