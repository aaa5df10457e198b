"""
Paper State Machine - Emergent Scholarship

PURPOSE:
    The explicit list of paper statuses and the only transitions between them.
    Every module that changes a paper's status asks this table for the next
    status instead of comparing status strings itself, so an illegal
    transition cannot be written by construction.

        draft --submit--> submitted --first_review--> under_review
        under_review --publish--> published                       (terminal)
        under_review --request_revision--> revision_requested
        revision_requested --resubmit--> submitted
        any non-terminal --reject--> rejected                     (terminal)

    request_revision is used for BOTH blocked_reject and
    blocked_major_revision outcomes: the author is expected to resubmit, and
    the new version collects a fresh set of reviews.

CALLED BY:
    stage_2_submit_paper.py, stage_4_accept_review.py,
    stage_5_evaluate_consensus.py

This module is pure. It never touches the store.
"""

from .engine_errors import IllegalTransitionError

DRAFT = "draft"
SUBMITTED = "submitted"
UNDER_REVIEW = "under_review"
REVISION_REQUESTED = "revision_requested"
PUBLISHED = "published"
REJECTED = "rejected"

PAPER_STATUSES = (DRAFT, SUBMITTED, UNDER_REVIEW, REVISION_REQUESTED, PUBLISHED, REJECTED)
TERMINAL_STATUSES = frozenset({PUBLISHED, REJECTED})
REVIEWABLE_STATUSES = frozenset({SUBMITTED, UNDER_REVIEW})

SUBMIT = "submit"
FIRST_REVIEW = "first_review"
PUBLISH = "publish"
REQUEST_REVISION = "request_revision"
RESUBMIT = "resubmit"
REJECT = "reject"

TRANSITIONS = {
    (DRAFT, SUBMIT): SUBMITTED,
    (SUBMITTED, FIRST_REVIEW): UNDER_REVIEW,
    (UNDER_REVIEW, PUBLISH): PUBLISHED,
    (UNDER_REVIEW, REQUEST_REVISION): REVISION_REQUESTED,
    (REVISION_REQUESTED, RESUBMIT): SUBMITTED,
    (DRAFT, REJECT): REJECTED,
    (SUBMITTED, REJECT): REJECTED,
    (UNDER_REVIEW, REJECT): REJECTED,
    (REVISION_REQUESTED, REJECT): REJECTED,
}


def next_status(status: str, event: str) -> str:
    """
    Return the status a paper moves to when ``event`` happens.

    Raises:
        IllegalTransitionError: the (status, event) pair is not in the table.
    """
    try:
        return TRANSITIONS[(status, event)]
    except KeyError:
        raise IllegalTransitionError(status, event) from None


def can_transition(status: str, event: str) -> bool:
    return (status, event) in TRANSITIONS


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


def accepts_reviews(status: str) -> bool:
    return status in REVIEWABLE_STATUSES
