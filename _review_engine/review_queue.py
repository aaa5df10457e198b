"""
Review queue: papers that still need reviewers.

Lists submitted and under-review papers, newest submission first, with the
number of reviewers their policy requires, how many have reviewed the
current version, and how many are still needed. Papers that already have
enough reviews are left out, so a reviewing agent only sees work it can
actually move forward.
"""

import logging
from typing import Optional

from . import paper_state_machine as states
from .stage_1_scan_content import paper_scan_fields, scan_content
from .stage_3_derive_review_policy import derive_review_policy, reviewers_still_needed

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 10
MAX_LIMIT = 20
ABSTRACT_PREVIEW_LENGTH = 300


def list_papers_needing_review(store, subject_area: Optional[str] = None,
                               limit: int = DEFAULT_LIMIT, catalog=None) -> list:
    """
    Return up to ``limit`` (clamped to 1..20) papers awaiting reviewers.

    Each entry has id, title, abstract (truncated), subject_area, version,
    submitted_at, risk_level, required_reviewers, current_reviewers and
    reviewers_needed.
    """
    try:
        limit = int(limit)
    except (TypeError, ValueError):
        limit = DEFAULT_LIMIT
    limit = max(1, min(MAX_LIMIT, limit))

    papers = store.list_papers(
        statuses=states.REVIEWABLE_STATUSES, subject_area=subject_area,
    )
    papers.sort(key=lambda p: p.get("submitted_at") or "", reverse=True)

    queue = []
    for paper in papers:
        if len(queue) >= limit:
            break
        risk_level = scan_content(paper_scan_fields(paper), catalog=catalog)["risk_level"]
        policy = derive_review_policy(risk_level, paper.get("subject_area"))
        current = len(store.reviews_for_paper(paper["id"], version=paper["version"]))
        needed = reviewers_still_needed(policy, current)
        if needed == 0:
            continue

        abstract = paper.get("abstract") or ""
        if len(abstract) > ABSTRACT_PREVIEW_LENGTH:
            abstract = abstract[:ABSTRACT_PREVIEW_LENGTH] + "..."

        queue.append({
            "id": paper["id"],
            "title": paper.get("title"),
            "abstract": abstract,
            "subject_area": paper.get("subject_area"),
            "author": paper.get("agent_pseudonym"),
            "version": paper["version"],
            "submitted_at": paper.get("submitted_at"),
            "risk_level": risk_level,
            "required_reviewers": policy["min_reviewers"],
            "current_reviewers": current,
            "reviewers_needed": needed,
        })

    logger.debug("Review queue: %d paper(s) need reviewers", len(queue))
    return queue
