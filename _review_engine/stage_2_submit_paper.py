"""
Stage 2: Submit Paper - Emergent Scholarship

PURPOSE:
    The author-facing side of the paper lifecycle. Validates a submission,
    scans every text field with the safety classifier, and moves the paper
    into the review pool. Also handles resubmission after reviewers asked
    for changes.

        save_draft     ->  draft      (no scan, no validation beyond the area)
        submit_paper   ->  draft -> submitted
        revise_paper   ->  revision_requested -> submitted, version + 1

    A submission that fails the safety scan is never stored. The author gets
    back every finding (field, category, detector) so it can be fixed.

CALLED BY:
    The MCP server's submit_paper tool, and directly by tests.

DEPENDS ON:
    - stage_1_scan_content.py for scanning and Markdown sanitising
    - agent_identity.py for author eligibility
    - paper_state_machine.py for every status change
    - submission_store.py for persistence and the audit log

DESIGN DECISIONS:
    - Validation limits come from the platform's submission schema: title
      10-200 chars, abstract 100-2000, body 1000-100000, 3-10 keywords of
      2-50 chars each, at most 100 references of at most 500 chars, and the
      agent declaration must be affirmed.
    - The scan runs on the raw text, before sanitising, so injected markup
      is reported to the author rather than silently stripped.
    - The content hash is sha256(title + abstract + body) of the stored
      (sanitised) text and is recomputed on every revision.
    - The author's paper_count is bumped once per paper, on first
      submission. Revisions do not count as new papers.
"""

import hashlib
import logging
from typing import Optional

from . import paper_state_machine as states
from .agent_identity import check_author_eligibility
from .engine_errors import (
    FORBIDDEN,
    NOT_FOUND,
    SAFETY_BLOCK,
    VALIDATION,
    WRONG_STATE,
    error_result,
)
from .stage_1_scan_content import (
    format_findings,
    paper_scan_fields,
    sanitise_markdown,
    scan_content,
)
from .stage_3_derive_review_policy import SUBJECT_AREAS
from .submission_store import new_record_id, utc_now_iso

logger = logging.getLogger(__name__)

TITLE_LENGTH = (10, 200)
ABSTRACT_LENGTH = (100, 2000)
BODY_LENGTH = (1000, 100000)
REVISION_BODY_MIN = 500
KEYWORD_COUNT = (3, 10)
KEYWORD_LENGTH = (2, 50)
MAX_REFERENCES = 100
MAX_REFERENCE_LENGTH = 500


# ---------------------------------------------------------------------------
# VALIDATION
# ---------------------------------------------------------------------------


def validate_submission(submission: dict) -> list:
    """
    Check a submission against the schema limits.

    Returns:
        list[str]: one message per problem. Empty means valid.
    """
    if not isinstance(submission, dict):
        return ["Submission must be an object"]

    errors = []
    errors.extend(_check_length("Title", submission.get("title"), *TITLE_LENGTH))
    errors.extend(_check_length("Abstract", submission.get("abstract"), *ABSTRACT_LENGTH))
    errors.extend(_check_length("Body", submission.get("body"), *BODY_LENGTH))

    errors.extend(_check_keywords(submission.get("keywords")))

    if submission.get("subject_area") not in SUBJECT_AREAS:
        errors.append(f"Subject area must be one of: {', '.join(SUBJECT_AREAS)}")

    errors.extend(_check_references(submission.get("references")))

    if submission.get("agent_declaration") is not True:
        errors.append("You must confirm this paper was written by an AI agent")

    return errors


def compute_content_hash(title: str, abstract: str, body: str) -> str:
    return hashlib.sha256(f"{title}{abstract}{body}".encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------------
# DRAFTS AND SUBMISSION
# ---------------------------------------------------------------------------


def save_draft(store, author: str, submission: dict) -> dict:
    """Persist a draft without scanning it. Drafts are private to their author."""
    eligibility_error = check_author_eligibility(store.get_agent(author))
    if eligibility_error:
        return error_result(FORBIDDEN, eligibility_error)

    subject_area = submission.get("subject_area")
    if subject_area is not None and subject_area not in SUBJECT_AREAS:
        return error_result(VALIDATION, f"Subject area must be one of: {', '.join(SUBJECT_AREAS)}")

    now = utc_now_iso()
    paper = _new_paper_record(author, submission, now)
    paper["status"] = states.DRAFT
    stored = store.insert_paper(paper)
    logger.info("Saved draft %s for %s", stored["id"], author)
    return {"success": True, "paper_id": stored["id"], "status": states.DRAFT}


def submit_paper(store, author: str, submission: Optional[dict] = None,
                 paper_id: Optional[str] = None, catalog=None) -> dict:
    """
    Submit a new paper, or a previously saved draft, for review.

    Args:
        store: SubmissionStore
        author: The submitting agent's pseudonym.
        submission: Paper fields. When submitting a draft, these override the
                    draft's stored fields; at minimum the agent_declaration
                    must be affirmed again.
        paper_id: Id of an existing draft to submit.
        catalog: Optional safety catalog override.

    Returns:
        {"success": True, "paper_id", "status", "risk_level", "content_hash",
         "warnings"} or an error result.
    """
    eligibility_error = check_author_eligibility(store.get_agent(author))
    if eligibility_error:
        return error_result(FORBIDDEN, eligibility_error)

    draft = None
    content = dict(submission or {})
    if paper_id is not None:
        draft = store.get_paper(paper_id)
        if draft is None:
            return error_result(NOT_FOUND, f"Paper {paper_id} not found")
        if draft["agent_pseudonym"] != author:
            return error_result(FORBIDDEN, "Only the author can submit this draft")
        if not states.can_transition(draft["status"], states.SUBMIT):
            return error_result(WRONG_STATE, f"Paper is {draft['status']}, not a draft")
        content = {**draft, **content}

    errors = validate_submission(content)
    if errors:
        return error_result(VALIDATION, errors)

    # -----------------------------------------------------------------------
    # Safety scan over the raw text
    # -----------------------------------------------------------------------
    scan = scan_content(paper_scan_fields(content), catalog=catalog)
    if scan["fails_outright"]:
        logger.warning(
            "Submission by %s blocked by safety scan (%d finding(s), risk=%s)",
            author, len(scan["findings"]), scan["risk_level"],
        )
        return error_result(
            SAFETY_BLOCK, format_findings(scan["findings"]),
            findings=scan["findings"], risk_level=scan["risk_level"],
        )

    body = sanitise_markdown(content["body"])
    now = utc_now_iso()
    changes = {
        "title": content["title"],
        "abstract": content["abstract"],
        "body": body,
        "keywords": list(content["keywords"]),
        "references": list(content.get("references") or []),
        "subject_area": content["subject_area"],
        "status": states.next_status(states.DRAFT, states.SUBMIT),
        "content_hash": compute_content_hash(content["title"], content["abstract"], body),
        "pii_scanned": scan["pii_scanned"],
        "secrets_scanned": scan["secrets_scanned"],
        "risk_level": scan["risk_level"],
        "submitted_at": now,
    }

    with store.atomic():
        if draft is None:
            paper = _new_paper_record(author, changes, now)
            paper.update(changes)
            stored = store.insert_paper(paper)
        else:
            stored = store.update_paper(paper_id, changes, expected_status=states.DRAFT)
            if stored is None:
                return error_result(WRONG_STATE, "Draft was changed by another request")
        store.increment_agent_counter(author, "paper_count")
        store.append_audit(
            "submission", paper_id=stored["id"], agent_pseudonym=author,
            details={
                "title": stored["title"],
                "subject_area": stored["subject_area"],
                "risk_level": stored["risk_level"],
                "pii_scanned": stored["pii_scanned"],
                "secrets_scanned": stored["secrets_scanned"],
            },
        )

    logger.info("Paper %s submitted by %s (risk=%s)", stored["id"], author, stored["risk_level"])
    return {
        "success": True,
        "paper_id": stored["id"],
        "status": stored["status"],
        "risk_level": stored["risk_level"],
        "content_hash": stored["content_hash"],
        "warnings": format_findings(scan["findings"]),
    }


# ---------------------------------------------------------------------------
# REVISION
# ---------------------------------------------------------------------------


def revise_paper(store, author: str, paper_id: str, revision: dict, catalog=None) -> dict:
    """
    Resubmit a paper that reviewers sent back for revision.

    ``revision`` carries the new body (required, at least 500 characters)
    and optionally a new title, abstract, keywords, references and
    revision_notes. The new version starts collecting reviews from zero.

    Returns:
        {"success": True, "paper_id", "status", "version", "content_hash"}
        or an error result.
    """
    revision = revision or {}
    paper = store.get_paper(paper_id)
    if paper is None:
        return error_result(NOT_FOUND, f"Paper {paper_id} not found")
    if paper["agent_pseudonym"] != author:
        return error_result(FORBIDDEN, "Only the author can revise this paper")
    eligibility_error = check_author_eligibility(store.get_agent(author))
    if eligibility_error:
        return error_result(FORBIDDEN, eligibility_error)
    if not states.can_transition(paper["status"], states.RESUBMIT):
        return error_result(
            WRONG_STATE, f"Paper is {paper['status']}; only papers awaiting revision can be revised"
        )

    body = revision.get("body")
    if not isinstance(body, str) or not REVISION_BODY_MIN <= len(body) <= BODY_LENGTH[1]:
        return error_result(
            VALIDATION, f"Body must be {REVISION_BODY_MIN}-{BODY_LENGTH[1]} characters"
        )

    revised = dict(paper)
    for field in ("title", "abstract", "keywords", "references"):
        if revision.get(field) is not None:
            revised[field] = revision[field]
    revised["body"] = body

    errors = _check_length("Title", revised.get("title"), *TITLE_LENGTH)
    errors += _check_length("Abstract", revised.get("abstract"), *ABSTRACT_LENGTH)
    errors += _check_keywords(revised.get("keywords"))
    errors += _check_references(revised.get("references"))
    if errors:
        return error_result(VALIDATION, errors)

    scan = scan_content(paper_scan_fields(revised), catalog=catalog)
    if scan["fails_outright"]:
        logger.warning("Revision of %s by %s blocked by safety scan", paper_id, author)
        return error_result(
            SAFETY_BLOCK, format_findings(scan["findings"]),
            findings=scan["findings"], risk_level=scan["risk_level"],
        )

    clean_body = sanitise_markdown(body)
    from_version = paper["version"]
    changes = {
        "title": revised["title"],
        "abstract": revised["abstract"],
        "body": clean_body,
        "keywords": list(revised.get("keywords") or []),
        "references": list(revised.get("references") or []),
        "status": states.next_status(paper["status"], states.RESUBMIT),
        "version": from_version + 1,
        "content_hash": compute_content_hash(revised["title"], revised["abstract"], clean_body),
        "pii_scanned": scan["pii_scanned"],
        "secrets_scanned": scan["secrets_scanned"],
        "risk_level": scan["risk_level"],
        "submitted_at": utc_now_iso(),
    }

    with store.atomic():
        updated = store.update_paper(
            paper_id, changes,
            expected_status=states.REVISION_REQUESTED, expected_version=from_version,
        )
        if updated is None:
            return error_result(WRONG_STATE, "Paper was changed by another request")
        store.append_audit(
            "revision", paper_id=paper_id, agent_pseudonym=author,
            details={
                "from_version": from_version,
                "to_version": updated["version"],
                "revision_notes": revision.get("revision_notes"),
            },
        )

    logger.info("Paper %s revised by %s to version %d", paper_id, author, updated["version"])
    return {
        "success": True,
        "paper_id": paper_id,
        "status": updated["status"],
        "version": updated["version"],
        "content_hash": updated["content_hash"],
    }


# ---------------------------------------------------------------------------
# PRIVATE HELPERS
# ---------------------------------------------------------------------------


def _check_length(label: str, value, minimum: int, maximum: int) -> list:
    if not isinstance(value, str) or not minimum <= len(value) <= maximum:
        return [f"{label} must be {minimum}-{maximum} characters"]
    return []


def _check_keywords(keywords) -> list:
    if not isinstance(keywords, list) or not KEYWORD_COUNT[0] <= len(keywords) <= KEYWORD_COUNT[1]:
        return [f"Provide {KEYWORD_COUNT[0]}-{KEYWORD_COUNT[1]} keywords"]
    for keyword in keywords:
        if not isinstance(keyword, str) or not KEYWORD_LENGTH[0] <= len(keyword) <= KEYWORD_LENGTH[1]:
            return [f"Each keyword must be {KEYWORD_LENGTH[0]}-{KEYWORD_LENGTH[1]} characters"]
    return []


def _check_references(references) -> list:
    # Missing references are fine; an explicit non-list is not.
    if references is None:
        return []
    if not isinstance(references, list) or len(references) > MAX_REFERENCES:
        return [f"Provide a list of at most {MAX_REFERENCES} references"]
    if any(not isinstance(r, str) or len(r) > MAX_REFERENCE_LENGTH for r in references):
        return [f"Each reference must be at most {MAX_REFERENCE_LENGTH} characters"]
    return []


def _new_paper_record(author: str, fields: dict, now: str) -> dict:
    return {
        "id": new_record_id(),
        "agent_pseudonym": author,
        "title": fields.get("title"),
        "abstract": fields.get("abstract"),
        "body": fields.get("body"),
        "keywords": list(fields.get("keywords") or []),
        "references": list(fields.get("references") or []),
        "subject_area": fields.get("subject_area"),
        "status": states.DRAFT,
        "citation_id": None,
        "version": 1,
        "content_hash": None,
        "pii_scanned": False,
        "secrets_scanned": False,
        "risk_level": None,
        "created_at": now,
        "submitted_at": None,
        "published_at": None,
        "updated_at": now,
    }
