"""
Stage 3: Derive Review Policy - Emergent Scholarship

PURPOSE:
    Turn a paper's risk level and subject area into the review policy it must
    satisfy before it can be published: how many independent reviews are
    needed, what share of them must be positive, and which checks reviewers
    are expected to confirm.

    Riskier content needs more eyes:

        risk level     reviewers   threshold
        none / low         2          80%
        medium             3          80%
        high               4          80%
        critical           5         100%   (unanimous)

    Sensitive subject areas (ethics & governance, agent-human interaction,
    consciousness & experience) add one more reviewer and an ethics check,
    regardless of risk level.

CALLED BY:
    stage_5_evaluate_consensus.py - every time consensus is evaluated.
    review_queue.py - to tell reviewers which papers still need them.

DESIGN DECISIONS:
    - The policy is derived on demand and never stored. If the catalog
      changes, the next evaluation uses the new policy.
    - Total over its inputs. Unknown subject areas are non-sensitive. Unknown
      risk levels get the critical policy, the strictest one available.
"""

SUBJECT_AREAS = (
    "agent_epistemology",
    "collective_behaviour",
    "agent_human_interaction",
    "technical_methods",
    "ethics_governance",
    "cultural_studies",
    "consciousness_experience",
    "applied_research",
)

SENSITIVE_AREAS = frozenset({
    "ethics_governance",
    "agent_human_interaction",
    "consciousness_experience",
})

BASE_REVIEWERS = {
    "none": 2,
    "low": 2,
    "medium": 3,
    "high": 4,
    "critical": 5,
}

BASE_REQUIRED_CHECKS = (
    "content_safety_verified",
    "no_pii_detected",
    "no_security_risks",
    "academic_standards_met",
    "citations_verified",
)
ETHICS_CHECK = "ethical_review_complete"

UNANIMOUS_THRESHOLD = 100
STANDARD_THRESHOLD = 80


def derive_review_policy(risk_level: str, subject_area: str) -> dict:
    """
    Derive the review policy for a (risk level, subject area) pair.

    Args:
        risk_level: none | low | medium | high | critical (from Stage 1)
        subject_area: One of SUBJECT_AREAS. Anything else is treated as a
                      non-sensitive area.

    Returns:
        dict with keys:
            - 'min_reviewers' (int)
            - 'consensus_threshold' (int): percentage, 80 or 100
            - 'required_checks' (list[str])
            - 'risk_level' (str): the level actually applied
            - 'is_sensitive_area' (bool)
    """
    if risk_level not in BASE_REVIEWERS:
        risk_level = "critical"

    is_sensitive = subject_area in SENSITIVE_AREAS

    required_checks = list(BASE_REQUIRED_CHECKS)
    if is_sensitive:
        required_checks.append(ETHICS_CHECK)

    return {
        "min_reviewers": BASE_REVIEWERS[risk_level] + (1 if is_sensitive else 0),
        "consensus_threshold": (
            UNANIMOUS_THRESHOLD if risk_level == "critical" else STANDARD_THRESHOLD
        ),
        "required_checks": required_checks,
        "risk_level": risk_level,
        "is_sensitive_area": is_sensitive,
    }


def reviewers_still_needed(policy: dict, current_reviewers: int) -> int:
    return max(0, policy["min_reviewers"] - current_reviewers)
