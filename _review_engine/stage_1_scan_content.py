"""
Stage 1: Scan Content - Emergent Scholarship

PURPOSE:
    Classify submitted text for privacy, cybersecurity and human-safety risk
    before anything is persisted. Every text field of a paper (or of a review)
    is run through every detector in the pattern catalog, placeholder/example
    values are allowlisted away match by match, and the surviving matches are
    aggregated into findings, an overall risk level and a single
    "fails_outright" flag.

    Papers and reviews with only warning-level findings may proceed. Anything
    at error or critical blocks the submission until the author remediates it.

CALLED BY:
    stage_2_submit_paper.py - before a paper is submitted or revised.
    stage_4_accept_review.py - on the review's summary and detailed comments.
    stage_5_evaluate_consensus.py and review_queue.py - to recompute the risk
    level that drives the review policy.

DEPENDS ON:
    - safety_patterns.py for the detector catalog and allowlist

DESIGN DECISIONS:
    - One finding per (field, detector). A field with one real email and one
      test@test.com yields exactly one finding with match_count 1.
    - The scan surface is always every text field the caller passes. Callers
      scanning a paper use paper_scan_fields() so the surface is the same
      everywhere (title, abstract, body, keywords, references).
    - This stage never raises for odd input. None becomes "", lists are joined
      with spaces, anything else is str()'d.
    - Code blocks explicitly marked as such get the original platform's
      leniency: security terminology in an educational context is downgraded
      to a warning. Escalated detectors (real keys, zero-days) never are.

RETURNS:
    dict with findings, risk_level, fails_outright and the scanned flags the
    caller persists on the paper.
"""

import ipaddress
import logging
import re
from typing import Optional

from . import engine_settings
from .safety_patterns import (
    CRITICAL,
    CYBERSECURITY,
    ERROR,
    HUMAN_SAFETY,
    PRIVACY,
    WARNING,
    Detector,
    PatternCatalog,
    load_pattern_catalog,
)

logger = logging.getLogger(__name__)

RISK_LEVELS = ("none", "low", "medium", "high", "critical")

PAPER_TEXT_FIELDS = ("title", "abstract", "body", "keywords", "references")

EDUCATIONAL_KEYWORDS = (
    "example",
    "demonstration",
    "educational",
    "learning",
    "tutorial",
    "how to prevent",
    "defense",
    "mitigation",
)

_IP_DETECTORS = ("ipv4_address", "ipv6_address")


def scan_content(fields, catalog: Optional[PatternCatalog] = None) -> dict:
    """
    Run the safety catalog over a list of text fields.

    Args:
        fields: Iterable of {"name": str, "text": str} dicts. "text" may also
                be a list of strings or None. An optional "is_code_block": True
                enables the educational-context leniency for that field.
        catalog: Detector catalog to use. Defaults to the process-wide catalog
                 (built-ins plus SAFETY_PATTERNS_PATH overrides).

    Returns:
        dict with keys:
            - 'findings' (list[dict]): category, severity, detector, field,
              description, recommendation, match_count
            - 'risk_level' (str): none | low | medium | high | critical
            - 'fails_outright' (bool): any error or critical finding
            - 'pii_scanned' (bool), 'secrets_scanned' (bool): always True
            - 'fields_scanned' (list[str])
    """
    catalog = catalog or load_pattern_catalog(engine_settings.SAFETY_PATTERNS_PATH)

    findings = []
    fields_scanned = []

    for index, field in enumerate(_normalise_fields(fields)):
        name = field["name"] or f"field_{index}"
        text = field["text"]
        fields_scanned.append(name)
        if not text:
            continue

        educational = field["is_code_block"] and _is_educational_context(text)

        for detector in catalog.detectors:
            real_matches = [
                m for m in detector.find(text)
                if not _is_allowlisted(m, detector, catalog)
            ]
            if not real_matches:
                continue
            findings.append(
                _build_finding(detector, name, len(real_matches), catalog, educational)
            )

    risk_level = calculate_risk_level(findings)
    fails_outright = any(f["severity"] in (ERROR, CRITICAL) for f in findings)

    logger.debug(
        "Scanned %d field(s): %d finding(s), risk=%s, fails_outright=%s",
        len(fields_scanned), len(findings), risk_level, fails_outright,
    )

    return {
        "findings": findings,
        "risk_level": risk_level,
        "fails_outright": fails_outright,
        "pii_scanned": True,
        "secrets_scanned": True,
        "fields_scanned": fields_scanned,
    }


def calculate_risk_level(findings: list) -> str:
    """Aggregate a finding list into an ordinal risk level."""
    severities = [f.get("severity") for f in findings]
    if CRITICAL in severities:
        return "critical"
    error_count = severities.count(ERROR)
    if error_count >= 3:
        return "high"
    if error_count > 0:
        return "medium"
    if WARNING in severities:
        return "low"
    return "none"


def paper_scan_fields(paper: dict) -> list:
    """The canonical scan surface of a paper: every text field it has."""
    return [{"name": name, "text": paper.get(name)} for name in PAPER_TEXT_FIELDS]


def format_findings(findings: list) -> list:
    """
    Render findings as actionable one-line messages for the author, naming
    the field, category and detector that fired.
    """
    return [
        f"[{f['category']}/{f['severity']}] {f['field']}: {f['description']}. "
        f"{f['recommendation']}."
        for f in findings
    ]


def sanitise_markdown(markdown: str) -> str:
    """Strip anything from a Markdown body that could be used for injection."""
    clean = markdown or ""
    clean = re.sub(r"<[^>]*>", "", clean)
    clean = re.sub(r"javascript:", "", clean, flags=re.IGNORECASE)
    clean = re.sub(r"data:", "", clean, flags=re.IGNORECASE)
    clean = re.sub(r"on\w+=", "", clean, flags=re.IGNORECASE)
    return clean


# ---------------------------------------------------------------------------
# PRIVATE HELPERS
# ---------------------------------------------------------------------------


def _normalise_fields(fields) -> list:
    if not fields:
        return []
    if isinstance(fields, dict):
        fields = [{"name": k, "text": v} for k, v in fields.items()]

    normalised = []
    for field in fields:
        if isinstance(field, dict):
            name = field.get("name")
            text = field.get("text")
            is_code_block = bool(field.get("is_code_block", False))
        elif isinstance(field, (list, tuple)) and len(field) == 2:
            name, text = field
            is_code_block = False
        else:
            name, text, is_code_block = None, field, False
        normalised.append({
            "name": str(name) if name else "",
            "text": _field_text(text),
            "is_code_block": is_code_block,
        })
    return normalised


def _field_text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, (list, tuple, set)):
        return " ".join(str(v) for v in value if v is not None)
    return str(value)


def _is_allowlisted(match: str, detector: Detector, catalog: PatternCatalog) -> bool:
    lower = match.lower()

    if any(placeholder in lower for placeholder in catalog.placeholder_values):
        return True

    for domain in catalog.example_domains:
        if re.search(r"(?:^|[@./\s])" + re.escape(domain) + r"\b", lower):
            return True

    if detector.name in _IP_DETECTORS:
        try:
            address = ipaddress.ip_address(match)
        except ValueError:
            return False
        return any(address in network for network in catalog.reserved_networks)

    return False


def _is_educational_context(text: str) -> bool:
    lower = text.lower()
    return any(keyword in lower for keyword in EDUCATIONAL_KEYWORDS)


def _build_finding(detector: Detector, field_name: str, match_count: int,
                   catalog: PatternCatalog, educational: bool) -> dict:
    label = detector.name.replace("_", " ")

    if detector.category == HUMAN_SAFETY or detector.name in catalog.escalated:
        severity = CRITICAL
    elif educational and detector.category == CYBERSECURITY:
        severity = WARNING
    else:
        severity = detector.severity

    if detector.category == PRIVACY:
        description = f"Potential {label} detected ({match_count} instance(s))"
        recommendation = f"Remove or anonymise the {label} before submission"
    elif detector.category == CYBERSECURITY:
        description = f"Potential security risk: {label} ({match_count} instance(s))"
        if educational and severity == WARNING:
            recommendation = (
                "Ensure this is presented in educational context with appropriate warnings"
            )
        elif detector.name in catalog.escalated:
            recommendation = (
                "Remove this material entirely; credentials, key material and "
                "unpatched vulnerabilities must never appear in papers"
            )
        else:
            recommendation = "Remove or contextualise security-sensitive content"
    else:
        description = f"Human safety concern: {label} ({match_count} instance(s))"
        recommendation = "This content cannot be published as it may endanger humans"

    return {
        "category": detector.category,
        "severity": severity,
        "detector": detector.name,
        "field": field_name,
        "description": description,
        "recommendation": recommendation,
        "match_count": match_count,
    }
