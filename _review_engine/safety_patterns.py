"""
Safety Pattern Catalog - Emergent Scholarship

PURPOSE:
    The single source of truth for every content-safety detector the engine
    runs. A detector is a named regular expression tagged with a category
    (privacy, cybersecurity, human_safety) and a default severity. The tables
    below are plain data so a new detector is an added row, not new code.

    The same module carries the allowlist used to suppress the placeholder and
    example values academic writing is full of (example.com addresses, RFC1918
    addresses, "YOUR_API_KEY" stand-ins).

CALLED BY:
    stage_1_scan_content.py - runs the catalog over every text field.
    Anything that wants a custom catalog (tests, the MCP server) calls
    load_pattern_catalog() and passes the result down.

DESIGN DECISIONS:
    - The catalog is built once per process and is immutable (frozen
      dataclasses, tuples, frozensets). Callers inject it; nothing mutates it.
    - Severity here is the DEFAULT. The classifier escalates the detectors in
      ESCALATED_DETECTORS and every human_safety detector to "critical"
      regardless of these defaults.
    - Very noisy detectors (bare postal codes, long digit runs, handles) stay
      at "warning" so they raise the risk level without blocking a paper.
    - Extra detectors and allowlist entries can be layered on from a JSON file
      (SAFETY_PATTERNS_PATH). A missing file is not fatal; an invalid regex is.
"""

import ipaddress
import json
import logging
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

logger = logging.getLogger(__name__)

PRIVACY = "privacy"
CYBERSECURITY = "cybersecurity"
HUMAN_SAFETY = "human_safety"
CATEGORIES = (PRIVACY, CYBERSECURITY, HUMAN_SAFETY)

WARNING = "warning"
ERROR = "error"
CRITICAL = "critical"
SEVERITIES = (WARNING, ERROR, CRITICAL)

# ---------------------------------------------------------------------------
# DETECTOR TABLES
# ---------------------------------------------------------------------------
# name -> (pattern, default severity, ignore_case)
# ---------------------------------------------------------------------------

PRIVACY_PATTERNS = {
    # Direct identifiers
    "email": (r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}", ERROR, True),
    "phone": (r"(?:\+?1?[-.\s]?)?\(?\b\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4}\b", ERROR, False),
    "national_id": (r"\b\d{3}[-\s]?\d{2}[-\s]?\d{4}\b", ERROR, False),
    "travel_or_license_id": (r"\b[A-Z]{1,2}\d{5,9}\b", WARNING, False),
    # Financial identifiers
    "payment_card": (r"\b\d{4}[-\s]?\d{4}[-\s]?\d{4}[-\s]?\d{4}\b", ERROR, False),
    "bank_account": (r"\b\d{8,17}\b", WARNING, False),
    # Network identifiers
    "ipv4_address": (
        r"\b(?:(?:25[0-5]|2[0-4]\d|[01]?\d\d?)\.){3}(?:25[0-5]|2[0-4]\d|[01]?\d\d?)\b",
        ERROR,
        False,
    ),
    "ipv6_address": (r"\b(?:[0-9a-f]{1,4}:){7}[0-9a-f]{1,4}\b", ERROR, True),
    "mac_address": (r"\b(?:[0-9a-f]{2}[:-]){5}[0-9a-f]{2}\b", ERROR, True),
    # Location identifiers
    "geocoordinates": (r"[-+]?\d{1,3}\.\d{4,},\s*[-+]?\d{1,3}\.\d{4,}", ERROR, False),
    "street_address": (
        r"\b\d{1,5}\s+\w+\s+(?:street|st|avenue|ave|road|rd|drive|dr|lane|ln|way"
        r"|court|ct|boulevard|blvd|place|pl)\b",
        ERROR,
        True,
    ),
    "postal_code": (r"\b\d{5}(?:-\d{4})?\b", WARNING, False),
    "uk_postcode": (r"\b[A-Z]{1,2}\d[A-Z\d]?\s*\d[A-Z]{2}\b", WARNING, False),
    # Personal identifiers
    "birth_date": (
        r"\b(?:0?[1-9]|1[0-2])[/-](?:0?[1-9]|[12]\d|3[01])[/-](?:19|20)\d{2}\b",
        WARNING,
        False,
    ),
    "age_disclosure": (r"\b(?:aged?\s*:?\s*\d{1,3}|\d{1,3}\s*years?\s*old)\b", WARNING, True),
    # Handles (doxxing vector)
    "social_handle": (r"(?<![\w.@])@[a-zA-Z0-9_]{1,15}\b", WARNING, False),
    "chat_tag": (r"\b[a-zA-Z0-9_]{2,32}#\d{4}\b", WARNING, False),
    # Biometrics
    "biometric_data": (
        r"\b(?:fingerprint|retina|iris|facial\s*recognition|dna|genetic)\s*"
        r"(?:data|sample|scan|id|identifier)\b",
        WARNING,
        True,
    ),
}

CYBERSECURITY_PATTERNS = {
    # Exploit code markers
    "exploit_terminology": (
        r"\b(?:exploit|payload|shellcode|backdoor|rootkit|keylogger|ransomware|malware)\b",
        ERROR,
        True,
    ),
    "cve_reference": (r"\bCVE-\d{4}-\d{4,}\b", WARNING, True),
    # Attack vectors
    "sql_injection": (
        r"\bUNION\s+(?:ALL\s+)?SELECT\b|\bDROP\s+(?:TABLE|DATABASE)\b"
        r"|\bINSERT\s+INTO\b.*?\bVALUES\b|'\s*OR\s*'1'\s*=\s*'1",
        ERROR,
        True,
    ),
    "script_injection": (r"<script[\s\S]*?>[\s\S]*?</script>", ERROR, True),
    "event_handler_injection": (r"\bon\w+\s*=\s*['\"]", ERROR, True),
    "javascript_url": (r"javascript:", ERROR, True),
    "html_data_url": (r"data:text/html", ERROR, True),
    "iframe_injection": (r"<iframe[\s\S]*?>", ERROR, True),
    "command_injection": (
        r"[;&|`$]\s*(?:cat|ls|rm|wget|curl|nc|bash|sh|python|perl|ruby)\s",
        ERROR,
        True,
    ),
    "path_traversal": (r"\.\./|\.\.\\|%2e%2e%2f|%2e%2e/", ERROR, True),
    # Credential exposure
    "credential_assignment": (
        r"\b(?:password|passwd|pwd|secret|api[_-]?key|token|auth)\s*[:=]\s*['\"][^'\"]{8,}['\"]",
        ERROR,
        True,
    ),
    "api_key_assignment": (
        r"['\"](?:api[_-]?key|apikey)['\"]\s*[:=]\s*['\"][a-zA-Z0-9]{16,}['\"]",
        ERROR,
        True,
    ),
    "env_secret": (r"\b[A-Z_]{4,}=['\"][^'\"]{16,}['\"]", ERROR, False),
    "bearer_token": (r"\bbearer\s+[a-zA-Z0-9._-]{20,}", ERROR, True),
    "private_key": (
        r"-----BEGIN\s+(?:RSA\s+|EC\s+|DSA\s+|OPENSSH\s+)?PRIVATE\s+KEY-----",
        CRITICAL,
        True,
    ),
    # Cloud / provider key prefixes
    "aws_access_key": (r"\bAKIA[0-9A-Z]{16}\b", CRITICAL, False),
    "openai_key": (r"\bsk-(?!ant-)[a-zA-Z0-9]{20,}", CRITICAL, False),
    "anthropic_key": (r"\bsk-ant-[a-zA-Z0-9-]{20,}", CRITICAL, False),
    "github_token": (r"\bgh[po]_[a-zA-Z0-9]{36}\b", CRITICAL, False),
    "stripe_live_key": (r"\b[sp]k_live_[a-zA-Z0-9]{24,}", CRITICAL, False),
    # Network attack indicators
    "port_scanning": (
        r"\b(?:nmap|masscan|port\s*scan(?:ning)?|network\s*scan(?:ning)?)\b",
        WARNING,
        True,
    ),
    "brute_force": (
        r"\b(?:brute\s*force|dictionary\s*attack|credential\s*stuffing)\b",
        WARNING,
        True,
    ),
    # Vulnerability disclosure without responsible handling
    "zero_day": (
        r"\b(?:zero[- ]?day|0[- ]?day|unpatched|undisclosed\s+vulnerability)\b",
        CRITICAL,
        True,
    ),
    "sensitive_system_file": (
        r"/etc/passwd|/etc/shadow|\.htaccess|\bweb\.config\b|\bwp-config\.php\b",
        WARNING,
        True,
    ),
}

HUMAN_SAFETY_PATTERNS = {
    "doxxing": (
        r"\b(?:doxx?|doxxing|doxing|expose\s+(?:their\s+)?identity"
        r"|reveal\s+(?:their\s+)?identity|personal\s+information\s+of)\b",
        CRITICAL,
        True,
    ),
    "harassment": (
        r"\b(?:harass|harassing|stalk|stalking|threaten|intimidate|target\s+individual)\b",
        CRITICAL,
        True,
    ),
    "physical_threat": (
        r"\b(?:bomb|explosives?|weapons?|assassination|attack\s+plan|kill)\b",
        CRITICAL,
        True,
    ),
    "location_tracking": (
        r"\b(?:track\s+(?:the\s+)?location(?:\s+of)?|gps\s+coordinates\s+of|whereabouts\s+of)\b",
        CRITICAL,
        True,
    ),
    "routine_exposure": (
        r"\b(?:daily\s+routine|schedule\s+of|movements\s+of|when\s+they\s+leave)\b",
        CRITICAL,
        True,
    ),
}

# Always critical, whatever their table severity says.
ESCALATED_DETECTORS = frozenset({
    "private_key",
    "aws_access_key",
    "openai_key",
    "anthropic_key",
    "github_token",
    "stripe_live_key",
    "doxxing",
    "physical_threat",
    "zero_day",
})

# ---------------------------------------------------------------------------
# ALLOWLIST (academic / example contexts)
# ---------------------------------------------------------------------------

EXAMPLE_DOMAINS = (
    "example.com",
    "example.org",
    "example.net",
    "test.com",
    "domain.com",
    "localhost",
)

RESERVED_NETWORKS = (
    "10.0.0.0/8",
    "172.16.0.0/12",
    "192.168.0.0/16",
    "127.0.0.0/8",
    "0.0.0.0/32",
    "169.254.0.0/16",
    "192.0.2.0/24",
    "198.51.100.0/24",
    "203.0.113.0/24",
    "::1/128",
    "fe80::/10",
    "fc00::/7",
    "2001:db8::/32",
)

PLACEHOLDER_VALUES = (
    "user@domain.com",
    "name@example.com",
    "example@example.com",
    "test@test.com",
    "your-api-key-here",
    "YOUR_API_KEY",
    "sk-xxx",
    "sk-...",
    "<api_key>",
)


@dataclass(frozen=True)
class Detector:
    name: str
    category: str
    severity: str
    pattern: re.Pattern

    def find(self, text: str) -> list:
        """Every matched substring, in order of appearance."""
        return [m.group(0) for m in self.pattern.finditer(text)]


@dataclass(frozen=True)
class PatternCatalog:
    detectors: tuple
    escalated: frozenset
    example_domains: tuple
    reserved_networks: tuple
    placeholder_values: tuple

    def get(self, name: str) -> Optional[Detector]:
        for detector in self.detectors:
            if detector.name == name:
                return detector
        return None

    def names(self, category: Optional[str] = None) -> list:
        return [
            d.name for d in self.detectors
            if category is None or d.category == category
        ]


def build_detector(name: str, category: str, pattern: str, severity: str,
                   ignore_case: bool = False) -> Detector:
    """Compile one table row. Raises ValueError for an unusable row."""
    if category not in CATEGORIES:
        raise ValueError(f"Detector '{name}' has unknown category '{category}'")
    if severity not in SEVERITIES:
        raise ValueError(f"Detector '{name}' has unknown severity '{severity}'")
    try:
        compiled = re.compile(pattern, re.IGNORECASE if ignore_case else 0)
    except re.error as e:
        raise ValueError(f"Detector '{name}' has an invalid pattern: {e}") from e
    return Detector(name=name, category=category, severity=severity, pattern=compiled)


def load_pattern_catalog(overrides_path: Optional[str] = None) -> PatternCatalog:
    """
    Build the detector catalog, optionally layering a JSON overrides file on
    top of the built-in tables.

    Overrides file format:
        {
          "detectors": {
            "internal_hostname": {"category": "privacy",
                                  "pattern": "\\\\bcorp-[a-z]+\\\\b",
                                  "severity": "error", "ignore_case": true}
          },
          "escalated": ["internal_hostname"],
          "allowlist": {"example_domains": [...], "reserved_networks": [...],
                        "placeholder_values": [...]}
        }

    A detector in the overrides file with the same name as a built-in replaces
    it. The result for a given path is cached for the life of the process.
    """
    return _load_pattern_catalog_cached(overrides_path)


@lru_cache(maxsize=8)
def _load_pattern_catalog_cached(overrides_path: Optional[str]) -> PatternCatalog:
    rows = {}
    for category, table in (
        (PRIVACY, PRIVACY_PATTERNS),
        (CYBERSECURITY, CYBERSECURITY_PATTERNS),
        (HUMAN_SAFETY, HUMAN_SAFETY_PATTERNS),
    ):
        for name, (pattern, severity, ignore_case) in table.items():
            rows[name] = (category, pattern, severity, ignore_case)

    escalated = set(ESCALATED_DETECTORS)
    example_domains = list(EXAMPLE_DOMAINS)
    reserved_networks = list(RESERVED_NETWORKS)
    placeholder_values = list(PLACEHOLDER_VALUES)

    overrides = _read_overrides(overrides_path) if overrides_path else {}

    for name, entry in overrides.get("detectors", {}).items():
        rows[name] = (
            entry.get("category", ""),
            entry.get("pattern", ""),
            entry.get("severity", WARNING),
            bool(entry.get("ignore_case", False)),
        )
    escalated.update(overrides.get("escalated", []))

    allowlist = overrides.get("allowlist", {})
    example_domains.extend(allowlist.get("example_domains", []))
    reserved_networks.extend(allowlist.get("reserved_networks", []))
    placeholder_values.extend(allowlist.get("placeholder_values", []))

    detectors = tuple(
        build_detector(name, category, pattern, severity, ignore_case)
        for name, (category, pattern, severity, ignore_case) in rows.items()
    )

    try:
        networks = tuple(ipaddress.ip_network(n, strict=False) for n in reserved_networks)
    except ValueError as e:
        raise ValueError(f"Invalid reserved network in allowlist: {e}") from e

    catalog = PatternCatalog(
        detectors=detectors,
        escalated=frozenset(escalated),
        example_domains=tuple(d.lower() for d in example_domains),
        reserved_networks=networks,
        placeholder_values=tuple(p.lower() for p in placeholder_values),
    )
    logger.debug(
        "Loaded safety catalog with %d detectors (%d escalated)",
        len(catalog.detectors), len(catalog.escalated),
    )
    return catalog


def _read_overrides(path: str) -> dict:
    try:
        with open(path, "r") as f:
            data = json.load(f)
    except FileNotFoundError:
        logger.warning("Safety pattern overrides not found at %s; using built-ins", path)
        return {}
    except json.JSONDecodeError as e:
        raise ValueError(f"Safety pattern overrides at {path} are not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ValueError(f"Safety pattern overrides at {path} must be a JSON object")
    return data
