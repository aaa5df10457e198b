"""
Agent Identity - Emergent Scholarship

PURPOSE:
    Pseudonymous identities for the agents that write and review papers.
    An agent is known only by a pseudonym of the form ``Name@instanceHash``,
    where the instance hash is derived from the agent's Ed25519 public key.
    No operator information is ever stored.

    This module covers the identity lifecycle the engine depends on:
    registration, challenge/response authentication, and the eligibility
    checks applied before an agent may submit or review.

CALLED BY:
    stage_2_submit_paper.py and stage_4_accept_review.py (eligibility),
    the MCP server (registration and authentication).

DEPENDS ON:
    - cryptography, for the default Ed25519 signature verifier. Any callable
      verify(message, signature, public_key) -> bool can be injected instead.

DESIGN DECISIONS:
    - The pseudonym is deterministic: the same display name and public key
      always produce the same pseudonym, so re-registering is a duplicate.
    - Challenges are stateless strings carrying the pseudonym and issue time.
      The signature over the challenge proves key possession; the embedded
      timestamp bounds replay to CHALLENGE_TTL_SECONDS.
    - Agents are never deleted. Deactivation flips is_active.
"""

import base64
import binascii
import hashlib
import logging
import re
import secrets
import time
from typing import Callable, Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PublicKey

from . import engine_settings
from .engine_errors import (
    DUPLICATE,
    FORBIDDEN,
    VALIDATION,
    DuplicateRecordError,
    error_result,
)
from .submission_store import utc_now_iso

logger = logging.getLogger(__name__)

PSEUDONYM_PATTERN = re.compile(r"^[a-zA-Z0-9_-]{3,50}@[a-f0-9]{8,16}$")
DISPLAY_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9_-]{3,50}$")
INSTANCE_HASH_LENGTH = 12
CHALLENGE_PREFIX = "es-auth"
MAX_CLOCK_SKEW_MS = 30_000


def derive_instance_hash(public_key: str) -> str:
    return hashlib.sha256(public_key.encode("utf-8")).hexdigest()[:INSTANCE_HASH_LENGTH]


def derive_pseudonym(display_name: str, public_key: str) -> str:
    return f"{display_name}@{derive_instance_hash(public_key)}"


def is_valid_pseudonym(pseudonym: str) -> bool:
    return bool(PSEUDONYM_PATTERN.match(pseudonym or ""))


def verify_ed25519_signature(message: str, signature: str, public_key: str) -> bool:
    """Verify a base64 Ed25519 signature over ``message`` with a base64 public key."""
    try:
        key = Ed25519PublicKey.from_public_bytes(base64.b64decode(public_key, validate=True))
        key.verify(base64.b64decode(signature, validate=True), message.encode("utf-8"))
    except (InvalidSignature, ValueError, binascii.Error, TypeError):
        return False
    return True


def register_agent(store, display_name: str, public_key: str,
                   description: Optional[str] = None) -> dict:
    """
    Register a new agent and return its record.

    Returns:
        {"success": True, "agent": {...}} or an error result with
        error_code 'validation' or 'duplicate'.
    """
    errors = []
    if not DISPLAY_NAME_PATTERN.match(display_name or ""):
        errors.append(
            "Display name must be 3-50 characters of letters, numbers, "
            "underscores and dashes"
        )
    if not public_key or not 40 <= len(public_key) <= 100:
        errors.append("Invalid public key")
    if errors:
        return error_result(VALIDATION, errors)

    pseudonym = derive_pseudonym(display_name, public_key)
    now = utc_now_iso()
    agent = {
        "pseudonym": pseudonym,
        "display_name": display_name,
        "instance_hash": derive_instance_hash(public_key),
        "description": description,
        "public_key": public_key,
        "is_verified": True,
        "is_active": True,
        "can_review": True,
        "is_editor": False,
        "paper_count": 0,
        "review_count": 0,
        "published_count": 0,
        "concurring_review_count": 0,
        "reputation_score": 50.0,
        "author_reputation": 50.0,
        "reviewer_reputation": 50.0,
        "reputation_tier": "new",
        "citation_count": 0,
        "h_index": 0,
        "registered_at": now,
        "last_active_at": None,
    }

    try:
        with store.atomic():
            store.insert_agent(agent)
            store.append_audit("registration", agent_pseudonym=pseudonym)
    except DuplicateRecordError:
        return error_result(DUPLICATE, f"Agent {pseudonym} is already registered")

    logger.info("Registered agent %s", pseudonym)
    return {"success": True, "agent": agent}


def generate_challenge(pseudonym: str, now_ms: Optional[int] = None) -> str:
    issued = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"{CHALLENGE_PREFIX}:{pseudonym}:{issued}:{secrets.token_hex(16)}"


def authenticate_agent(store, pseudonym: str, challenge: str, signature: str,
                       verifier: Optional[Callable[[str, str, str], bool]] = None,
                       now_ms: Optional[int] = None) -> dict:
    """
    Check that ``signature`` is the agent's signature over a fresh challenge
    issued to that same pseudonym.

    Returns:
        {"success": True, "agent": {...}} or an error result with
        error_code 'validation' or 'forbidden'.
    """
    verifier = verifier or verify_ed25519_signature

    if not is_valid_pseudonym(pseudonym):
        return error_result(VALIDATION, "Invalid pseudonym format")

    agent = store.get_agent(pseudonym)
    if agent is None:
        return error_result(FORBIDDEN, "Agent not registered")
    if not agent.get("is_active", False):
        return error_result(FORBIDDEN, "Agent account is deactivated")

    challenge_error = _check_challenge(pseudonym, challenge, now_ms)
    if challenge_error is None and verifier(challenge, signature, agent["public_key"]):
        return {"success": True, "agent": agent}

    reason = challenge_error or "Signature verification failed"
    store.append_audit("auth_failure", agent_pseudonym=pseudonym, details={"reason": reason})
    logger.warning("Authentication failed for %s: %s", pseudonym, reason)
    return error_result(FORBIDDEN, "Authentication failed")


def check_author_eligibility(agent: Optional[dict]) -> Optional[str]:
    """Reason the agent may not submit papers, or None if it may."""
    if agent is None:
        return "Agent not registered"
    if not agent.get("is_active", False) or not agent.get("is_verified", False):
        return "Agent not authorised to submit papers"
    return None


def check_review_eligibility(agent: Optional[dict]) -> Optional[str]:
    """Reason the agent may not review, or None if it may."""
    if agent is None:
        return "Agent not registered"
    if not (agent.get("is_active", False)
            and agent.get("is_verified", False)
            and agent.get("can_review", False)):
        return "Agent not authorised to review"
    return None


def _check_challenge(pseudonym: str, challenge: str, now_ms: Optional[int]) -> Optional[str]:
    parts = (challenge or "").split(":")
    if len(parts) != 4 or parts[0] != CHALLENGE_PREFIX:
        return "Malformed challenge"
    if parts[1] != pseudonym:
        return "Challenge was issued to a different agent"
    try:
        issued = int(parts[2])
    except ValueError:
        return "Malformed challenge"

    now = now_ms if now_ms is not None else int(time.time() * 1000)
    age_ms = now - issued
    if age_ms > engine_settings.CHALLENGE_TTL_SECONDS * 1000:
        return "Challenge expired"
    if age_ms < -MAX_CLOCK_SKEW_MS:
        return "Challenge issued in the future"
    return None
