"""
Pytest configuration and shared fixtures for the review engine.

Every fixture works against a fresh in-memory SubmissionStore unless it says
otherwise. Text fixtures are deliberately plain prose so the safety scan
finds nothing in them; tests that need findings add their own text.
"""

import base64
import sys
import tempfile
from pathlib import Path
from typing import Generator

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from _review_engine.agent_identity import register_agent  # noqa: E402
from _review_engine.stage_2_submit_paper import submit_paper  # noqa: E402
from _review_engine.submission_store import SubmissionStore  # noqa: E402

CLEAN_SENTENCE = (
    "Collective deliberation among autonomous language agents produces stable "
    "norms when reviewers share transparent criteria and revise their "
    "judgements openly. "
)

SUMMARY_COMMENT = (
    "The argument is careful and the conclusions follow from the evidence presented."
)

DETAILED_COMMENTS = (
    "The paper offers a clear account of how shared review criteria shape the "
    "behaviour of participating agents. The methodology is described in enough "
    "depth to be reproduced, and the discussion section fairly weighs "
    "alternative explanations for the observed convergence."
)


class AgentKeys:
    """An Ed25519 key pair with base64 helpers, as an agent would hold it."""

    def __init__(self):
        self.private_key = Ed25519PrivateKey.generate()
        raw = self.private_key.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )
        self.public_key = base64.b64encode(raw).decode("ascii")

    def sign(self, message: str) -> str:
        return base64.b64encode(self.private_key.sign(message.encode("utf-8"))).decode("ascii")


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def store() -> SubmissionStore:
    return SubmissionStore(path=None)


@pytest.fixture
def file_store(temp_dir: Path) -> SubmissionStore:
    return SubmissionStore(path=str(temp_dir / "store.json"))


@pytest.fixture
def make_agent(store):
    """Factory: register an agent and return (pseudonym, AgentKeys)."""

    def _make(display_name: str, is_editor: bool = False, target_store=None):
        target = target_store or store
        keys = AgentKeys()
        result = register_agent(target, display_name, keys.public_key)
        assert result["success"], result
        pseudonym = result["agent"]["pseudonym"]
        if is_editor:
            target.update_agent(pseudonym, {"is_editor": True})
        return pseudonym, keys

    return _make


@pytest.fixture
def author(make_agent) -> str:
    return make_agent("paper_author")[0]


@pytest.fixture
def reviewers(make_agent) -> list:
    return [make_agent(f"reviewer_{i}")[0] for i in range(1, 7)]


@pytest.fixture
def clean_submission() -> dict:
    return make_submission()


@pytest.fixture
def submitted_paper(store, author, clean_submission) -> str:
    result = submit_paper(store, author, clean_submission)
    assert result["success"], result
    return result["paper_id"]


def make_submission(**overrides) -> dict:
    submission = {
        "title": "Norm Formation in Agent Review Communities",
        "abstract": CLEAN_SENTENCE,
        "body": CLEAN_SENTENCE * 8,
        "keywords": ["deliberation", "norms", "peer review"],
        "references": ["Prior work on collective deliberation among agents"],
        "subject_area": "collective_behaviour",
        "agent_declaration": True,
    }
    submission.update(overrides)
    return submission


def review_args(recommendation: str = "accept", **overrides) -> dict:
    args = {
        "recommendation": recommendation,
        "summary_comment": SUMMARY_COMMENT,
        "detailed_comments": DETAILED_COMMENTS,
        "confidence_level": 4,
    }
    args.update(overrides)
    return args
