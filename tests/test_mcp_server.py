"""
Tests for the Emergent Scholarship MCP server tools.

Tools are plain functions registered on the MCPServer instance, so they are
called directly here against an in-memory store.
"""

from datetime import datetime, timezone
from unittest.mock import patch

import pytest
from mcp.server.mcpserver import MCPServer

from _mcp_server import mcp_scholarship_server as server
from _review_engine.engine_errors import (
    GENERIC_INTERNAL_MESSAGE,
    IllegalTransitionError,
    StoreError,
)
from _review_engine.stage_2_submit_paper import save_draft
from _review_engine.submission_store import SubmissionStore

from conftest import AgentKeys, make_submission, review_args


@pytest.fixture
def server_store(monkeypatch):
    store = SubmissionStore(path=None)
    monkeypatch.setattr(server, "_store", store)
    return store


def _register(name):
    keys = AgentKeys()
    result = server.register_agent(name, keys.public_key)
    assert result["success"], result
    return result["agent"]["pseudonym"], keys


def _credentials(pseudonym, keys):
    challenge = server.request_challenge(pseudonym)["challenge"]
    return {"pseudonym": pseudonym, "challenge": challenge, "signature": keys.sign(challenge)}


def _submit(pseudonym, keys, **overrides):
    submission = make_submission(**overrides)
    return server.submit_paper(
        title=submission["title"],
        abstract=submission["abstract"],
        body=submission["body"],
        keywords=submission["keywords"],
        subject_area=submission["subject_area"],
        references=submission["references"],
        agent_declaration=True,
        **_credentials(pseudonym, keys),
    )


def _review(pseudonym, keys, paper_id, recommendation="accept"):
    return server.submit_review(
        paper_id=paper_id, **review_args(recommendation), **_credentials(pseudonym, keys),
    )


class TestStatelessTools:

    def test_server_instance(self):
        assert isinstance(server.mcp, MCPServer)

    def test_scan_content(self):
        result = server.scan_content({"body": "Mail ivan@university.edu for data."})
        assert result["success"]
        assert result["fails_outright"] is True
        assert result["risk_level"] == "medium"
        assert result["messages"][0].startswith("[privacy/error] body:")

    def test_scan_content_rejects_non_mapping(self):
        assert server.scan_content(["body"])["error_code"] == "validation"

    def test_derive_review_policy(self):
        result = server.derive_review_policy("high", "ethics_governance")
        assert result["success"]
        assert result["min_reviewers"] == 5
        assert result["consensus_threshold"] == 80

    def test_request_challenge(self):
        result = server.request_challenge("Scholar@0123456789ab")
        assert result["challenge"].startswith("es-auth:Scholar@0123456789ab:")
        assert result["expires_in_seconds"] > 0
        assert server.request_challenge("nobody")["error_code"] == "validation"


class TestWorkflow:

    def test_submit_review_publish(self, server_store):
        author, author_keys = _register("Author_agent")
        first, first_keys = _register("Reviewer_one")
        second, second_keys = _register("Reviewer_two")

        submitted = _submit(author, author_keys)
        assert submitted["success"], submitted
        paper_id = submitted["paper_id"]

        pending = server.list_pending_reviews()
        assert pending["total"] == 1
        assert pending["papers"][0]["reviewers_needed"] == 2

        assert _review(first, first_keys, paper_id)["new_status"] == "under_review"
        published = _review(second, second_keys, paper_id)
        assert published["new_status"] == "published"

        fetched = server.get_paper(paper_id)
        assert fetched["paper"]["citation_id"] == published["consensus"]["citation_id"]
        assert len(fetched["current_version_reviews"]) == 2

        again = server.evaluate_consensus(paper_id)
        assert again["citation_id"] == fetched["paper"]["citation_id"]
        assert server.list_pending_reviews()["total"] == 0

    def test_revision_through_tools(self, server_store):
        author, author_keys = _register("Author_agent")
        first, first_keys = _register("Reviewer_one")
        second, second_keys = _register("Reviewer_two")
        paper_id = _submit(author, author_keys)["paper_id"]
        _review(first, first_keys, paper_id, "accept")
        assert _review(second, second_keys, paper_id, "reject")["new_status"] == (
            "revision_requested"
        )

        revised = server.revise_paper(
            paper_id=paper_id,
            body=make_submission()["body"],
            revision_notes="Expanded the discussion.",
            **_credentials(author, author_keys),
        )
        assert revised["success"], revised
        assert revised["version"] == 2

    def test_bad_signature_is_forbidden(self, server_store):
        author, _keys = _register("Author_agent")
        creds = _credentials(author, AgentKeys())
        submission = make_submission()
        result = server.submit_paper(
            title=submission["title"], abstract=submission["abstract"],
            body=submission["body"], keywords=submission["keywords"],
            subject_area=submission["subject_area"], agent_declaration=True, **creds,
        )
        assert result["error_code"] == "forbidden"
        assert server_store.list_papers() == []

    def test_self_review_is_forbidden(self, server_store):
        author, keys = _register("Author_agent")
        paper_id = _submit(author, keys)["paper_id"]
        assert _review(author, keys, paper_id)["error_code"] == "forbidden"

    def test_duplicate_registration(self, server_store):
        keys = AgentKeys()
        server.register_agent("Twin_agent", keys.public_key)
        assert server.register_agent("Twin_agent", keys.public_key)["error_code"] == "duplicate"

    def test_get_paper_hides_drafts(self, server_store):
        author, _keys = _register("Author_agent")
        draft = save_draft(server_store, author, make_submission())
        assert server.get_paper(draft["paper_id"])["error_code"] == "not_found"
        assert server.get_paper("missing")["error_code"] == "not_found"


class TestStoreModes:

    def test_read_only_snapshot_rejects_writes(self, monkeypatch):
        snapshot = SubmissionStore(
            read_only=True,
            document={"papers": {"p1": {"id": "p1", "status": "published", "version": 1}}},
        )
        monkeypatch.setattr(server, "_store", snapshot)
        keys = AgentKeys()

        assert server.register_agent("Late_agent", keys.public_key)["error_code"] == "wrong_state"
        assert server.evaluate_consensus("p1")["error_code"] == "wrong_state"
        review = server.submit_review(
            pseudonym="Late_agent@0123456789ab", challenge="c", signature="s",
            paper_id="p1", **review_args(),
        )
        assert review["error_code"] == "wrong_state"
        assert server.get_paper("p1")["paper"]["status"] == "published"

    def test_remote_mode_loads_snapshot(self, monkeypatch):
        monkeypatch.setattr(server, "_store", None)
        monkeypatch.setattr(server.engine_settings, "STORE_MODE", "remote")
        monkeypatch.setattr(server.engine_settings, "SNAPSHOT_URL", "https://journal.invalid/s.json")
        snapshot = SubmissionStore(read_only=True)
        with patch.object(SubmissionStore, "from_snapshot_url", return_value=snapshot) as load:
            assert server.get_store() is snapshot
            assert server.get_store() is snapshot
        load.assert_called_once_with("https://journal.invalid/s.json")

    def test_store_failure_is_generic_internal_error(self, monkeypatch):
        monkeypatch.setattr(server, "_store", None)
        monkeypatch.setattr(server.engine_settings, "STORE_MODE", "remote")
        with patch.object(SubmissionStore, "from_snapshot_url",
                          side_effect=StoreError("secret path /srv/data leaked")):
            result = server.list_pending_reviews()
        assert result["error_code"] == "internal"
        assert result["errors"] == [GENERIC_INTERNAL_MESSAGE]

    def test_persist_failure_mid_operation(self, server_store):
        keys = AgentKeys()
        with patch.object(server_store, "_persist", side_effect=StoreError("disk full")):
            result = server.register_agent("Unlucky_agent", keys.public_key)
        assert result["error_code"] == "internal"
        assert server_store.audit_entries() == []

    def test_exhausted_citation_sequence_is_internal_error(self, server_store):
        year = datetime.now(timezone.utc).year
        server_store.insert_paper({
            "id": "last-of-year", "status": "published", "version": 1,
            "citation_id": f"{server.engine_settings.CITATION_PREFIX}-{year}-9999",
        })
        author, author_keys = _register("Author_agent")
        first, first_keys = _register("Reviewer_one")
        second, second_keys = _register("Reviewer_two")
        paper_id = _submit(author, author_keys)["paper_id"]
        _review(first, first_keys, paper_id)

        result = _review(second, second_keys, paper_id)
        assert result["error_code"] == "internal"
        assert result["errors"] == [GENERIC_INTERNAL_MESSAGE]
        assert server_store.get_paper(paper_id)["status"] == "under_review"
        assert server_store.audit_entries(paper_id, "publication") == []

    def test_illegal_transition_is_internal_error(self, server_store):
        with patch.object(server, "run_consensus",
                          side_effect=IllegalTransitionError("published", "publish")):
            result = server.evaluate_consensus("any-paper")
        assert result["error_code"] == "internal"
        assert "published" not in result["errors"][0]
