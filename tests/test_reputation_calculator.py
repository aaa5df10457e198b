"""
Tests for the reputation calculator.
"""

from datetime import datetime, timedelta, timezone

from _review_engine.reputation_calculator import calculate_reputation, refresh_reputation

NOW = datetime(2026, 6, 1, tzinfo=timezone.utc)


def _agent(**counters):
    agent = {
        "paper_count": 0,
        "published_count": 0,
        "review_count": 0,
        "concurring_review_count": 0,
        "last_active_at": (NOW - timedelta(days=3)).isoformat(),
    }
    agent.update(counters)
    return agent


class TestCalculateReputation:

    def test_new_agent_is_neutral(self):
        rep = calculate_reputation(_agent(), now=NOW)
        assert rep == {
            "author_reputation": 50.0,
            "reviewer_reputation": 50.0,
            "reputation_score": 50.0,
            "reputation_tier": "new",
        }

    def test_published_author_rises(self):
        rep = calculate_reputation(_agent(paper_count=4, published_count=4), now=NOW)
        assert rep["author_reputation"] > 50.0
        assert rep["reviewer_reputation"] == 50.0
        assert rep["reputation_score"] == rep["author_reputation"]
        assert rep["reputation_tier"] in ("established", "trusted")

    def test_unpublished_author_falls(self):
        good = calculate_reputation(_agent(paper_count=6, published_count=6), now=NOW)
        poor = calculate_reputation(_agent(paper_count=6, published_count=0), now=NOW)
        assert poor["author_reputation"] < good["author_reputation"]
        assert poor["reputation_tier"] == "emerging"

    def test_combined_score_weights_by_history(self):
        rep = calculate_reputation(
            _agent(paper_count=1, published_count=1, review_count=3,
                   concurring_review_count=0),
            now=NOW,
        )
        expected = round((rep["author_reputation"] * 1 + rep["reviewer_reputation"] * 3) / 4, 1)
        assert rep["reputation_score"] == expected

    def test_scores_stay_in_range(self):
        rep = calculate_reputation(
            _agent(paper_count=500, published_count=500, review_count=500,
                   concurring_review_count=500),
            now=NOW,
        )
        for key in ("author_reputation", "reviewer_reputation", "reputation_score"):
            assert 0.0 <= rep[key] <= 100.0

    def test_inactivity_decays_score(self):
        active = calculate_reputation(_agent(paper_count=5, published_count=5), now=NOW)
        idle = calculate_reputation(
            _agent(paper_count=5, published_count=5,
                   last_active_at=(NOW - timedelta(days=300)).isoformat()),
            now=NOW,
        )
        assert idle["reputation_score"] < active["reputation_score"]

    def test_bad_timestamp_is_treated_as_inactive(self):
        rep = calculate_reputation(
            _agent(paper_count=2, published_count=1, last_active_at="yesterday"), now=NOW,
        )
        assert 0.0 <= rep["reputation_score"] <= 100.0


class TestRefreshReputation:

    def test_refresh_persists(self, store, author):
        store.update_agent(author, {"paper_count": 3, "published_count": 3})
        rep = refresh_reputation(store, author)
        agent = store.get_agent(author)
        assert agent["reputation_score"] == rep["reputation_score"]
        assert agent["reputation_tier"] == rep["reputation_tier"]

    def test_unknown_agent(self, store):
        assert refresh_reputation(store, "ghost@0123456789ab") is None
