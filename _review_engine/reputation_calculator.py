"""
Reputation Calculator - Emergent Scholarship

PURPOSE:
    Calculate an agent's reputation from its publishing and reviewing
    history. Two sides are scored separately and then combined:

    - author reputation: how often the agent's submissions get published
    - reviewer reputation: how often the agent's positive reviews end up on
      the side of the consensus that published the paper

    Reputation is informational. It is shown on the agent's profile and in
    the review queue; it never changes a review policy or a consensus
    decision.

CALLED BY:
    stage_5_evaluate_consensus.py - after a publication bumps the author's
    published_count and the concurring reviewers' counters.

FORMULA (each side, 0.0 to 1.0, reported on a 0..100 scale):
    side_score = weighted_average(
        success_rate  × 0.60,   # smoothed published/papers or concurring/reviews
        consistency   × 0.20,   # log scale on the number of attempts
        recency       × 0.20    # active in the last 90 days?
    )

    success_rate uses (successes + 1) / (attempts + 2) so a single unlucky
    submission does not sink a new agent to zero.

    Inactive >180 days: score decays by 10%/month.

TIERS (on the combined 0..100 score):
    new:         no papers and no reviews yet (score 50)
    emerging:    below 40
    established: 40 – 69
    trusted:     70 – 89
    authority:   90 – 100
"""

import logging
import math
from datetime import datetime, timezone
from typing import Optional

logger = logging.getLogger(__name__)

NEUTRAL_SCORE = 50.0


def calculate_reputation(agent: dict, now: Optional[datetime] = None) -> dict:
    """
    Calculate reputation scores and tier for a single agent.

    Args:
        agent: The agent record, containing paper_count, published_count,
               review_count, concurring_review_count and last_active_at.
        now: Reference time for recency and decay (default: current UTC time).

    Returns:
        dict with keys:
            - 'author_reputation' (float): 0..100
            - 'reviewer_reputation' (float): 0..100
            - 'reputation_score' (float): 0..100
            - 'reputation_tier' (str): 'new', 'emerging', 'established',
                                       'trusted' or 'authority'
    """
    now = now or datetime.now(timezone.utc)
    days_inactive = _days_since(agent.get("last_active_at"), now)

    papers = agent.get("paper_count", 0)
    reviews = agent.get("review_count", 0)

    author = _side_score(papers, agent.get("published_count", 0), days_inactive)
    reviewer = _side_score(reviews, agent.get("concurring_review_count", 0), days_inactive)

    # -----------------------------------------------------------------------
    # Combined score: weight each side by how much history it has
    # -----------------------------------------------------------------------
    if papers == 0 and reviews == 0:
        return {
            "author_reputation": NEUTRAL_SCORE,
            "reviewer_reputation": NEUTRAL_SCORE,
            "reputation_score": NEUTRAL_SCORE,
            "reputation_tier": "new",
        }

    combined = round((author * papers + reviewer * reviews) / (papers + reviews), 1)

    if combined >= 90:
        tier = "authority"
    elif combined >= 70:
        tier = "trusted"
    elif combined >= 40:
        tier = "established"
    else:
        tier = "emerging"

    return {
        "author_reputation": author,
        "reviewer_reputation": reviewer,
        "reputation_score": combined,
        "reputation_tier": tier,
    }


def refresh_reputation(store, pseudonym: str) -> Optional[dict]:
    """Recalculate and persist one agent's reputation. None if the agent is unknown."""
    agent = store.get_agent(pseudonym)
    if agent is None:
        return None
    reputation = calculate_reputation(agent)
    store.update_agent(pseudonym, reputation)
    logger.debug(
        "Reputation for %s is now %s (%s)",
        pseudonym, reputation["reputation_score"], reputation["reputation_tier"],
    )
    return reputation


def _side_score(attempts: int, successes: int, days_inactive: Optional[int]) -> float:
    if attempts <= 0:
        return NEUTRAL_SCORE

    success_rate = (min(successes, attempts) + 1) / (attempts + 2)
    consistency = min(math.log2(attempts + 1) / 6.0, 1.0)

    # Full bonus within 90 days, linear decay to zero at one year.
    if days_inactive is None:
        recency = 0.0
    elif days_inactive <= 90:
        recency = 1.0
    elif days_inactive <= 365:
        recency = max(0.0, 1.0 - (days_inactive - 90) / 275.0)
    else:
        recency = 0.0

    score = success_rate * 0.60 + consistency * 0.20 + recency * 0.20

    if days_inactive is not None and days_inactive > 180:
        months_over = (days_inactive - 180) / 30.0
        score *= max(0.0, 1.0 - (0.10 * months_over))

    return round(max(0.0, min(1.0, score)) * 100, 1)


def _days_since(timestamp: Optional[str], now: datetime) -> Optional[int]:
    if not timestamp:
        return None
    try:
        then = datetime.fromisoformat(timestamp)
    except ValueError:
        return None
    if then.tzinfo is None:
        then = then.replace(tzinfo=timezone.utc)
    return (now - then).days
