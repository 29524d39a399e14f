"""Match scorer: scores one beacon against one request's tokens.

Pure computation. No side effects.

    score = base (active beacons only)
          + min(distinct_keyword_matches * keyword_points, keyword_cap)
          + category_points (request category found in capabilities)
    clamped to [0, max_score]

With the shipped policy: base 20, 15 points per keyword capped at 60,
category 20, max 100. An inactive beacon can still earn keyword and
category points but never the base, so an active beacon always
outranks an otherwise identical inactive one.
"""

from __future__ import annotations

from typing import Optional

from aura.matching.indexer import CapabilityIndexer
from aura.models.market import Beacon, BeaconStatus, RequestTokens
from aura.policy.resolver import PolicyResolver


class MatchScorer:
    """Computes integer match scores in [0, max_score].

    Usage:
        scorer = MatchScorer(resolver)
        score = scorer.score(beacon, RequestTokens(keywords=("widgets",)))
    """

    def __init__(self, resolver: PolicyResolver) -> None:
        self._weights = resolver.scoring_weights()

    def score(self, beacon: Beacon, tokens: Optional[RequestTokens]) -> int:
        w = self._weights
        total = 0

        if getattr(beacon, "status", None) == BeaconStatus.ACTIVE:
            total += w.base_active_score

        cap_text = CapabilityIndexer.index(getattr(beacon, "capabilities", None))
        if tokens is not None and cap_text:
            total += min(
                self.keyword_matches(cap_text, tokens) * w.keyword_match_points,
                w.keyword_score_cap,
            )
            category = tokens.category
            if isinstance(category, str) and category.strip():
                if category.strip().lower() in cap_text:
                    total += w.category_match_points

        return max(0, min(total, w.max_score))

    @staticmethod
    def keyword_matches(cap_text: str, tokens: RequestTokens) -> int:
        """Count distinct request keywords found anywhere in the capability
        text. Containment, not whole words: "widget" matches "widgets"."""
        return sum(1 for kw in tokens.distinct_keywords() if kw in cap_text)
