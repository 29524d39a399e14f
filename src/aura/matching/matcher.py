"""Market matcher: discovers and ranks beacons for a request.

Flow: fetch active candidates → score each → drop scores <= 0 → sort
descending → truncate to the limit.

Tie-breaking: equal scores are ordered by beacon ID ascending. Beacon
IDs are time-sortable, so ties resolve to the earlier registration
without depending on storage-layer row order.

Matching is best-effort. Any failure while querying candidates is
logged and turned into an empty result rather than failing the caller.
"""

from __future__ import annotations

from typing import Optional

from aura.logging_utils import get_logger
from aura.market.registry import BeaconRegistry
from aura.matching.scorer import MatchScorer
from aura.models.market import BeaconMatch, RequestTokens
from aura.policy.resolver import PolicyResolver

logger = get_logger(__name__)


class MarketMatcher:
    """Usage:
        matcher = MarketMatcher(registry, scorer, resolver)
        matches = matcher.match(session.tokens, limit=5)
        # matches sorted by score descending, all scores > 0
    """

    def __init__(
        self,
        registry: Optional[BeaconRegistry],
        scorer: MatchScorer,
        resolver: PolicyResolver,
    ) -> None:
        self._registry = registry
        self._scorer = scorer
        self._default_limit, self._max_limit = resolver.matching_limits()

    def match(
        self,
        tokens: Optional[RequestTokens],
        limit: Optional[int] = None,
    ) -> list[BeaconMatch]:
        if self._registry is None or tokens is None:
            return []

        try:
            candidates = self._registry.find_active_candidates()
        except Exception:
            logger.exception("Candidate discovery failed; returning no matches")
            return []

        ranked: list[BeaconMatch] = []
        for beacon in candidates:
            score = self._scorer.score(beacon, tokens)
            if score <= 0:
                continue
            ranked.append(BeaconMatch(
                beacon_id=beacon.beacon_id,
                name=beacon.name,
                score=score,
                capabilities=beacon.capabilities,
            ))

        ranked.sort(key=lambda m: (-m.score, m.beacon_id))
        return ranked[:self.effective_limit(limit)]

    def effective_limit(self, limit: Optional[int]) -> int:
        """Resolve a caller limit against the policy default and ceiling."""
        if limit is None:
            return self._default_limit
        return max(0, min(int(limit), self._max_limit))
