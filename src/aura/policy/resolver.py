"""Policy resolver: loads market_policy.json and exposes every tunable
as a typed method call.

If a required section is missing from the config, it fails loud.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any


@dataclass(frozen=True)
class ScoringWeights:
    """Point values for the additive match score."""
    base_active_score: int
    keyword_match_points: int
    keyword_score_cap: int
    category_match_points: int
    max_score: int


class PolicyResolver:
    """Loads and resolves marketplace policy.

    Usage:
        resolver = PolicyResolver.from_config_dir(Path("config"))
        weights = resolver.scoring_weights()
        default_limit, max_limit = resolver.matching_limits()
    """

    _REQUIRED_SECTIONS = ("scoring", "matching", "sessions", "offers", "request_tokens")

    def __init__(self, policy: dict[str, Any]) -> None:
        self._policy = policy
        self._validate()

    @classmethod
    def from_config_dir(cls, config_dir: Path) -> PolicyResolver:
        """Load from the canonical config directory."""
        return cls(_load_json(config_dir / "market_policy.json"))

    def _validate(self) -> None:
        if "version" not in self._policy:
            raise ValueError("market_policy.json missing version")
        for section in self._REQUIRED_SECTIONS:
            if section not in self._policy:
                raise ValueError(f"market_policy.json missing section: {section}")

    @property
    def version(self) -> str:
        return str(self._policy["version"])

    # ------------------------------------------------------------------
    # Scoring and matching
    # ------------------------------------------------------------------

    def scoring_weights(self) -> ScoringWeights:
        s = self._policy["scoring"]
        return ScoringWeights(
            base_active_score=int(s["base_active_score"]),
            keyword_match_points=int(s["keyword_match_points"]),
            keyword_score_cap=int(s["keyword_score_cap"]),
            category_match_points=int(s.get("category_match_points", 0)),
            max_score=int(s["max_score"]),
        )

    def matching_limits(self) -> tuple[int, int]:
        """Return (default_limit, max_limit) for ranked match lists."""
        m = self._policy["matching"]
        return int(m["default_limit"]), int(m["max_limit"])

    # ------------------------------------------------------------------
    # Session and offer lifetimes
    # ------------------------------------------------------------------

    def session_ttl(self) -> timedelta:
        return timedelta(hours=float(self._policy["sessions"]["ttl_hours"]))

    def offer_ttl(self) -> timedelta:
        return timedelta(hours=float(self._policy["offers"]["ttl_hours"]))

    def default_currency(self) -> str:
        return str(self._policy["offers"].get("default_currency", "USD"))

    # ------------------------------------------------------------------
    # Request token derivation
    # ------------------------------------------------------------------

    def stopwords(self) -> frozenset[str]:
        return frozenset(w.lower() for w in self._policy["request_tokens"].get("stopwords", []))

    def categories(self) -> tuple[str, ...]:
        """Known categories, longest first so multi-word names win."""
        cats = [c.lower() for c in self._policy["request_tokens"].get("categories", [])]
        return tuple(sorted(cats, key=len, reverse=True))


def _load_json(path: Path) -> dict[str, Any]:
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)
