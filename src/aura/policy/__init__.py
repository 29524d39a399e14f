"""Policy configuration."""

from aura.policy.resolver import PolicyResolver, ScoringWeights

__all__ = ["PolicyResolver", "ScoringWeights"]
