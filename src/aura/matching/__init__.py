"""Beacon discovery: capability indexing, scoring, and ranking."""

from aura.matching.indexer import CapabilityIndexer
from aura.matching.matcher import MarketMatcher
from aura.matching.scorer import MatchScorer
from aura.matching.tokenizer import RequestTokenizer

__all__ = ["CapabilityIndexer", "MarketMatcher", "MatchScorer", "RequestTokenizer"]
