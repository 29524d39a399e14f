"""Request tokenizer: derives a RequestTokens set from raw request text.

This is keyword extraction only: lower-case word tokens with stop words
removed, plus the first known category named in the text. Callers with
a richer interpretation of the request can pass their own tokens to
session creation instead.
"""

from __future__ import annotations

import re
from typing import Any, Optional

from aura.models.market import RequestTokens
from aura.policy.resolver import PolicyResolver

_WORD_RE = re.compile(r"\b\w+\b")


class RequestTokenizer:
    """Usage:
        tokenizer = RequestTokenizer(resolver)
        tokens = tokenizer.tokenize("I need 500 red widgets")
        # RequestTokens(keywords=("500", "red", "widgets"), category="widgets")
    """

    def __init__(self, resolver: PolicyResolver) -> None:
        self._stopwords = resolver.stopwords()
        self._categories = resolver.categories()

    def tokenize(
        self,
        raw_request: str,
        constraints: Optional[dict[str, Any]] = None,
    ) -> RequestTokens:
        text = (raw_request or "").lower()

        keywords: list[str] = []
        seen: set[str] = set()
        for word in _WORD_RE.findall(text):
            if word in self._stopwords or word in seen:
                continue
            seen.add(word)
            keywords.append(word)

        category = None
        if constraints and isinstance(constraints.get("category"), str):
            category = constraints["category"].strip().lower() or None
        if category is None:
            category = self._detect_category(text)

        return RequestTokens(keywords=tuple(keywords), category=category)

    def _detect_category(self, text: str) -> Optional[str]:
        for cat in self._categories:
            if re.search(rf"\b{re.escape(cat)}\b", text):
                return cat
        return None
