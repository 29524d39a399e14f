"""Capability indexer: flattens a beacon's declared capabilities into
one lower-cased, whitespace-joined token string.

Pure computation. Total over its input: capabilities come from
untrusted, heterogeneous stored data, so unrecognised shapes contribute
nothing instead of raising.

Accepted shapes:
- None → ""
- "free text"
- ["widgets", "gadgets", {"name": "sprockets"}]
- {"products": ["widgets", {"name": "gadgets"}], "categories": [...],
   "summary": "free text"}
"""

from __future__ import annotations

import json
from typing import Any


class CapabilityIndexer:
    """Normalises capability data for keyword scoring.

    Usage:
        text = CapabilityIndexer.index({"products": ["widgets"]})
        # "products widgets"
    """

    @staticmethod
    def index(capabilities: Any) -> str:
        """Return the searchable text for a capability blob."""
        if capabilities is None:
            return ""

        parts: list[str] = []
        if isinstance(capabilities, str):
            parts.append(capabilities)
        elif isinstance(capabilities, (list, tuple)):
            for item in capabilities:
                if isinstance(item, str):
                    parts.append(item)
                elif isinstance(item, dict):
                    name = item.get("name")
                    if isinstance(name, str):
                        parts.append(name)
                    else:
                        parts.append(_stringify(item))
        elif isinstance(capabilities, dict):
            for key, value in capabilities.items():
                if isinstance(key, str):
                    parts.append(key)
                if isinstance(value, str):
                    parts.append(value)
                elif isinstance(value, (list, tuple)):
                    for item in value:
                        if isinstance(item, str):
                            parts.append(item)
                        elif isinstance(item, dict) and isinstance(item.get("name"), str):
                            parts.append(item["name"])

        return " ".join(p for p in parts if p).lower()


def _stringify(item: dict[str, Any]) -> str:
    try:
        return json.dumps(item, sort_keys=True, default=str)
    except (TypeError, ValueError):
        return ""
