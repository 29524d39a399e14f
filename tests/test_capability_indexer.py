"""Tests for the capability indexer: every stored shape flattens to text."""

from aura.matching.indexer import CapabilityIndexer


class TestIndexShapes:
    def test_none_is_empty(self) -> None:
        assert CapabilityIndexer.index(None) == ""

    def test_plain_string_lowercased(self) -> None:
        assert CapabilityIndexer.index("Industrial Widgets") == "industrial widgets"

    def test_list_of_strings(self) -> None:
        assert CapabilityIndexer.index(["Widgets", "Gadgets"]) == "widgets gadgets"

    def test_list_with_named_objects(self) -> None:
        text = CapabilityIndexer.index(["widgets", {"name": "Sprockets"}])
        assert text == "widgets sprockets"

    def test_list_with_unnamed_object_is_serialised(self) -> None:
        text = CapabilityIndexer.index(["widgets", {"sku": "AB-1"}])
        assert text.startswith("widgets ")
        assert "ab-1" in text

    def test_nested_object(self) -> None:
        text = CapabilityIndexer.index({
            "products": ["Widgets", {"name": "Gadgets"}],
            "summary": "Fast Delivery",
        })
        assert text == "products widgets gadgets summary fast delivery"

    def test_object_ignores_non_text_values(self) -> None:
        assert CapabilityIndexer.index({"count": 5, "flags": [1, 2]}) == "count flags"


class TestTotality:
    def test_unrecognised_shapes_yield_empty(self) -> None:
        for value in (42, 3.5, True, object(), b"bytes"):
            assert CapabilityIndexer.index(value) == ""

    def test_empty_containers(self) -> None:
        assert CapabilityIndexer.index([]) == ""
        assert CapabilityIndexer.index({}) == ""
        assert CapabilityIndexer.index("") == ""

    def test_non_string_keys_skipped(self) -> None:
        assert CapabilityIndexer.index({1: "widgets"}) == "widgets"

