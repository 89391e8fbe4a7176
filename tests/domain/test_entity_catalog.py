"""Tests for EntityCatalog matching strategies."""

import doctest

import pytest

from context_pipeline.domain.services import catalog as catalog_module
from context_pipeline.domain.services.catalog import EntityCatalog, string_similarity

RECORDS = [
    {"name": "Alpha Lumbar Cushion", "aliases": ["alpha cushion"]},
    {"name": "Beta Seat Cushion", "aliases": []},
    {"name": "Cloud Comfort Slippers", "aliases": ["cloud slippers"]},
]


def _catalog() -> EntityCatalog:
    return EntityCatalog.from_records(RECORDS)


def test_string_similarity():
    """Test normalized edit similarity."""
    assert string_similarity("abc", "abc") == 1.0
    assert string_similarity("abcd", "abcx") == 0.75
    assert string_similarity("kitten", "sitting") == pytest.approx(1 - 3 / 7)


def test_from_records_skips_nameless_entries():
    """Test records without a name are ignored."""
    cat = EntityCatalog.from_records([{"name": ""}, {"name": "Gamma Pillow"}])
    assert cat.names == ["Gamma Pillow"]
    assert len(cat) == 1 and bool(cat)
    assert not EntityCatalog()


class TestMisspelledIn:
    def test_typo_in_full_name(self):
        """Test a one-letter typo inside a sentence still finds the entity."""
        assert _catalog().misspelled_in("is the alpha lumbar cushon firm?") == [
            "Alpha Lumbar Cushion"
        ]

    def test_typo_in_alias(self):
        """Test aliases are matched with the same tolerance."""
        assert _catalog().misspelled_in("do the cloud slipers run small") == [
            "Cloud Comfort Slippers"
        ]

    def test_generic_run_never_matches(self):
        """Test category and descriptor words alone do not hit a close name."""
        assert _catalog().misspelled_in("what is the best seat cushion") == []
        assert _catalog().misspelled_in("cushion") == []

    def test_every_word_must_be_close(self):
        """Test a run that differs in one whole word is not a typo."""
        assert _catalog().misspelled_in("is the lumbar cushion firm") == []

    def test_unrelated_text(self):
        """Test text with no near name yields nothing."""
        assert _catalog().misspelled_in("how long is shipping to Oslo") == []
        assert _catalog().misspelled_in("") == []


class TestNamedIn:
    def test_full_names_before_aliases(self):
        """Test whole-name hits come first, then alias hits."""
        text = "I like the cloud slippers but is Beta Seat Cushion better?"
        assert _catalog().named_in(text) == ["Beta Seat Cushion", "Cloud Comfort Slippers"]

    def test_requires_whole_words(self):
        """Test partial words do not count as a mention."""
        assert _catalog().named_in("alpha lumbar cushions are sold out") == []

    def test_longest_name_first(self):
        """Test several names are ordered by length."""
        text = "compare Beta Seat Cushion and Alpha Lumbar Cushion"
        assert _catalog().named_in(text) == ["Alpha Lumbar Cushion", "Beta Seat Cushion"]


class TestResolve:
    def test_exact_and_alias(self):
        """Test canonical names come back for exact and alias input."""
        assert _catalog().resolve("ALPHA lumbar cushion") == "Alpha Lumbar Cushion"
        assert _catalog().resolve("alpha cushion") == "Alpha Lumbar Cushion"

    def test_containing_name(self):
        """Test a phrase containing a catalog name resolves to it."""
        assert _catalog().resolve("the Beta Seat Cushion in grey") == "Beta Seat Cushion"

    def test_typo_within_edit_threshold(self):
        """Test strong edit similarity is accepted."""
        assert _catalog().resolve("Alpha Lumbar Cushon") == "Alpha Lumbar Cushion"

    def test_generic_phrase_is_rejected(self):
        """Test a generic phrase inside a name does not resolve."""
        assert _catalog().resolve("cushion") is None
        assert _catalog().resolve("") is None


def test_doctests():
    """Test the examples in the module docstrings."""
    failures, _ = doctest.testmod(catalog_module)
    assert failures == 0
