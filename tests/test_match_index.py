"""Tests for MatchIndex construction: tables, thresholds and immutability."""

from __future__ import annotations

import dataclasses

import pytest

from src.orgsync.cache.schemas import OrganizationRecord
from src.orgsync.matching.index import MatchIndex


def _make_org(org_id: int, name: str, **overrides) -> OrganizationRecord:
    return OrganizationRecord(id=org_id, name=name, **overrides)


class TestMatchIndexTables:
    """Each table is keyed as documented and first writer wins."""

    def test_exact_holds_lowercased_name_and_crm_name(self):
        org = _make_org(1, "Acme Inc", crm_account_name="ACME Corporation")
        index = MatchIndex.build([org])

        assert index.exact["acme inc"] == org
        assert index.exact["acme corporation"] == org

    def test_normalized_first_writer_wins(self):
        first = _make_org(1, "Acme Inc")
        second = _make_org(2, "ACME")
        index = MatchIndex.build([first, second])

        assert index.normalized["acme"].id == 1
        # Both raw names still get their own exact entry
        assert index.exact["acme"].id == 2

    def test_domain_from_name_and_domain_names(self):
        named = _make_org(1, "troweprice.com")
        listed = _make_org(2, "Initech Solutions", domain_names=("initech.io", "ignored.example"))
        index = MatchIndex.build([named, listed])

        assert index.domain["troweprice"].id == 1
        assert index.domain["initech"].id == 2
        assert "ignored" not in index.domain

    def test_first_word_and_keyword_thresholds(self):
        index = MatchIndex.build([
            _make_org(1, "Big Data Partners"),
            _make_org(2, "Accenture Federal Services"),
        ])

        assert "big" not in index.first_word
        assert index.first_word["accenture"].id == 2
        assert "data" not in index.keyword
        assert index.keyword["partners"].id == 1
        assert index.keyword["federal"].id == 2
        assert index.keyword["services"].id == 2

    def test_external_id_indexes_full_and_short_form(self):
        org = _make_org(1, "Acme", crm_id="001A000001abcDEFGH")
        index = MatchIndex.build([org])

        assert index.external_id["001A000001abcDEFGH"] == org
        assert index.external_id["001A000001abcDE"] == org

    def test_partial_candidates_skip_short_keys(self):
        index = MatchIndex.build([_make_org(1, "IBM"), _make_org(2, "Umbrella")])

        keys = [key for key, _ in index.partial_candidates]
        assert keys == ["umbrella"]


class TestMatchIndexBuild:
    def test_unnamed_organizations_never_indexed(self):
        index = MatchIndex.build([_make_org(1, "   ", crm_id="001X")])

        assert index.organization_count == 0
        assert dict(index.external_id) == {}
        assert dict(index.exact) == {}

    def test_empty_input_builds_empty_index(self):
        index = MatchIndex.build([])

        assert index.organization_count == 0
        assert index.partial_candidates == ()

    def test_tables_are_read_only(self):
        index = MatchIndex.build([_make_org(1, "Acme")])

        with pytest.raises(TypeError):
            index.exact["other"] = _make_org(2, "Other")  # type: ignore[index]

    def test_index_is_frozen(self):
        index = MatchIndex.build([_make_org(1, "Acme")])

        with pytest.raises(dataclasses.FrozenInstanceError):
            index.organization_count = 5  # type: ignore[misc]
