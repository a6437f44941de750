"""Tests for name canonicalization used by the match index and resolver."""

from __future__ import annotations

import pytest

from src.orgsync.matching.normalize import (
    extract_domain_token,
    normalize,
    strip_accents,
    tokens,
)


class TestNormalize:
    """normalize() lower-cases, strips punctuation/accents and legal suffixes."""

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("ACME, Inc.", "acme"),
            ("Acme Inc", "acme"),
            ("  Foo   Bar  LLC. ", "foo bar"),
            ("Acme Co Inc", "acme"),
            ("Société Générale", "societe generale"),
            ("O'Reilly Media", "oreilly media"),
            ('The "Quoted" Company', "the quoted"),
            ("Meta Platforms", "meta"),
            ("Globex Holdings Group", "globex"),
        ],
    )
    def test_canonical_forms(self, raw, expected):
        assert normalize(raw) == expected

    def test_lone_suffix_word_is_kept(self):
        assert normalize("Group") == "group"
        assert normalize("Holdings Group Inc") == "holdings"

    @pytest.mark.parametrize("raw", ["", "   ", None])
    def test_empty_input_yields_empty_string(self, raw):
        assert normalize(raw) == ""

    @pytest.mark.parametrize(
        "raw",
        [
            "ACME, Inc.",
            "Holdings Group Inc",
            "Nestlé S.A.",
            "X   Corp.",
            "co co",
            "Acme Co Inc Ltd",
            "T. Rowe Price",
        ],
    )
    def test_idempotent(self, raw):
        once = normalize(raw)
        assert normalize(once) == once

    def test_suffix_inside_name_is_not_stripped(self):
        assert normalize("Incognito Labs") == "incognito labs"
        assert normalize("Cobalt Company") == "cobalt"


class TestStripAccents:
    def test_removes_combining_marks(self):
        assert strip_accents("Crème Brûlée") == "Creme Brulee"

    def test_plain_ascii_unchanged(self):
        assert strip_accents("plain") == "plain"


class TestExtractDomainToken:
    """Bare-domain names yield the label before the TLD."""

    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("accenture.com", "accenture"),
            ("  Accenture.COM ", "accenture"),
            ("my-company.io", "my-company"),
            ("state.gov", "state"),
        ],
    )
    def test_recognized_domains(self, raw, expected):
        assert extract_domain_token(raw) == expected

    @pytest.mark.parametrize(
        "raw",
        ["Accenture Federal", "foo.bar.com", "acme.xyz", "", None, "acme com"],
    )
    def test_non_domains(self, raw):
        assert extract_domain_token(raw) is None


class TestTokens:
    def test_splits_on_spaces(self):
        assert tokens("acme federal services") == ["acme", "federal", "services"]

    def test_empty(self):
        assert tokens("") == []
