"""Tests for package-size classification."""

import logging

import pytest

from tiers_core.sizes import SizeClassifier, classify_size, make_prefix_matcher


@pytest.mark.parametrize(
    ("sku", "title", "expected"),
    [
        ("ROSE-100", "", "100"),
        ("ROSE-30", "", "30"),
        ("ROSE", "100 ml", "100"),
        ("ROSE", "30ML", "30"),
        ("ROSE", "Eau de parfum 30 ml", "30"),
        ("rose-100-tester", "", "100"),
        ("ROSE-1000", "", None),
        ("ROSE", "Set 300", None),
        ("ROSE", "", None),
        ("", "", None),
    ],
)
def test_classify_size_buckets(sku: str, title: str, expected: str | None) -> None:
    assert classify_size(sku, title).bucket == expected


def test_both_sizes_is_neither() -> None:
    match = classify_size("KIT-30-100", "Duo")
    assert not match.is30
    assert not match.is100
    assert match.bucket is None

    match = classify_size("ROSE-30", "100 ml")
    assert (match.is30, match.is100) == (False, False)


def test_never_both_true() -> None:
    samples = ["30", "100", "30 100", "-30", "-100", "x30ml", "100ml 30ml", "ROSE-30-100"]
    for sku in samples:
        for title in samples:
            match = classify_size(sku, title)
            assert not (match.is30 and match.is100), (sku, title)


def test_custom_patterns() -> None:
    classifier = SizeClassifier(size30_pattern=r"\bmini\b", size100_pattern=r"\bfull\b")
    assert classifier("ROSE", "Mini").bucket == "30"
    assert classifier("ROSE", "Full size").bucket == "100"
    # SKU suffix fallback still applies
    assert classifier("ROSE-100", "").bucket == "100"


def test_invalid_pattern_falls_back_with_warning(caplog: pytest.LogCaptureFixture) -> None:
    with caplog.at_level(logging.WARNING, logger="tiers_core.sizes"):
        classifier = SizeClassifier(size30_pattern="(unclosed")
    assert "Invalid size pattern" in caplog.text
    assert classifier("ROSE", "30 ml").bucket == "30"


def test_classifier_is_idempotent() -> None:
    classifier = SizeClassifier()
    assert classifier.classify("ROSE-100", "100 ml") == classifier.classify("ROSE-100", "100 ml")


class TestPrefixMatcher:
    def test_empty_prefix_accepts_everything(self) -> None:
        matcher = make_prefix_matcher("")
        assert matcher("ANY")
        assert matcher("")

    def test_literal_prefix(self) -> None:
        matcher = make_prefix_matcher("ACME-")
        assert matcher("ACME-ROSE-100")
        assert not matcher("acme-ROSE-100")
        assert not matcher("XACME-ROSE")
        assert not matcher("")

    def test_prefix_is_not_a_regex(self) -> None:
        matcher = make_prefix_matcher("A.")
        assert matcher("A.ROSE")
        assert not matcher("AB-ROSE")
