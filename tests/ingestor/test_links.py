"""Tests for link, tag and Twitter helpers."""

import pytest

from token_sniper.ingestor.links import (
    dedupe_links,
    document_links,
    extract_tags,
    inline_links,
    normalize_twitter_handle,
    twitter_link_matches,
)


class TestTwitter:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [
            ("@SolDev", "soldev"),
            ("https://x.com/SolDev?s=20", "soldev"),
            ("https://twitter.com/soldev/status/123", "soldev"),
            ("twitter.com/SolDev", "soldev"),
            ("https://www.x.com/soldev", "soldev"),
        ],
    )
    def test_normalize(self, value: str, expected: str) -> None:
        assert normalize_twitter_handle(value) == expected

    def test_link_matches_handle(self) -> None:
        assert twitter_link_matches("https://x.com/SolDev", "@soldev")
        assert twitter_link_matches("https://twitter.com/soldev_official", "soldev")

    def test_non_twitter_link(self) -> None:
        assert not twitter_link_matches("https://t.me/soldev", "soldev")
        assert not twitter_link_matches("https://soldev.io", "soldev")

    def test_empty_handle(self) -> None:
        assert not twitter_link_matches("https://x.com/soldev", "@")


class TestLinks:
    def test_dedupe_preserves_order(self) -> None:
        links = ["https://a.io", " https://b.io ", "https://a.io", ""]
        assert dedupe_links(links) == ("https://a.io", "https://b.io")

    def test_inline_links(self) -> None:
        payload = {
            "twitter": "https://x.com/token",
            "website": "https://token.io",
            "links": {"telegram": "https://t.me/token"},
        }
        assert inline_links(payload) == ("https://token.io", "https://x.com/token", "https://t.me/token")

    def test_document_links_include_description(self) -> None:
        document = {
            "twitter": "https://x.com/token",
            "description": "Join https://t.me/tokenchat now.",
        }
        links = document_links(document)

        assert links[0] == "https://x.com/token"
        assert "https://t.me/tokenchat" in links

    def test_no_links(self) -> None:
        assert inline_links({}) == ()
        assert document_links({}) == ()


class TestTags:
    def test_vocabulary_order(self) -> None:
        tags = extract_tags("An AI powered meme coin with staking and a DAO")
        assert tags == ("Meme", "AI", "DAO", "Staking")

    def test_word_boundaries(self) -> None:
        assert extract_tags("said the daemon") == ()

    def test_at_most_five(self) -> None:
        text = "defi meme gaming ai utility community nft dao"
        assert extract_tags(text) == ("DeFi", "Meme", "Gaming", "AI", "Utility")

    def test_empty(self) -> None:
        assert extract_tags("", None) == ()
