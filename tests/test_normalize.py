"""
Tests: article normalization and duplicate removal
"""
import pytest

from app.news import (
    canonicalize_url,
    dedupe,
    dedupe_by_canonical_url,
    dedupe_by_title,
    normalize,
    normalize_all,
    title_similarity,
)

GNEWS_ARTICLE = {
    "title": "Markets rally on rate hopes",
    "description": "Stocks climbed on Tuesday.",
    "content": "Full text...",
    "url": "https://www.bbc.co.uk/news/business-123",
    "image": "https://ichef.bbci.co.uk/img.jpg",
    "publishedAt": "2024-01-02T03:04:05Z",
    "source": {"name": "BBC News", "url": "https://www.bbc.co.uk"},
}


class TestNormalize:
    def test_gnews_shape(self):
        article = normalize(GNEWS_ARTICLE)
        assert article["id"] == GNEWS_ARTICLE["url"]
        assert article["title"] == "Markets rally on rate hopes"
        assert article["summary"] == "Stocks climbed on Tuesday."
        assert article["publishDate"] == "2024-01-02T03:04:05Z"
        assert article["imageUrl"] == "https://ichef.bbci.co.uk/img.jpg"
        assert article["hasImage"] is True
        assert article["sourceName"] == "BBC News"
        assert article["displaySourceName"] == "BBC News"
        assert article["sourceDomain"] == "bbc.co.uk"
        assert article["sourceIcon"] == "https://www.google.com/s2/favicons?sz=64&domain=bbc.co.uk"
        assert article["author"] == "Unknown"
        assert article["category"] == "general"

    def test_source_falls_back_to_domain(self):
        article = normalize({"title": "x", "link": "https://www.dawn.com/news/1"})
        assert article["sourceName"] == "dawn.com"
        assert article["displaySourceName"] == "Dawn"

    def test_display_name_drops_tld(self):
        article = normalize({"title": "x", "publisher": "geo-tv.com", "url": "https://example.org/a"})
        assert article["displaySourceName"] == "Geo Tv"

    def test_defaults(self):
        article = normalize({"id": 7, "likes": "12", "shares": "many"})
        assert article["id"] == "7"
        assert article["title"] == "Untitled"
        assert article["likes"] == 12
        assert article["shares"] == 0
        assert article["hasImage"] is False
        assert article["tags"] == []

    @pytest.mark.parametrize("raw", [None, {}, "text", 42])
    def test_junk_input(self, raw):
        assert normalize(raw) is None

    def test_normalize_all_drops_junk(self):
        assert len(normalize_all([GNEWS_ARTICLE, None, {}, {"title": "y", "url": "https://a.test/y"}])) == 2


class TestTitleSimilarity:
    def test_identical_ignoring_case_and_punctuation(self):
        assert title_similarity("The cat sat on a mat!", "the cat sat on a mat") == 1.0

    def test_disjoint(self):
        assert title_similarity("Storm hits coast", "Markets rally today") == 0.0

    def test_short_words_ignored(self):
        assert title_similarity("a b c", "x y z") == 1.0


class TestDedupe:
    def test_near_identical_titles(self):
        items = [
            {"id": "1", "title": "Storm hits coastal towns overnight", "url": "https://a.test/1"},
            {"id": "2", "title": "Storm hits coastal towns overnight!", "url": "https://b.test/2"},
            {"id": "3", "title": "Markets rally", "url": "https://c.test/3"},
        ]
        assert [it["id"] for it in dedupe_by_title(items)] == ["1", "3"]

    def test_same_url_dropped(self):
        items = [
            {"id": "1", "title": "One", "url": "https://a.test/x"},
            {"id": "2", "title": "Two", "url": "https://A.test/x"},
        ]
        assert [it["id"] for it in dedupe_by_title(items)] == ["1"]

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("https://www.Example.com/news/123/some-title/?utm=1#top", "example.com/news/123"),
            ("https://example.com/a/b/", "example.com/a/b"),
            ("https://example.com", "example.com/"),
            ("Not A Url?x=1#y", "not a url"),
            ("", ""),
        ],
    )
    def test_canonicalize_url(self, raw, expected):
        assert canonicalize_url(raw) == expected

    def test_canonical_url_duplicates(self):
        items = [
            {"id": "1", "title": "One", "url": "https://www.site.test/news/55/first-slug"},
            {"id": "2", "title": "Two", "url": "https://site.test/news/55/other-slug?ref=x"},
            {"id": "3", "title": "Three", "url": "https://site.test/news/56"},
        ]
        assert [it["id"] for it in dedupe_by_canonical_url(items)] == ["1", "3"]

    def test_combined_keeps_order(self):
        items = [
            {"id": "1", "title": "Alpha story here", "url": "https://a.test/1"},
            {"id": "2", "title": "Beta story here", "url": "https://www.a.test/1/"},
            {"id": "3", "title": "Alpha story here", "url": "https://b.test/3"},
            {"id": "4", "title": "Gamma news", "url": "https://c.test/4"},
        ]
        assert [it["id"] for it in dedupe(items)] == ["1", "4"]
