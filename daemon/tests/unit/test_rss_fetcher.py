"""Unit tests for the RSS fetcher."""

from datetime import datetime, timezone

import httpx

from letterbox_daemon.fetchers.rss import RSSFetcher

FEED_URL = "https://example.substack.com/feed"

SAMPLE_RSS = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0"
     xmlns:content="http://purl.org/rss/1.0/modules/content/"
     xmlns:dc="http://purl.org/dc/elements/1.1/">
  <channel>
    <title>Example Newsletter</title>
    <link>https://example.substack.com</link>
    <description>Weekly notes</description>
    <item>
      <title>Issue 42</title>
      <link>https://example.substack.com/p/issue-42</link>
      <guid>issue-42</guid>
      <pubDate>Wed, 01 May 2024 12:00:00 GMT</pubDate>
      <dc:creator>Jane Writer</dc:creator>
      <description>&lt;p&gt;Hello &lt;b&gt;world&lt;/b&gt;&lt;/p&gt;</description>
      <content:encoded><![CDATA[<p>Full article body</p>]]></content:encoded>
    </item>
    <item>
      <title>Issue 41</title>
      <link>https://example.substack.com/p/issue-41</link>
      <description>Short teaser</description>
    </item>
    <item>
      <link>https://example.substack.com/p/issue-40</link>
      <description>Untitled teaser</description>
    </item>
  </channel>
</rss>
"""


def _fetcher(handler, **kwargs) -> RSSFetcher:
    return RSSFetcher(client=httpx.Client(transport=httpx.MockTransport(handler)), **kwargs)


def _serve(body: str, status: int = 200):
    def handler(request):
        return httpx.Response(status, text=body)

    return handler


def test_fetch_items_parses_entries() -> None:
    """Test the rich content, snippet, author, guid and date of an entry."""
    items = _fetcher(_serve(SAMPLE_RSS)).fetch_items(FEED_URL)

    assert len(items) == 3
    first = items[0]
    assert first.title == "Issue 42"
    assert first.link == "https://example.substack.com/p/issue-42"
    assert first.guid == "issue-42"
    assert first.creator == "Jane Writer"
    assert first.content_snippet == "Hello world"
    assert "Full article body" in first.content
    assert first.published_at == datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def test_entry_without_content_falls_back_to_description() -> None:
    items = _fetcher(_serve(SAMPLE_RSS)).fetch_items(FEED_URL)

    second = items[1]
    assert second.content == "Short teaser"
    assert second.published_at is None
    assert second.guid == "https://example.substack.com/p/issue-41"


def test_missing_title_becomes_untitled() -> None:
    items = _fetcher(_serve(SAMPLE_RSS)).fetch_items(FEED_URL)

    assert items[2].title == "Untitled"


def test_max_items_truncates() -> None:
    items = _fetcher(_serve(SAMPLE_RSS), max_items=1).fetch_items(FEED_URL)

    assert [item.title for item in items] == ["Issue 42"]


def test_http_error_yields_empty_list() -> None:
    """Test a failing feed doesn't raise from fetch_items."""
    assert _fetcher(_serve("Not found", status=404)).fetch_items(FEED_URL) == []


def test_transport_error_yields_empty_list() -> None:
    def handler(request):
        raise httpx.ConnectError("connection refused")

    assert _fetcher(handler).fetch_items(FEED_URL) == []


def test_unparseable_feed_yields_empty_list() -> None:
    assert _fetcher(_serve("<html><body>definitely not a feed")).fetch_items(FEED_URL) == []
