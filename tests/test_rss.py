from datetime import datetime, timezone
from unittest.mock import Mock

import pytest
import requests
from urllib3.exceptions import LocationParseError

from business.rss import FeedParserFeedFetcher, FetchFailed

RSS_DOCUMENT = b"""<?xml version="1.0" encoding="utf-8"?>
<rss version="2.0">
  <channel>
    <title>A Example</title>
    <link>http://a.example/</link>
    <description>Things from a</description>
    <language>en-us</language>
    <item>
      <title>First</title>
      <link>http://a.example/1</link>
      <description>one</description>
      <pubDate>Mon, 01 Jan 2024 10:00:00 GMT</pubDate>
      <guid>http://a.example/1</guid>
    </item>
    <item>
      <title>Second</title>
      <link>http://a.example/2</link>
    </item>
  </channel>
</rss>
"""

ATOM_DOCUMENT = b"""<?xml version="1.0" encoding="utf-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
  <title>B Example</title>
  <link href="http://b.example/"/>
  <link rel="self" href="http://b.example/atom.xml"/>
  <id>urn:b</id>
  <updated>2024-01-02T10:00:00Z</updated>
  <entry>
    <title>Third</title>
    <link href="http://b.example/3"/>
    <id>urn:b:3</id>
    <updated>2024-01-02T10:00:00Z</updated>
    <author><name>Bea</name></author>
    <content type="html">&lt;p&gt;three&lt;/p&gt;</content>
  </entry>
</feed>
"""


def session_returning(content: bytes) -> Mock:
    session = Mock(spec=requests.Session)
    response = Mock()
    response.content = content
    response.headers = {"Content-Type": "application/rss+xml; charset=utf-8"}
    session.get.return_value = response
    return session


def test_parse_rss() -> None:
    fetcher = FeedParserFeedFetcher(session=session_returning(RSS_DOCUMENT))

    feed = fetcher.fetch("http://a.example/rss")

    assert feed.title == "A Example"
    assert feed.link == "http://a.example/"
    assert feed.description == "Things from a"
    assert feed.language == "en-us"
    assert feed.feed_type == "rss"
    assert feed.feed_version == "rss20"
    assert [item.title for item in feed.items] == ["First", "Second"]
    first = feed.items[0]
    assert first.link == "http://a.example/1"
    assert first.description == "one"
    assert first.guid == "http://a.example/1"
    assert first.published_parsed == datetime(2024, 1, 1, 10, tzinfo=timezone.utc)
    assert feed.items[1].published_parsed is None


def test_parse_atom() -> None:
    fetcher = FeedParserFeedFetcher(session=session_returning(ATOM_DOCUMENT))

    feed = fetcher.fetch("http://b.example/atom.xml")

    assert feed.title == "B Example"
    assert feed.feed_type == "atom"
    assert feed.feed_link == "http://b.example/atom.xml"
    assert feed.updated_parsed == datetime(2024, 1, 2, 10, tzinfo=timezone.utc)
    entry = feed.items[0]
    assert entry.title == "Third"
    assert entry.author == "Bea"
    assert entry.content == "<p>three</p>"


def test_fetch_uses_configured_timeout() -> None:
    session = session_returning(RSS_DOCUMENT)
    fetcher = FeedParserFeedFetcher(timeout=2.5, session=session)

    fetcher.fetch("http://a.example/rss")

    session.get.assert_called_once_with("http://a.example/rss", timeout=2.5)


def test_network_error_is_a_fetch_failure() -> None:
    session = Mock(spec=requests.Session)
    session.get.side_effect = requests.Timeout("timed out")
    fetcher = FeedParserFeedFetcher(session=session)

    with pytest.raises(FetchFailed):
        fetcher.fetch("http://b.example/rss")


def test_http_error_is_a_fetch_failure() -> None:
    session = session_returning(b"")
    session.get.return_value.raise_for_status.side_effect = requests.HTTPError(
        "404 Client Error"
    )
    fetcher = FeedParserFeedFetcher(session=session)

    with pytest.raises(FetchFailed):
        fetcher.fetch("http://a.example/missing")


def test_document_that_is_not_a_feed_is_a_fetch_failure() -> None:
    fetcher = FeedParserFeedFetcher(session=session_returning(b"just some words"))

    with pytest.raises(FetchFailed):
        fetcher.fetch("http://a.example/")


def test_default_session_sends_user_agent() -> None:
    fetcher = FeedParserFeedFetcher()
    assert fetcher.session.headers["User-Agent"].startswith("rss-middletier/")
    fetcher.close()


@pytest.mark.parametrize(
    "error",
    [LocationParseError("a..example"), ValueError("Invalid URL")],
)
def test_malformed_url_is_a_fetch_failure(error: Exception) -> None:
    session = Mock(spec=requests.Session)
    session.get.side_effect = error
    fetcher = FeedParserFeedFetcher(session=session)

    with pytest.raises(FetchFailed):
        fetcher.fetch("http://a..example/rss")


def test_charset_from_content_type_header() -> None:
    document = (
        '<?xml version="1.0"?>\n'
        '<rss version="2.0"><channel><title>Привет</title>'
        "<link>http://c.example/</link><description>d</description>"
        "</channel></rss>"
    ).encode("koi8-r")
    session = session_returning(document)
    session.get.return_value.headers = {"Content-Type": "application/xml; charset=koi8-r"}
    fetcher = FeedParserFeedFetcher(session=session)

    feed = fetcher.fetch("http://c.example/rss")

    assert feed.title == "Привет"
