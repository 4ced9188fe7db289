import threading
from http.server import BaseHTTPRequestHandler, HTTPServer

import pytest

from gator.rss import FeedError, RSSFeed, fetch_feed, parse_feed

SAMPLE = b"""<?xml version="1.0"?>
<rss version="2.0">
<channel>
  <title>News &amp;amp; Views</title>
  <link>https://example.com/</link>
  <description>All the news</description>
  <item>
    <title>First &amp;lt;post&amp;gt;</title>
    <link>https://example.com/1</link>
    <description>one</description>
    <pubDate>Mon, 02 Jan 2006 15:04:05 +0000</pubDate>
  </item>
  <item>
    <title>Second</title>
    <link>https://example.com/2</link>
  </item>
</channel>
</rss>"""


def test_parse_feed_fields_and_unescape():
    feed = parse_feed(SAMPLE)
    assert feed.title == "News & Views"
    assert feed.link == "https://example.com/"
    assert [i.link for i in feed.items] == ["https://example.com/1", "https://example.com/2"]
    assert feed.items[0].title == "First <post>"
    assert feed.items[0].pub_date == "Mon, 02 Jan 2006 15:04:05 +0000"


def test_missing_fields_are_empty():
    feed = parse_feed(SAMPLE)
    assert feed.items[1].description == ""
    assert feed.items[1].pub_date == ""


def test_no_channel_gives_empty_feed():
    assert parse_feed("<rss></rss>") == RSSFeed()


def test_bad_xml_raises():
    with pytest.raises(FeedError):
        parse_feed(b"<rss><channel>")


class _Handler(BaseHTTPRequestHandler):
    agents = []

    def do_GET(self):
        _Handler.agents.append(self.headers.get("User-Agent"))
        if self.path == "/missing":
            self.send_response(404)
            self.end_headers()
            return
        self.send_response(200)
        self.send_header("Content-Length", str(len(SAMPLE)))
        self.end_headers()
        self.wfile.write(SAMPLE)

    def log_message(self, *args):
        pass


@pytest.fixture
def server():
    httpd = HTTPServer(("127.0.0.1", 0), _Handler)
    thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    thread.start()
    yield f"http://127.0.0.1:{httpd.server_address[1]}"
    httpd.shutdown()
    httpd.server_close()


def test_fetch_feed_sends_user_agent(server):
    feed = fetch_feed(server + "/feed", timeout=5)
    assert feed == parse_feed(SAMPLE)
    assert _Handler.agents[-1] == "gator"


def test_fetch_feed_error_status(server):
    with pytest.raises(FeedError, match="404"):
        fetch_feed(server + "/missing", timeout=5)


def test_fetch_feed_bad_url():
    with pytest.raises(FeedError):
        fetch_feed("not a url", timeout=5)