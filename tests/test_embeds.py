from __future__ import annotations

import tempfile
import unittest
from pathlib import Path
from typing import Mapping

import structlog
from structlog.testing import capture_logs

from twittuh.config import TwittuhConfig
from twittuh.dom import parse_html, to_html
from twittuh.embeds import EmbedResolver, embed_target, is_photo_page, is_post_page
from twittuh.errors import FetchError
from twittuh.fetcher import PageFetcher
from twittuh.parser import parse_timeline


class FakeFetcher:
    def __init__(self, pages: dict[str, bytes | Exception]) -> None:
        self.pages = pages
        self.calls: list[tuple[str, bool, dict[str, str] | None]] = []

    async def fetch(
        self, url: str, use_cache: bool = True, form: Mapping[str, str] | None = None
    ) -> bytes:
        self.calls.append((url, use_cache, dict(form) if form is not None else None))
        page = self.pages.get(url)
        if page is None:
            raise FetchError(f"no page for {url}", 404)
        if isinstance(page, Exception):
            raise page
        return page


QUOTE_URL = "https://mobile.twitter.com/alice/status/42"
PHOTO_URL = "https://mobile.twitter.com/alice/status/42/photo/1"
IMAGE = "https://pbs.twimg.com/media/X.jpg"

QUOTE_LINK = (
    '<a href="https://t.co/q" data-expanded-url="https://twitter.com/alice/status/42">'
    "twitter.com/alice/status/42</a>"
)
PHOTO_LINK = (
    '<a href="https://t.co/p" data-pre-embedded="true" '
    'data-url="https://twitter.com/alice/status/42/photo/1">pic.twitter.com/p</a>'
)
QUOTE_PAGE = b'<div class="tweet-text" data-id="42"><div>Quoted words</div></div>'
PHOTO_PAGE = f'<div class="media"><img src="{IMAGE}"></div>'.encode()


def _body(inner: str):
    return parse_html(f"<div>{inner}</div>").div


class TestTargets(unittest.TestCase):
    def test_embed_target(self) -> None:
        self.assertEqual(embed_target(parse_html(QUOTE_LINK).a), QUOTE_URL)
        self.assertEqual(embed_target(parse_html(PHOTO_LINK).a), PHOTO_URL)
        self.assertEqual(
            embed_target(parse_html('<a data-expanded-url="https://example.com/x">x</a>').a), ""
        )

    def test_page_kinds(self) -> None:
        self.assertTrue(is_post_page(QUOTE_URL))
        self.assertFalse(is_post_page(PHOTO_URL))
        self.assertTrue(is_photo_page(PHOTO_URL))
        self.assertFalse(is_photo_page(QUOTE_URL))


class TestEmbedResolver(unittest.IsolatedAsyncioTestCase):
    async def test_quoted_post_is_spliced_in(self) -> None:
        fetcher = FakeFetcher({QUOTE_URL: QUOTE_PAGE})
        body = await EmbedResolver(fetcher).resolve(_body(f"Look {QUOTE_LINK}"))
        self.assertEqual(
            to_html(body),
            f"<div>Look <hr/><strong>{QUOTE_LINK}</strong>"
            '<div class="tweet-text" data-id="42"><div>Quoted words</div></div></div>',
        )
        self.assertEqual(fetcher.calls, [(QUOTE_URL, True, None)])

    async def test_photo_is_inlined(self) -> None:
        fetcher = FakeFetcher({PHOTO_URL: PHOTO_PAGE})
        body = await EmbedResolver(fetcher).resolve(_body(PHOTO_LINK))
        self.assertEqual(body.a.decode_contents(), f'<img src="{IMAGE}"/>')
        self.assertEqual(body.a["href"], "https://t.co/p")

    async def test_photo_inside_quoted_post(self) -> None:
        quote = f'<div class="tweet-text" data-id="42">{PHOTO_LINK}</div>'.encode()
        fetcher = FakeFetcher({QUOTE_URL: quote, PHOTO_URL: PHOTO_PAGE})
        body = await EmbedResolver(fetcher).resolve(_body(QUOTE_LINK))
        self.assertIn(f'<img src="{IMAGE}"/>', to_html(body))
        self.assertEqual([c[0] for c in fetcher.calls], [QUOTE_URL, PHOTO_URL])

    async def test_sensitive_media_gate_is_submitted_once(self) -> None:
        gate = (
            b'<form action="/i/sensitive" method="post">'
            b'<input type="hidden" name="authenticity_token" value="tok">'
            b'<input type="hidden" name="redirect" value="/alice/status/42/photo/1">'
            b'<input type="submit" value="View"></form>'
        )
        action = "https://mobile.twitter.com/i/sensitive"
        fetcher = FakeFetcher({PHOTO_URL: gate, action: PHOTO_PAGE})
        body = await EmbedResolver(fetcher).resolve(_body(PHOTO_LINK))
        self.assertIn(f'<img src="{IMAGE}"/>', to_html(body))
        self.assertEqual(
            fetcher.calls,
            [
                (PHOTO_URL, True, None),
                (
                    action,
                    False,
                    {"authenticity_token": "tok", "redirect": "/alice/status/42/photo/1"},
                ),
            ],
        )

    async def test_gate_that_doesnt_open_leaves_link(self) -> None:
        gate = b'<form action="/i/sensitive"><input type="hidden" name="authenticity_token" value="t"></form>'
        action = "https://mobile.twitter.com/i/sensitive"
        fetcher = FakeFetcher({PHOTO_URL: gate, action: gate})
        with capture_logs() as logs:
            body = await EmbedResolver(fetcher, structlog.get_logger()).resolve(_body(PHOTO_LINK))
        self.assertEqual(to_html(body), f"<div>{PHOTO_LINK}</div>")
        self.assertEqual(len(fetcher.calls), 2)
        self.assertIn("embed_failed", [e["event"] for e in logs])

    async def test_deleted_quote_is_struck_through(self) -> None:
        fetcher = FakeFetcher({QUOTE_URL: FetchError("not found", 404)})
        body = await EmbedResolver(fetcher).resolve(_body(QUOTE_LINK))
        self.assertEqual(to_html(body), f"<div><s>{QUOTE_LINK}</s></div>")

    async def test_other_failures_leave_link(self) -> None:
        fetcher = FakeFetcher({QUOTE_URL: FetchError("server error", 500)})
        with capture_logs() as logs:
            body = await EmbedResolver(fetcher, structlog.get_logger()).resolve(
                _body(QUOTE_LINK)
            )
        self.assertEqual(to_html(body), f"<div>{QUOTE_LINK}</div>")
        failures = [e for e in logs if e["event"] == "embed_failed"]
        self.assertEqual(len(failures), 1)
        self.assertEqual(failures[0]["log_level"], "warning")
        self.assertEqual(failures[0]["url"], QUOTE_URL)

    async def test_uncacheable_link_leaves_link(self) -> None:
        link = (
            '<a href="https://t.co/q" data-expanded-url="https://twitter.com/alice/status/42?'
            + "x" * 300
            + '">twitter.com/alice/status/42</a>'
        )
        with tempfile.TemporaryDirectory() as tmp:
            config = TwittuhConfig(cache_dir=Path(tmp), offline=True)
            async with PageFetcher(config) as fetcher:
                with capture_logs() as logs:
                    body = await EmbedResolver(fetcher, structlog.get_logger()).resolve(
                        _body(link)
                    )
        self.assertEqual(to_html(body), f"<div>{link}</div>")
        self.assertIn("embed_failed", [e["event"] for e in logs])

    async def test_quote_page_without_content(self) -> None:
        fetcher = FakeFetcher({QUOTE_URL: b"<p>Sorry, that page doesn't exist!</p>"})
        with capture_logs() as logs:
            body = await EmbedResolver(fetcher, structlog.get_logger()).resolve(
                _body(QUOTE_LINK)
            )
        self.assertEqual(to_html(body), f"<div>{QUOTE_LINK}</div>")
        self.assertIn("embed_failed", [e["event"] for e in logs])

    async def test_plain_and_offsite_links_are_ignored(self) -> None:
        fetcher = FakeFetcher({})
        inner = (
            '<a href="https://example.com/">plain</a>'
            '<a href="https://t.co/z" data-expanded-url="https://example.com/z">offsite</a>'
        )
        body = await EmbedResolver(fetcher).resolve(_body(inner))
        self.assertEqual(to_html(body), f"<div>{inner}</div>")
        self.assertEqual(fetcher.calls, [])


class TestParseWithEmbeds(unittest.IsolatedAsyncioTestCase):
    page = (
        '<div class="profile"><div class="fullname">Jane Doe</div>'
        '<span class="screen-name">janedoe</span></div><div class="timeline">'
        '<table class="tweet" href="/janedoe/status/7"><tr>'
        '<td><strong class="fullname">Jane Doe</strong><div class="username">@janedoe</div></td>'
        '<td class="timestamp">1h</td>'
        f'<td><div class="tweet-text" data-id="7">So true {QUOTE_LINK}</div></td>'
        "</tr></table></div>"
    )

    async def test_quotes_resolved_during_parse(self) -> None:
        fetcher = FakeFetcher({QUOTE_URL: QUOTE_PAGE})
        timeline = await parse_timeline(self.page, fetcher)
        self.assertIn("Quoted words", timeline.posts[0].content)
        self.assertIn("<hr/>", timeline.posts[0].content)

    async def test_embeds_disabled(self) -> None:
        fetcher = FakeFetcher({QUOTE_URL: QUOTE_PAGE})
        timeline = await parse_timeline(self.page, fetcher, embeds=False)
        self.assertNotIn("Quoted words", timeline.posts[0].content)
        self.assertEqual(fetcher.calls, [])


if __name__ == "__main__":
    unittest.main()
