from __future__ import annotations

import json
import re
from datetime import datetime, timezone
from pathlib import Path

import structlog
from feedgen.feed import FeedGenerator

from .errors import FeedError
from .models import FeedFormat, Post, Profile

logger = structlog.get_logger()

TITLE_LEN = 80  # max length of item titles

# These match the markers added by write_feed.
_XML_LATEST_ID_RE = re.compile(r"<!--\s+latest\s+id\s+(\d+)\s+-->\s*$")
_JSON_LATEST_ID_RE = re.compile(r"^latest id (\d+)$")


def _title(text: str) -> str:
    if len(text) > TITLE_LEN:
        return text[: TITLE_LEN - 1] + "…"
    return text


def _description(profile: Profile, replies: bool) -> str:
    kind = "Tweets and replies" if replies else "Tweets"
    return f"{kind} from @{profile.user}'s timeline"


def _feed_posts(posts: list[Post], replies: bool) -> list[Post]:
    return [p for p in posts if replies or not p.is_reply]


def _xml_feed(
    profile: Profile, posts: list[Post], fmt: FeedFormat, replies: bool, now: datetime
) -> str:
    author = profile.display_name
    fg = FeedGenerator()
    fg.id(profile.url)
    fg.title(author)
    fg.link(href=profile.url, rel="alternate")
    fg.description(_description(profile, replies))
    fg.author({"name": author})
    fg.rights(f"© {now.year} {author}")
    fg.updated(now)
    if profile.image_url:
        fg.logo(profile.image_url)
    if profile.icon_url:
        fg.icon(profile.icon_url)

    for post in posts:
        fe = fg.add_entry(order="append")
        fe.id(str(post.id))
        fe.guid(str(post.id), permalink=False)
        fe.title(_title(post.text) or post.href)
        fe.link(href=post.href)
        fe.author({"name": post.display_name})
        fe.published(post.timestamp)
        fe.updated(post.timestamp)
        fe.description(post.text)
        fe.content(post.content, type="CDATA" if fmt == FeedFormat.RSS else "html")

    match fmt:
        case FeedFormat.ATOM:
            data = fg.atom_str(pretty=True)
        case _:
            data = fg.rss_str(pretty=True)
    return data.decode("utf-8")


def _json_feed(
    profile: Profile, posts: list[Post], latest_id: int, replies: bool, now: datetime
) -> str:
    author = profile.display_name
    feed = {
        "version": "https://jsonfeed.org/version/1",
        "title": author,
        "home_page_url": profile.url,
        "description": _description(profile, replies),
        "user_comment": f"latest id {latest_id}",
        "author": {"name": author},
        "items": [
            {
                "id": str(post.id),
                "url": post.href,
                "title": _title(post.text) or post.href,
                "summary": post.text,
                "content_html": post.content,
                "date_published": post.timestamp.isoformat(),
                "author": {"name": post.display_name},
            }
            for post in posts
        ],
    }
    if profile.image_url:
        feed["icon"] = profile.image_url
    if profile.icon_url:
        feed["favicon"] = profile.icon_url
    return json.dumps(feed, indent=2, ensure_ascii=False) + "\n"


def write_feed(
    profile: Profile,
    posts: list[Post],
    latest_id: int,
    fmt: FeedFormat = FeedFormat.ATOM,
    replies: bool = False,
    now: datetime | None = None,
) -> str:
    """Render a feed of posts from profile's timeline.

    Replies are left out unless replies is set. The newest post id is
    embedded so that the next run can tell whether anything changed.
    """
    now = now or datetime.now(timezone.utc)
    posts = _feed_posts(posts, replies)
    logger.debug("writing_feed", items=len(posts), latest_id=latest_id, format=str(fmt))

    if fmt == FeedFormat.JSON:
        return _json_feed(profile, posts, latest_id, replies, now)
    data = _xml_feed(profile, posts, fmt, replies, now)
    return f"{data}\n<!-- latest id {latest_id} -->\n"


def get_latest_id(path: Path, fmt: FeedFormat) -> int:
    """Latest post id recorded in a feed written by write_feed.

    A missing file yields 0.
    """
    try:
        data = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return 0

    match fmt:
        case FeedFormat.JSON:
            try:
                comment = json.loads(data).get("user_comment", "")
            except (json.JSONDecodeError, AttributeError) as e:
                raise FeedError(f"failed unmarshaling {path}") from e
            m = _JSON_LATEST_ID_RE.match(comment)
        case _:
            m = _XML_LATEST_ID_RE.search(data)

    if m is None:
        raise FeedError(f"couldn't find latest id in {path}")
    return int(m[1])
