"""Extraction of profiles and posts from timeline pages.

Two generations of markup are understood: the legacy table-based mobile
pages and the div-based pages rendered by the single-page app. The markup is
detected up front and handed to the matching strategy; both share the tree
queries in dom and the rewriting passes in rewrite.

Missing landmarks raise StructureError and unreadable fields raise
FieldError. Either one aborts the whole parse: a page that no longer looks
the way we expect should fail loudly rather than yield a partial feed.
"""

from __future__ import annotations

import copy
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import StrEnum
from typing import Awaitable, Callable
from urllib.parse import urlsplit

import structlog
from bs4 import BeautifulSoup, NavigableString, Tag
from structlog.typing import FilteringBoundLogger

from .dom import (
    ancestor,
    element_children,
    find_all,
    find_first,
    get_attr,
    has_class,
    is_element,
    is_text,
    match,
    new_tag,
    parse_html,
    previous_element_sibling,
    text_of,
)
from .embeds import EmbedResolver
from .errors import FieldError, FormatError, StructureError
from .fetcher import Fetcher
from .models import Post, Profile, Timeline
from .rewrite import (
    RenderedContent,
    attribution_banner,
    normalize_emoji,
    prepend,
    render,
    rewrite_content,
)
from .timestamps import parse_datetime_attr, parse_timestamp
from .utils import (
    absolute_url,
    bare_user,
    clean_text,
    icon_url,
    image_url,
    user_url,
)

logger = structlog.get_logger()

_STATUS_RE = re.compile(r"/status/(\d+)(?:/|$)")

# Legacy mobile markup.
LEGACY_TIMELINE = match("div", "class=timeline")
LEGACY_PROFILE = match("div", "class=profile")
LEGACY_POST = match("table", "class=tweet")
LEGACY_FIELDS = (
    match("strong", "class=fullname"),
    match("div", "class=username"),
    match("td", "class=timestamp"),
    match("div", "class=tweet-text"),
)
LEGACY_MORE = match("div", "class=w-button-more")

# Single-page-app markup.
SPA_PRIMARY_COLUMN = match(None, "data-testid=primaryColumn")
SPA_POST = match("div", "data-testid=tweet")
REPLY_MARKER = "Replying to"

# Levels between an @handle text node and the element beside its display name.
PROFILE_NAME_DEPTH = 3
POST_NAME_DEPTH = 2


class Markup(StrEnum):
    LEGACY = "legacy"
    SPA = "spa"


@dataclass(frozen=True)
class _Context:
    now: datetime
    simplify: bool
    resolver: EmbedResolver | None
    log: FilteringBoundLogger


def detect_markup(root: BeautifulSoup) -> Markup:
    if find_first(root, SPA_PRIMARY_COLUMN) is not None:
        return Markup.SPA
    if find_first(root, LEGACY_TIMELINE) is not None:
        return Markup.LEGACY
    raise StructureError(
        "couldn't find primary content container", landmark="primary column"
    )


def post_id_from_url(url: str) -> int:
    """Numeric id from a post URL like https://twitter.com/user/status/123."""
    if not (m := _STATUS_RE.search(urlsplit(url).path)):
        raise ValueError(f"no status id in {url!r}")
    if (post_id := int(m[1])) <= 0:
        raise ValueError(f"non-positive status id in {url!r}")
    return post_id


def reply_targets(users: list[str], author: str) -> tuple[str, ...]:
    """Ordered, de-duplicated reply targets.

    A post that only "replies" to its own author is a thread starter, not a
    reply.
    """
    targets = tuple(dict.fromkeys(u for u in users if u))
    return () if targets == (author,) else targets


def _display_name(node: Tag, log: FilteringBoundLogger) -> str:
    return clean_text(text_of(normalize_emoji(copy.copy(node), log)))


async def _finish_content(
    body: Tag, user: str, name: str, profile: Profile, ctx: _Context
) -> RenderedContent:
    """Attribute, resolve and rewrite an owned copy of a post body."""
    if user != profile.user:
        prepend(body, attribution_banner(user_url(user), f"{name} (@{user})"))
    if ctx.resolver is not None:
        body = await ctx.resolver.resolve(body)
    return render(rewrite_content(body, simplify=ctx.simplify, log=ctx.log))


# Legacy strategy


def _legacy_profile(root: BeautifulSoup, ctx: _Context) -> Profile:
    if (section := find_first(root, LEGACY_PROFILE)) is None:
        raise StructureError("couldn't find profile", landmark="div.profile")
    if (user_node := find_first(section, match("span", "class=screen-name"))) is None:
        raise StructureError("couldn't find profile handle", landmark="span.screen-name")
    if (name_node := find_first(section, match("div", "class=fullname"))) is None:
        raise StructureError("couldn't find profile name", landmark="div.fullname")

    icon = ""
    if (avatar := find_first(section, match("td", "class=avatar"))) is not None:
        if (img := find_first(avatar, match("img", "src"))) is not None:
            icon = get_attr(img, "src")

    return Profile(
        user=bare_user(clean_text(text_of(user_node))),
        name=_display_name(name_node, ctx.log),
        icon_url=icon,
        image_url=image_url(icon) if icon else "",
    )


async def _parse_legacy_post(
    node: Tag, index: int, profile: Profile, ctx: _Context
) -> Post:
    if not (href := get_attr(node, "href")):
        raise FieldError("href", "missing post link", post_index=index)

    name = user = ""
    reply_users: list[str] = []
    time_node = body = None
    # Matched fields aren't searched further, so quoted content can't shadow them.
    for field in find_all(node, lambda n: any(f(n) for f in LEGACY_FIELDS)):
        match field.name:
            case "strong":
                name = _display_name(field, ctx.log)
            case "div" if has_class(field, "tweet-reply-context"):
                reply_users = [
                    bare_user(clean_text(text_of(a))) for a in find_all(field, match("a"))
                ]
            case "div" if has_class(field, "username"):
                user = bare_user(clean_text(text_of(field)))
            case "td":
                time_node = field
            case _:
                body = field

    if body is None:
        raise StructureError("missing post body", landmark="div.tweet-text", post_index=index)
    try:
        post_id = int(get_attr(body, "data-id"))
    except ValueError as e:
        raise FieldError("id", str(e), post_index=index) from e
    if post_id <= 0:
        raise FieldError("id", f"non-positive id {post_id}", post_index=index)

    if time_node is None:
        raise StructureError(
            "missing timestamp", landmark="td.timestamp", post_index=index, post_id=post_id
        )
    try:
        timestamp = parse_timestamp(clean_text(text_of(time_node)), ctx.now)
    except FormatError as e:
        raise FieldError("timestamp", str(e), post_index=index, post_id=post_id) from e

    rendered = await _finish_content(copy.copy(body), user, name, profile, ctx)
    return Post(
        id=post_id,
        href=absolute_url(href),
        user=user,
        name=name,
        timestamp=timestamp,
        content=rendered.content,
        text=rendered.text,
        reply_to=reply_targets(reply_users, user),
    )


def _legacy_next_page(root: BeautifulSoup) -> str | None:
    if (more := find_first(root, LEGACY_MORE)) is None:
        return None
    if (link := find_first(more, match("a", "href"))) is None:
        return None
    return absolute_url(get_attr(link, "href"))


async def parse_legacy(root: BeautifulSoup, ctx: _Context) -> Timeline:
    profile = _legacy_profile(root, ctx)
    timeline = find_first(root, LEGACY_TIMELINE)
    posts = []
    for index, node in enumerate(find_all(timeline, LEGACY_POST)):
        posts.append(await _parse_legacy_post(node, index, profile, ctx))
    return Timeline(profile=profile, posts=posts, next_page_url=_legacy_next_page(root))


# Single-page-app strategy


def _first_handle(root: Tag) -> NavigableString | None:
    return find_first(root, lambda n: is_text(n) and n.strip().startswith("@"))


def name_beside_handle(
    handle: NavigableString,
    levels: int,
    landmark: str,
    post_index: int | None = None,
    post_id: int | None = None,
) -> Tag:
    """Element holding the display name that accompanies an @handle.

    The SPA markup has no stable class names, so the name is found by
    position: the handle's ancestor levels up, then that ancestor's previous
    element sibling.
    """
    if (holder := ancestor(handle, levels)) is None:
        raise StructureError(
            f"handle isn't nested {levels} levels deep",
            landmark=landmark,
            post_index=post_index,
            post_id=post_id,
        )
    if (name := previous_element_sibling(holder)) is None:
        raise StructureError(
            "no display name before handle",
            landmark=landmark,
            post_index=post_index,
            post_id=post_id,
        )
    return name


def _spa_profile(column: Tag, ctx: _Context) -> Profile:
    if (handle := _first_handle(column)) is None:
        raise StructureError("couldn't find profile handle", landmark="profile handle")
    user = bare_user(clean_text(handle))
    name = _display_name(
        name_beside_handle(handle, PROFILE_NAME_DEPTH, "profile name"), ctx.log
    )

    avatar = ""
    if (link := find_first(column, match("a", f"href=/{user}/photo"))) is not None:
        if (img := find_first(link, match("img", "src"))) is not None:
            avatar = get_attr(img, "src")

    return Profile(
        user=user,
        name=name,
        icon_url=icon_url(avatar) if avatar else "",
        image_url=image_url(avatar) if avatar else "",
    )


def _spa_reply_users(block: Tag) -> list[str]:
    if not clean_text(text_of(block, True)).startswith(REPLY_MARKER):
        return []
    users = [clean_text(text_of(a)) for a in find_all(block, match("a"))]
    return [bare_user(u) for u in users if u.startswith("@")]


def _is_empty(node: Tag) -> bool:
    media = find_first(node, lambda n: is_element(n, "img") or is_element(n, "video"))
    return not clean_text(text_of(node)) and media is None


async def _parse_spa_post(
    node: Tag, index: int, profile: Profile, ctx: _Context
) -> Post:
    columns = element_children(node)
    if len(columns) != 2:
        raise StructureError(
            f"post has {len(columns)} columns; expected 2",
            landmark="post columns",
            post_index=index,
        )
    parts = element_children(columns[1])
    if len(parts) != 2:
        raise StructureError(
            f"post has {len(parts)} sections; expected header and body",
            landmark="post sections",
            post_index=index,
        )
    header, body = parts

    if (time := find_first(header, match("time"))) is None:
        raise StructureError("missing timestamp element", landmark="time", post_index=index)
    if not is_element(link := time.parent, "a"):
        raise StructureError(
            "timestamp isn't wrapped in post link", landmark="post link", post_index=index
        )
    href = absolute_url(get_attr(link, "href"))
    try:
        post_id = post_id_from_url(href)
    except ValueError as e:
        raise FieldError("id", str(e), post_index=index) from e
    try:
        timestamp = parse_datetime_attr(get_attr(time, "datetime"))
    except FormatError as e:
        raise FieldError("timestamp", str(e), post_index=index, post_id=post_id) from e

    if (handle := _first_handle(header)) is None:
        raise StructureError(
            "missing author handle", landmark="author handle", post_index=index, post_id=post_id
        )
    user = bare_user(clean_text(handle))
    name = _display_name(
        name_beside_handle(handle, POST_NAME_DEPTH, "author name", index, post_id), ctx.log
    )

    blocks = element_children(body)
    match len(blocks):
        case 3:
            reply_block = None
            text, embed, _footer = blocks
        case 4:
            reply_block, text, embed, _footer = blocks
        case n:
            raise StructureError(
                f"post body has {n} blocks; expected 3 or 4",
                landmark="post body",
                post_index=index,
                post_id=post_id,
            )

    reply_users = _spa_reply_users(reply_block) if reply_block is not None else []
    content = copy.copy(text)
    if not _is_empty(embed):
        content.append(new_tag("hr"))
        content.append(copy.copy(embed))
    rendered = await _finish_content(content, user, name, profile, ctx)

    return Post(
        id=post_id,
        href=href,
        user=user,
        name=name,
        timestamp=timestamp,
        content=rendered.content,
        text=rendered.text,
        reply_to=reply_targets(reply_users, user),
    )


async def parse_spa(root: BeautifulSoup, ctx: _Context) -> Timeline:
    column = find_first(root, SPA_PRIMARY_COLUMN)
    profile = _spa_profile(column, ctx)
    posts = []
    for index, node in enumerate(find_all(column, SPA_POST)):
        posts.append(await _parse_spa_post(node, index, profile, ctx))
    return Timeline(profile=profile, posts=posts)


STRATEGIES: dict[Markup, Callable[[BeautifulSoup, _Context], Awaitable[Timeline]]] = {
    Markup.LEGACY: parse_legacy,
    Markup.SPA: parse_spa,
}


async def parse_timeline(
    markup: str | bytes,
    fetcher: Fetcher | None = None,
    *,
    embeds: bool = True,
    simplify: bool = False,
    now: datetime | None = None,
    log: FilteringBoundLogger | None = None,
) -> Timeline:
    """Parse a timeline page into its owner's profile and posts, newest first.

    Linked quoted posts and photo pages are fetched through fetcher and
    inlined when embeds is set. With simplify, the page's class, style and
    similar attributes are stripped from post content.
    """
    log = log or logger
    root = parse_html(markup)
    kind = detect_markup(root)
    ctx = _Context(
        now=now or datetime.now(timezone.utc),
        simplify=simplify,
        resolver=EmbedResolver(fetcher, log) if fetcher is not None and embeds else None,
        log=log,
    )
    timeline = await STRATEGIES[kind](root, ctx)
    log.debug(
        "parsed_timeline",
        markup=str(kind),
        user=timeline.profile.user,
        posts=len(timeline.posts),
    )
    return timeline
