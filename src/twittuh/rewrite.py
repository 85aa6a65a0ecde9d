"""Per-post rewriting of timeline markup into self-contained feed HTML.

Each pass takes the working tree and returns it. The tree must be a copy
owned by the caller: passes mutate it in place and nothing else may hold
references into it while the pipeline runs.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Callable
from urllib.parse import urlsplit

import structlog
from bs4 import NavigableString, Tag
from structlog.typing import FilteringBoundLogger

from .dom import (
    delete_attr_recursive,
    element_children,
    find_all,
    find_first,
    get_attr,
    is_element,
    is_text,
    iter_text,
    match,
    new_tag,
    parse_html,
    text_of,
    to_html,
)
from .utils import absolute_url, clean_text

logger = structlog.get_logger()

Pass = Callable[[Tag, FilteringBoundLogger], Tag]

EMOJI_HEIGHT = "1.2em"
_EMOJI_SRC_RE = re.compile(
    r"/emoji/v2/(?:svg|72x72)/([0-9a-f]+(?:-[0-9a-f]+)*)\.(?:svg|png)$"
)
MAX_CODE_POINT = 0x10FFFF
SURROGATES = range(0xD800, 0xE000)

BOILERPLATE_LABELS = frozenset({"Quote Tweet", "Show this poll", "Show this thread"})
CARD_TEST_IDS = frozenset({"card.layoutSmall.detail", "card.layoutLarge.detail"})

# Attributes that only make sense alongside the page's own stylesheet and scripts.
PRESENTATION_ATTRS = ("class", "style", "aria-hidden", "data-testid", "draggable", "role")


@dataclass(frozen=True)
class RenderedContent:
    content: str  # HTML fragment
    text: str  # whitespace-collapsed plain text


def emoji_char(src: str) -> str:
    """Characters for an emoji image URL like .../emoji/v2/svg/1f600.svg."""
    if not (m := _EMOJI_SRC_RE.search(urlsplit(src).path)):
        raise ValueError(f"unrecognized emoji URL {src!r}")
    chars = []
    for part in m[1].split("-"):
        code = int(part, 16)
        if code > MAX_CODE_POINT or code in SURROGATES:
            raise ValueError(f"code point {part} out of range")
        chars.append(chr(code))
    return "".join(chars)


def style_property(node, name: str) -> str:
    """Value of one declaration in an inline style, "" when absent."""
    for decl in get_attr(node, "style").split(";"):
        prop, _, value = decl.partition(":")
        if prop.strip().lower() == name:
            return value.replace(" ", "")
    return ""


def _is_emoji_wrapper(node) -> bool:
    return style_property(node, "height") == EMOJI_HEIGHT and bool(
        get_attr(node, "aria-label").strip()
    )


def normalize_emoji(root: Tag, log: FilteringBoundLogger) -> Tag:
    """Replace emoji image wrappers with the characters they depict."""
    for wrapper in find_all(root, _is_emoji_wrapper):
        if wrapper is root:
            continue
        if (img := find_first(wrapper, match("img", "src"))) is None:
            log.warning("emoji_without_image", label=get_attr(wrapper, "aria-label"))
            continue
        try:
            char = emoji_char(get_attr(img, "src"))
        except ValueError as e:
            log.warning("bad_emoji", src=get_attr(img, "src"), error=str(e))
            continue
        wrapper.replace_with(NavigableString(char))
    return root


def normalize_quote_headers(root: Tag, log: FilteringBoundLogger) -> Tag:
    """Collapse quoted-post headers into a bold line and drop label boilerplate."""
    for time in find_all(root, match("time")):
        header = time.parent
        if header is None or header is root:
            continue
        text = clean_text(text_of(header, True))
        avatar = find_first(header, match("img"))
        if avatar is not None:
            avatar = avatar.extract()
        header.clear()
        if avatar is not None:
            header.append(avatar)
        header.append(new_tag("strong", text=text))
        log.debug("collapsed_quote_header", text=text)

    for node in list(iter_text(root)):
        if clean_text(node) in BOILERPLATE_LABELS:
            node.extract()
    return root


def _wrap_children(tag: Tag, name: str) -> None:
    wrapper = new_tag(name)
    for child in list(tag.children):
        wrapper.append(child.extract())
    tag.append(wrapper)


def normalize_link_cards(root: Tag, log: FilteringBoundLogger) -> Tag:
    """Bold the title and italicize the domain of link-preview cards."""
    for card in find_all(root, lambda n: get_attr(n, "data-testid") in CARD_TEST_IDS):
        blocks = element_children(card)
        if len(blocks) != 3:
            log.debug("unexpected_card_layout", blocks=len(blocks))
            continue
        _wrap_children(blocks[0], "strong")
        _wrap_children(blocks[2], "em")
    return root


def cleanup_videos(root: Tag, log: FilteringBoundLogger) -> Tag:
    """Give playable videos controls and drop their now-redundant poster images."""
    for video in find_all(root, match("video")):
        if get_attr(video, "src").startswith("blob:"):
            continue
        video["controls"] = ""
        if poster := get_attr(video, "poster"):
            for img in find_all(root, match("img", f"src={poster}")):
                img.decompose()
    return root


def absolutize_links(root: Tag, log: FilteringBoundLogger) -> Tag:
    for link in find_all(root, match("a", "href")):
        href = get_attr(link, "href")
        parts = urlsplit(href)
        if parts.scheme or parts.netloc:
            continue
        link["href"] = absolute_url(href)
        log.debug("rewrote_link", old=href, new=link["href"])
    return root


def _wraps_single_user_link(node) -> bool:
    if not is_element(node, "div"):
        return False
    kids = [c for c in node.children if not (is_text(c) and not c.strip())]
    return (
        len(kids) == 1
        and is_element(kids[0], "a")
        and clean_text(text_of(kids[0])).startswith("@")
    )


def flatten_user_links(root: Tag, log: FilteringBoundLogger) -> Tag:
    """Turn divs that only wrap an @handle link into spans so they stay inline."""
    for div in find_all(root, _wraps_single_user_link):
        div.name = "span"
    return root


def materialize_line_breaks(root: Tag, log: FilteringBoundLogger) -> Tag:
    """Follow every newline in text with an explicit <br/>.

    A newline that already starts a text node right after a <br/> is left
    alone, so running this twice changes nothing.
    """
    for node in list(iter_text(root)):
        if "\n" not in node:
            continue
        first, *rest = str(node).split("\n")
        done = not first and is_element(node.previous_sibling, "br")
        replacement: list = [NavigableString(first)] if first else []
        for i, line in enumerate(rest):
            if not (i == 0 and done):
                replacement.append(new_tag("br"))
            replacement.append(NavigableString(f"\n{line}"))
        if len(replacement) > 1:
            node.replace_with(*replacement)
    return root


def strip_presentation(root: Tag, log: FilteringBoundLogger) -> Tag:
    """Drop stylesheet-dependent attributes and inline SVGs."""
    for name in PRESENTATION_ATTRS:
        delete_attr_recursive(root, name)
    for svg in find_all(root, match("svg")):
        svg.decompose()
    return root


PIPELINE: tuple[Pass, ...] = (
    normalize_emoji,
    normalize_quote_headers,
    normalize_link_cards,
    cleanup_videos,
    absolutize_links,
    flatten_user_links,
    materialize_line_breaks,
)


def rewrite_content(
    root: Tag, *, simplify: bool = False, log: FilteringBoundLogger | None = None
) -> Tag:
    """Run the rewriting passes over an owned working tree, in order."""
    log = log or logger
    passes = PIPELINE + ((strip_presentation,) if simplify else ())
    for step in passes:
        root = step(root, log)
    return root


def render(root: Tag) -> RenderedContent:
    return RenderedContent(content=to_html(root), text=clean_text(text_of(root, True)))


def rewrite_html(
    markup: str, *, simplify: bool = False, log: FilteringBoundLogger | None = None
) -> RenderedContent:
    """Rewrite a standalone HTML fragment."""
    return render(rewrite_content(parse_html(markup), simplify=simplify, log=log))


def attribution_banner(user_href: str, display_name: str) -> list[Tag]:
    """Nodes that credit a re-shared post's original author."""
    strong = new_tag("strong")
    strong.append(new_tag("a", {"href": user_href}, display_name))
    return [strong, new_tag("br")]


def prepend(root: Tag, nodes: list[Tag]) -> None:
    for i, node in enumerate(nodes):
        root.insert(i, node)

