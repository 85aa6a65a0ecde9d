"""Inline the targets of links to quoted posts and photo pages.

Nothing here is fatal to the enclosing post: failures are logged and the
original link is left as it was.
"""

from __future__ import annotations

from urllib.parse import urljoin

import structlog
from bs4 import Tag
from structlog.typing import FilteringBoundLogger

from .dom import (
    find_all,
    find_first,
    get_attr,
    match,
    new_tag,
    parse_html,
)
from .errors import EmbedResolutionError, FetchError
from .fetcher import Fetcher
from .utils import mobile_url

logger = structlog.get_logger()

# Statuses meaning the quoted post was deleted or its account made private.
GONE_STATUSES = frozenset({403, 404})

# Hidden field carried by the "sensitive media" interstitial form.
GATE_TOKEN = "authenticity_token"


def _is_embed_link(node) -> bool:
    return match("a")(node) and (
        get_attr(node, "data-pre-embedded") == "true"
        or bool(get_attr(node, "data-expanded-url"))
    )


def embed_target(link: Tag) -> str:
    """Mobile URL of the page an embed link points at, or "" if off-site."""
    url = (
        get_attr(link, "data-url")
        or get_attr(link, "data-expanded-url")
        or get_attr(link, "href")
    )
    return mobile_url(url)


def is_photo_page(url: str) -> bool:
    return "/photo/" in url


def is_post_page(url: str) -> bool:
    return "/status/" in url and not is_photo_page(url)


def _find_gate_form(root) -> Tag | None:
    token = match("input", "type=hidden", f"name={GATE_TOKEN}")
    for form in find_all(root, match("form")):
        if find_first(form, token) is not None:
            return form
    return None


class EmbedResolver:
    """Fetches linked post and photo pages and splices their content into posts."""

    def __init__(self, fetcher: Fetcher, log: FilteringBoundLogger | None = None) -> None:
        self.fetcher = fetcher
        self.log = log or logger

    async def _fetch_page(self, url: str, form: dict[str, str] | None = None):
        try:
            body = await self.fetcher.fetch(url, use_cache=form is None, form=form)
        except FetchError as e:
            raise EmbedResolutionError(f"couldn't fetch {url}: {e}") from e
        return parse_html(body)

    async def quoted_content(self, url: str) -> Tag:
        """Detached body of the post at url."""
        root = await self._fetch_page(url)
        if (div := find_first(root, match("div", "class=tweet-text"))) is None:
            raise EmbedResolutionError(f"didn't find content in {url}")
        return div.extract()

    async def image_url(self, url: str) -> str:
        """Real image URL behind a photo page, passing a sensitive-media gate once."""
        root = await self._fetch_page(url)
        if find_first(root, match("div", "class=media")) is None:
            if (form := _find_gate_form(root)) is None:
                raise EmbedResolutionError(f"didn't find media div in {url}")
            fields = {
                get_attr(i, "name"): get_attr(i, "value")
                for i in find_all(form, match("input", "type=hidden", "name"))
            }
            action = urljoin(url, get_attr(form, "action") or url)
            self.log.debug("submitting_sensitive_media_form", url=action)
            root = await self._fetch_page(action, form=fields)

        if (media := find_first(root, match("div", "class=media"))) is None:
            raise EmbedResolutionError(f"didn't find media div in {url}")
        if (img := find_first(media, match("img", "src"))) is None:
            raise EmbedResolutionError(f"didn't find image in {url}")
        return get_attr(img, "src")

    async def _splice_quote(self, link: Tag, url: str) -> None:
        try:
            content = await self.quoted_content(url)
        except EmbedResolutionError as e:
            cause = e.__cause__
            if isinstance(cause, FetchError) and cause.status_code in GONE_STATUSES:
                self.log.info("quoted_post_gone", url=url, status=cause.status_code)
                link.wrap(new_tag("s"))
            else:
                self.log.warning("embed_failed", url=url, error=str(e))
            return

        self.log.debug("adding_embedded_post", url=url)
        link.insert_before(new_tag("hr"))
        strong = link.wrap(new_tag("strong"))
        strong.insert_after(content)

    async def _inline_photo(self, link: Tag, url: str) -> None:
        try:
            src = await self.image_url(url)
        except EmbedResolutionError as e:
            self.log.warning("embed_failed", url=url, error=str(e))
            return
        self.log.debug("adding_embedded_image", url=src)
        link.clear()
        link.append(new_tag("img", {"src": src}))

    async def resolve(self, root: Tag) -> Tag:
        """Resolve every embed link under root, one at a time.

        Quoted posts go first so that photo links inside them are resolved too.
        """
        for link in find_all(root, _is_embed_link):
            if is_post_page(url := embed_target(link)):
                await self._splice_quote(link, url)
        for link in find_all(root, _is_embed_link):
            if is_photo_page(url := embed_target(link)):
                await self._inline_photo(link, url)
        return root
