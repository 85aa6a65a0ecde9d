from __future__ import annotations

import structlog

from .errors import TimelineUnchanged
from .fetcher import Fetcher
from .models import FeedSnapshot, Post, Profile
from .parser import parse_timeline

logger = structlog.get_logger()

BASE_FETCH_URL = "https://mobile.twitter.com/"


async def get_timeline(
    fetcher: Fetcher,
    user: str,
    old_latest_id: int = 0,
    pages: int = 3,
    *,
    embeds: bool = True,
    simplify: bool = False,
) -> FeedSnapshot:
    """Fetch up to pages timeline pages for user, newest first.

    Each page holds about 20 posts. Post ids increase per author, and pages
    are ordered by descending id, but a re-shared post keeps the id its
    original author was given, which can be far out of order. Passing a
    re-share's id as max_id also appears to skip it. So the next page starts
    at the oldest of the user's *own* posts on the current page, and posts
    seen on overlapping pages are dropped.

    Raises TimelineUnchanged if the newest post is old_latest_id, and
    ValueError if pages is less than 1.
    """
    base_url = BASE_FETCH_URL + user
    url = base_url
    seen: set[int] = set()
    posts: list[Post] = []
    profile: Profile | None = None
    latest_id = 0
    oldest_own_id: int | None = None

    for page in range(pages):
        body = await fetcher.fetch(url, use_cache=False)
        timeline = await parse_timeline(body, fetcher, embeds=embeds, simplify=simplify)
        profile = timeline.profile
        if not timeline.posts:  # went past the beginning of the timeline?
            break

        if page == 0:
            latest_id = timeline.posts[0].id
            if latest_id == old_latest_id:
                raise TimelineUnchanged(latest_id)

        own_ids = [p.id for p in timeline.posts if p.user == profile.user]
        for post in timeline.posts:
            if post.id not in seen:
                posts.append(post)
                seen.add(post.id)
        logger.info(
            "posts_fetched",
            page=page,
            batch_size=len(timeline.posts),
            total_posts=len(posts),
        )

        # Without any of the user's own posts there's no way to know where the
        # next page starts.
        if not own_ids:
            logger.warning("no_own_posts", url=url)
            break
        oldest_own_id = min(own_ids)

        next_url = f"{base_url}?max_id={oldest_own_id}"
        if next_url == url:
            logger.info("no_additional_own_posts", url=url)
            break
        url = next_url

    if (
        old_latest_id
        and old_latest_id not in seen
        and oldest_own_id is not None
        and oldest_own_id > old_latest_id
    ):
        logger.warning(
            "possible_gap",
            user=user,
            old_latest_id=old_latest_id,
            oldest_id=oldest_own_id,
            hint="run more frequently or fetch more pages",
        )

    if profile is None:  # the loop never ran
        raise ValueError(f"pages must be at least 1, got {pages}")
    logger.debug("parsed_posts", count=len(posts))
    return FeedSnapshot(profile=profile, posts=posts, latest_id=latest_id)
