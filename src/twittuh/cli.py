import asyncio
import dataclasses
import logging
import sys
from pathlib import Path
from typing import Optional

import click
import structlog

from .config import TwittuhConfig
from .errors import FeedError, FetchError, ParseError, TimelineUnchanged
from .feed import get_latest_id, write_feed
from .fetcher import PageFetcher
from .models import FeedFormat
from .parser import parse_timeline
from .timeline import get_timeline
from .utils import bare_user, dump_json, write_atomic

logger = structlog.get_logger()


def configure_logging(verbose: bool) -> None:
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.DEBUG if verbose else logging.INFO
        ),
        logger_factory=structlog.PrintLoggerFactory(sys.stderr),
    )


@click.group()
@click.option(
    "--config",
    type=click.Path(exists=True, path_type=Path),
    help="Path to TOML config file",
)
@click.option(
    "--cache-dir",
    type=click.Path(file_okay=False, path_type=Path),
    help="Directory for caching downloads",
)
@click.option("--verbose", is_flag=True, help="Enable verbose logging")
@click.pass_context
def cli(
    ctx: click.Context, config: Optional[Path], cache_dir: Optional[Path], verbose: bool
) -> None:
    """Create feeds from Twitter timelines."""
    configure_logging(verbose)
    settings = TwittuhConfig.from_toml(config) if config else TwittuhConfig()
    if cache_dir:
        settings = dataclasses.replace(settings, cache_dir=cache_dir)
    ctx.obj = settings


@cli.command()
@click.argument("user")
@click.argument("feed_path", metavar="FILE", type=click.Path(dir_okay=False, path_type=Path))
@click.option(
    "--format",
    "feed_format",
    type=click.Choice([f.value for f in FeedFormat]),
    help="Feed format to write",
)
@click.option("--pages", type=int, help="Timeline pages to request (20 posts per page)")
@click.option("--replies/--no-replies", default=None, help="Include the user's replies")
@click.option(
    "--embeds/--no-embeds", default=None, help="Inline embedded images and quoted posts"
)
@click.option(
    "--simplify/--no-simplify", default=None, help="Strip page styling from post content"
)
@click.option("--force", is_flag=True, help="Write the feed even without new posts")
@click.option("--offline", is_flag=True, help="Only read pages from the cache")
@click.pass_obj
def feed(
    config: TwittuhConfig,
    user: str,
    feed_path: Path,
    feed_format: Optional[str],
    pages: Optional[int],
    replies: Optional[bool],
    embeds: Optional[bool],
    simplify: Optional[bool],
    force: bool,
    offline: bool,
) -> None:
    """Write a feed of USER's timeline to FILE."""
    overrides = {
        "feed_format": feed_format,
        "pages": pages,
        "replies": replies,
        "embeds": embeds,
        "simplify": simplify,
        "offline": offline or None,
    }
    config = dataclasses.replace(
        config, **{k: v for k, v in overrides.items() if v is not None}
    )
    user = bare_user(user)

    old_latest_id = 0
    if not force:
        try:
            old_latest_id = get_latest_id(feed_path, config.feed_format)
        except FeedError as e:
            logger.warning("latest_id_unavailable", path=str(feed_path), error=str(e))

    async def _fetch_feed() -> None:
        async with PageFetcher(config) as fetcher:
            logger.debug("getting_timeline", user=user, old_latest_id=old_latest_id)
            try:
                snapshot = await get_timeline(
                    fetcher,
                    user,
                    old_latest_id,
                    config.pages,
                    embeds=config.embeds,
                    simplify=config.simplify,
                )
            except TimelineUnchanged:
                logger.info("no_new_posts", user=user)
                return
            except (FetchError, ParseError) as e:
                logger.error("fetch_error", user=user, error=str(e))
                raise click.ClickException(f"Failed getting posts for {user}: {e}") from e

        data = write_feed(
            snapshot.profile,
            snapshot.posts,
            snapshot.latest_id,
            config.feed_format,
            replies=config.replies,
        )
        write_atomic(feed_path, data)

    asyncio.run(_fetch_feed())


@cli.command()
@click.argument("html_path", metavar="FILE", type=click.Path(exists=True, path_type=Path))
@click.option("--replies/--no-replies", default=None, help="Include the user's replies")
@click.option(
    "--embeds/--no-embeds", default=None, help="Inline embedded images and quoted posts"
)
@click.option(
    "--simplify/--no-simplify", default=None, help="Strip page styling from post content"
)
@click.pass_obj
def parse(
    config: TwittuhConfig,
    html_path: Path,
    replies: Optional[bool],
    embeds: Optional[bool],
    simplify: Optional[bool],
) -> None:
    """Dump the profile and posts parsed from a saved timeline page."""
    replies = config.replies if replies is None else replies
    embeds = config.embeds if embeds is None else embeds
    simplify = config.simplify if simplify is None else simplify

    async def _parse() -> None:
        async with PageFetcher(config) as fetcher:
            try:
                timeline = await parse_timeline(
                    html_path.read_bytes(), fetcher, embeds=embeds, simplify=simplify
                )
            except ParseError as e:
                logger.error("parse_error", path=str(html_path), error=str(e))
                raise click.ClickException(str(e)) from e

        posts = [p for p in timeline.posts if replies or not p.is_reply]
        click.echo(
            dump_json(
                {
                    "profile": dataclasses.asdict(timeline.profile),
                    "posts": [dataclasses.asdict(p) for p in posts],
                    "next_page_url": timeline.next_page_url,
                }
            )
        )

    asyncio.run(_parse())


if __name__ == "__main__":
    cli()
