import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Self

from .models import FeedFormat


def _default_cache_dir() -> Path:
    return Path.home() / ".cache" / "twittuh"


@dataclass(frozen=True)
class TwittuhConfig:
    """Settings for fetching timelines and writing feeds."""

    cache_dir: Path = field(default_factory=_default_cache_dir)
    user_agent: str = ""
    request_timeout: int = 30
    max_retries: int = 3
    offline: bool = False  # only read from the cache
    pages: int = 3  # timeline pages per run, 20 posts each
    feed_format: FeedFormat = FeedFormat.ATOM
    embeds: bool = True
    simplify: bool = False
    replies: bool = False

    def __post_init__(self) -> None:
        # TOML hands us plain strings
        object.__setattr__(self, "cache_dir", Path(self.cache_dir).expanduser())
        object.__setattr__(self, "feed_format", FeedFormat(self.feed_format))

    @classmethod
    def from_toml(cls, path: Path) -> Self:
        """Create configuration from TOML file."""
        with path.open("rb") as f:
            config_data = tomllib.load(f)
        return cls(**config_data.get("twittuh", {}))
