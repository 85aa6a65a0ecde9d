from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum

from .utils import user_url


class FeedFormat(StrEnum):
    """Enumeration of feed formats that can be written."""

    ATOM = "atom"
    RSS = "rss"
    JSON = "json"


@dataclass(frozen=True)
class Profile:
    """Timeline owner."""

    user: str  # handle without '@'
    name: str
    icon_url: str = ""  # small (48x48) avatar
    image_url: str = ""  # large (400x400) avatar

    @property
    def display_name(self) -> str:
        return f"{self.name} (@{self.user})"

    @property
    def url(self) -> str:
        return user_url(self.user)


@dataclass(frozen=True)
class Post:
    """A single timeline entry."""

    id: int
    href: str
    user: str
    name: str
    timestamp: datetime
    content: str
    text: str
    reply_to: tuple[str, ...] = ()

    @property
    def display_name(self) -> str:
        return f"{self.name} (@{self.user})"

    @property
    def is_reply(self) -> bool:
        return bool(self.reply_to)

    def is_reshare(self, profile: Profile) -> bool:
        return self.user != profile.user


@dataclass(frozen=True)
class Timeline:
    """Result of parsing one timeline page."""

    profile: Profile
    posts: list[Post] = field(default_factory=list)
    next_page_url: str | None = None  # legacy markup only


@dataclass(frozen=True)
class FeedSnapshot:
    """Posts gathered across several timeline pages."""

    profile: Profile
    posts: list[Post]
    latest_id: int
