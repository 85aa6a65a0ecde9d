"""
twittuh - turn Twitter timeline pages into Atom, RSS and JSON feeds.
"""

from .config import TwittuhConfig
from .errors import (
    EmbedResolutionError,
    FieldError,
    FormatError,
    ParseError,
    StructureError,
)
from .models import FeedFormat, Post, Profile, Timeline
from .parser import parse_timeline
from .timestamps import parse_timestamp

__version__ = "0.1.0"
__all__ = [
    "EmbedResolutionError",
    "FeedFormat",
    "FieldError",
    "FormatError",
    "ParseError",
    "Post",
    "Profile",
    "StructureError",
    "Timeline",
    "TwittuhConfig",
    "parse_timeline",
    "parse_timestamp",
]
