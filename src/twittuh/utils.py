import json
import os
import re
import tempfile
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit, urlunsplit

import structlog

logger = structlog.get_logger()

DEFAULT_SCHEME = "https"
DEFAULT_HOST = "twitter.com"
MOBILE_HOST = "mobile.twitter.com"

_SPACE_RE = re.compile(r"\s+")
_AVATAR_SIZE_RE = re.compile(r"_(?:normal|bigger|mini|\d+x\d+)\.(?=\w+$)")


def bare_user(user: str) -> str:
    """Strip a leading '@' from a handle."""
    if len(user) > 1 and user[0] == "@":
        return user[1:]
    return user


def clean_text(text: str) -> str:
    """Trim text and condense repeated whitespace."""
    return _SPACE_RE.sub(" ", text.strip())


def user_url(user: str) -> str:
    return f"{DEFAULT_SCHEME}://{DEFAULT_HOST}/{user}"


def absolute_url(url: str) -> str:
    """Resolve a host-less URL against the canonical site; absolute URLs pass through."""
    parts = urlsplit(url)
    if parts.netloc or parts.scheme:
        return url
    path = parts.path if parts.path.startswith("/") else f"/{parts.path}"
    return urlunsplit((DEFAULT_SCHEME, DEFAULT_HOST, path, parts.query, parts.fragment))


def mobile_url(url: str) -> str:
    """Rewrite a twitter.com URL to its mobile.twitter.com form.

    URLs on any other host yield an empty string.
    """
    parts = urlsplit(url)
    match parts.netloc:
        case "twitter.com":
            return urlunsplit(parts._replace(netloc=MOBILE_HOST))
        case "mobile.twitter.com":
            return url
        case _:
            return ""


def icon_url(avatar: str) -> str:
    """Small avatar URL for any size variant of a profile image."""
    return _AVATAR_SIZE_RE.sub("_normal.", avatar, count=1)


def image_url(avatar: str) -> str:
    """Large avatar URL for any size variant of a profile image."""
    return _AVATAR_SIZE_RE.sub("_400x400.", avatar, count=1)


def dump_json(data: Any) -> str:
    return json.dumps(data, indent=2, ensure_ascii=False, default=str)


def write_atomic(path: Path, data: str) -> Path:
    """Replace path with data, keeping the old file if anything fails."""
    path.parent.mkdir(exist_ok=True, parents=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
    tmp = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(data)
        tmp.chmod(path.stat().st_mode if path.exists() else 0o644)
        tmp.replace(path)
        logger.info("file_saved", path=str(path))
        return path
    except Exception as e:
        logger.error("save_error", error=str(e), path=str(path))
        tmp.unlink(missing_ok=True)
        raise
