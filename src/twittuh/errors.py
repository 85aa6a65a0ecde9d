from __future__ import annotations


def _context(post_index: int | None, post_id: int | None) -> str:
    parts = []
    if post_index is not None:
        parts.append(f"post {post_index}")
    if post_id is not None:
        parts.append(f"id {post_id}")
    return f" ({', '.join(parts)})" if parts else ""


class ParseError(Exception):
    """Base class for errors that abort a timeline parse."""

    def __init__(
        self,
        message: str,
        *,
        post_index: int | None = None,
        post_id: int | None = None,
    ) -> None:
        super().__init__(message)
        self.post_index = post_index
        self.post_id = post_id

    def __str__(self) -> str:
        return f"{super().__str__()}{_context(self.post_index, self.post_id)}"


class StructureError(ParseError):
    """Raised when a required structural landmark is missing from the page."""

    def __init__(
        self,
        message: str,
        *,
        landmark: str | None = None,
        post_index: int | None = None,
        post_id: int | None = None,
    ) -> None:
        super().__init__(message, post_index=post_index, post_id=post_id)
        self.landmark = landmark


class FieldError(ParseError):
    """Raised when a single field of an otherwise sound post can't be extracted."""

    def __init__(
        self,
        field: str,
        message: str,
        *,
        post_index: int | None = None,
        post_id: int | None = None,
    ) -> None:
        super().__init__(
            f"bad {field}: {message}", post_index=post_index, post_id=post_id
        )
        self.field = field


class FormatError(ValueError):
    """Raised when a timestamp string matches none of the known shapes."""


class EmbedResolutionError(Exception):
    """Raised when an embedded quoted post or photo page can't be resolved."""


class FetchError(Exception):
    """Raised when a page can't be fetched."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    def __str__(self) -> str:
        if self.status_code:
            return f"{super().__str__()} (Status: {self.status_code})"
        return super().__str__()


class FeedError(Exception):
    """Raised when an existing feed can't be read back."""


class TimelineUnchanged(Exception):
    """Raised when the newest post matches the one already in the feed."""

    def __init__(self, latest_id: int) -> None:
        super().__init__(f"no posts newer than {latest_id}")
        self.latest_id = latest_id
