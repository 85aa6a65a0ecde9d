"""Predicate-based queries over BeautifulSoup trees.

Absence is always an empty result: HTML structure is optional by nature, so
none of these helpers raise.
"""

from __future__ import annotations

from typing import Callable, Iterator

from bs4 import BeautifulSoup, NavigableString, PageElement, Tag
from bs4.dammit import EntitySubstitution
from bs4.element import PreformattedString
from bs4.formatter import HTMLFormatter

Predicate = Callable[[PageElement], bool]

# Elements whose boundaries separate words when extracting text.
BLOCK_TAGS = frozenset(
    {
        "address", "article", "aside", "blockquote", "br", "dd", "div", "dl",
        "dt", "figcaption", "figure", "footer", "h1", "h2", "h3", "h4", "h5",
        "h6", "header", "hr", "li", "main", "nav", "ol", "p", "pre", "section",
        "table", "td", "th", "tr", "ul",
    }
)

# Only used as a factory for detached tags.
_FACTORY = BeautifulSoup("", "html.parser")

# The document root is always on the builder's tag stack, so listing it keeps
# whitespace-only text verbatim everywhere instead of squashing it to "\n".
_PRESERVE_WHITESPACE = frozenset({"[document]", "pre", "textarea"})


class SourceOrderFormatter(HTMLFormatter):
    """The "minimal" formatter, but attributes stay in document order."""

    def __init__(self) -> None:
        super().__init__(entity_substitution=EntitySubstitution.substitute_xml)

    def attributes(self, tag: Tag):
        return list(tag.attrs.items()) if tag.attrs else []


_FORMATTER = SourceOrderFormatter()


def parse_html(markup: str | bytes) -> BeautifulSoup:
    return BeautifulSoup(
        markup, "html.parser", preserve_whitespace_tags=_PRESERVE_WHITESPACE
    )


def to_html(node: Tag) -> str:
    """Serialize node with its attributes in the order they were written."""
    return node.decode(formatter=_FORMATTER)


def is_text(node: PageElement) -> bool:
    """True for plain text nodes (not comments, doctypes, CDATA, ...)."""
    return isinstance(node, NavigableString) and not isinstance(
        node, PreformattedString
    )


def is_element(node: PageElement, tag: str) -> bool:
    return isinstance(node, Tag) and node.name == tag


def get_attr(node: PageElement, name: str) -> str:
    """Value of the named attribute, or an empty string."""
    if not isinstance(node, Tag):
        return ""
    value = node.get(name)
    if value is None:
        return ""
    if isinstance(value, list):
        return " ".join(value)
    return value


def has_attr(node: PageElement, name: str) -> bool:
    return isinstance(node, Tag) and node.has_attr(name)


def attr_equals(node: PageElement, name: str, value: str) -> bool:
    return has_attr(node, name) and get_attr(node, name) == value


def has_class(node: PageElement, name: str) -> bool:
    """True if name is one of node's classes (not a substring match)."""
    return name in get_attr(node, "class").split()


def match(tag: str | None = None, *exprs: str) -> Predicate:
    """Build a predicate from a tag name and attribute expressions.

    Each expression is either "attr" (attribute present) or "attr=value".
    For "class=value", membership in the class list is checked.
    """

    def _matches(node: PageElement) -> bool:
        if not isinstance(node, Tag):
            return False
        if tag and node.name != tag:
            return False
        for expr in exprs:
            name, sep, value = expr.partition("=")
            if not sep:
                if not node.has_attr(name):
                    return False
            elif name == "class":
                if not has_class(node, value):
                    return False
            elif not attr_equals(node, name, value):
                return False
        return True

    return _matches


def _children(node: PageElement) -> list[PageElement]:
    return list(node.children) if isinstance(node, Tag) else []


def find_all(root: PageElement, pred: Predicate) -> list[PageElement]:
    """Pre-order search that doesn't descend into matched nodes."""
    if pred(root):
        return [root]
    found: list[PageElement] = []
    for child in _children(root):
        found.extend(find_all(child, pred))
    return found


def find_first(root: PageElement, pred: Predicate) -> PageElement | None:
    """Pre-order search returning the first match."""
    if pred(root):
        return root
    for child in _children(root):
        if (found := find_first(child, pred)) is not None:
            return found
    return None


def iter_text(root: PageElement) -> Iterator[NavigableString]:
    """Yield every text node under root in document order."""
    if is_text(root):
        yield root
    for child in _children(root):
        yield from iter_text(child)


def text_of(node: PageElement, collapse_separators: bool = False) -> str:
    """Concatenate all text under node.

    With collapse_separators, block-level boundaries contribute a space so
    that words in adjacent blocks don't run together. Callers trim and
    condense the result themselves.
    """
    if is_text(node):
        return str(node)
    parts = []
    for child in _children(node):
        text = text_of(child, collapse_separators)
        if collapse_separators and isinstance(child, Tag) and child.name in BLOCK_TAGS:
            text = f" {text} "
        parts.append(text)
    return "".join(parts)


def delete_attr_recursive(root: PageElement, name: str) -> None:
    """Strip the named attribute from root and every element below it."""
    if isinstance(root, Tag):
        root.attrs.pop(name, None)
        for child in root.find_all(True):
            child.attrs.pop(name, None)


def ancestor(node: PageElement, levels: int) -> Tag | None:
    """The ancestor levels steps above node, or None if the chain is short."""
    for _ in range(levels):
        if node is None:
            return None
        node = node.parent
    return node if isinstance(node, Tag) and node.name != "[document]" else None


def previous_element_sibling(node: PageElement) -> Tag | None:
    """The closest preceding sibling that is an element, skipping text."""
    sibling = node.previous_sibling
    while sibling is not None and not isinstance(sibling, Tag):
        sibling = sibling.previous_sibling
    return sibling


def element_children(node: PageElement) -> list[Tag]:
    return [c for c in _children(node) if isinstance(c, Tag)]


def new_tag(
    name: str, attrs: dict[str, str] | None = None, text: str | None = None
) -> Tag:
    """Create a detached element."""
    tag = _FACTORY.new_tag(name, attrs=attrs or {})
    if text is not None:
        tag.append(NavigableString(text))
    return tag
